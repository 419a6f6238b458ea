# sepay/app/config.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from sepay.core.errors import ConfigError

# settings accepted under the `session:` section
SESSION_KEYS = frozenset(
    {"response_timeout_s", "ack_timeout_s", "max_nack_retries", "extended_mode", "require_extended_mode"}
)


@dataclass(frozen=True)
class SepayConfig:
    transport_driver: str = "tcp"
    transport_params: Dict[str, Any] = field(default_factory=dict)
    protocol_dir: Optional[str] = None
    response_timeout_s: float = 30.0
    ack_timeout_s: float = 2.0
    max_nack_retries: int = 3
    extended_mode: bool = False
    require_extended_mode: bool = False
    trace_file: Optional[str] = None

    def __post_init__(self) -> None:
        if self.response_timeout_s <= 0 or self.ack_timeout_s <= 0:
            raise ConfigError(
                "Timeouts must be positive.",
                details={"response_timeout_s": self.response_timeout_s, "ack_timeout_s": self.ack_timeout_s},
            )
        if self.max_nack_retries < 0:
            raise ConfigError(
                "max_nack_retries must be >= 0.",
                details={"max_nack_retries": self.max_nack_retries},
            )
        if self.require_extended_mode and not self.extended_mode:
            raise ConfigError(
                "require_extended_mode needs extended_mode enabled.",
                hint="Set 'extended_mode: true' or drop 'require_extended_mode'.",
            )


def config_from_dict(doc: Dict[str, Any]) -> SepayConfig:
    """
    Build a SepayConfig from a mapping shaped like::

        transport: {driver: tcp, params: {host: 192.168.0.105, port: 1234}}
        protocol_dir: null
        session: {response_timeout_s: 30, ack_timeout_s: 2, max_nack_retries: 3,
                  extended_mode: true, require_extended_mode: false}
        trace_file: null
    """
    if not isinstance(doc, dict):
        raise ConfigError("Config document must be a mapping.")

    transport = doc.get("transport", {}) or {}
    session = doc.get("session", {}) or {}
    if not isinstance(transport, dict) or not isinstance(session, dict):
        raise ConfigError("'transport' and 'session' must be mappings.")

    params = transport.get("params", {}) or {}
    if not isinstance(params, dict):
        raise ConfigError("'transport.params' must be a mapping.")

    known = SESSION_KEYS
    unknown = set(session) - known
    if unknown:
        raise ConfigError(
            f"Unknown session settings: {sorted(unknown)}",
            hint=f"Valid settings: {sorted(known)}",
        )

    try:
        return SepayConfig(
            transport_driver=str(transport.get("driver", "tcp")),
            transport_params=dict(params),
            protocol_dir=doc.get("protocol_dir"),
            trace_file=doc.get("trace_file"),
            **session,
        )
    except (TypeError, ValueError) as e:
        raise ConfigError("Invalid session settings.", hint=str(e)) from None


def load_config(path: str | Path) -> SepayConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)})

    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file is not valid YAML: {path}", hint=str(e)) from None

    return config_from_dict(doc)
