# sepay/protocol/loader.py
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_PROTOCOL_DIR = Path(__file__).resolve().parent / "metadata"


def sha256_file(path: Path) -> str:
    """Lowercase hex SHA256 of a catalog file."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(64 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class ProtocolLoader:
    """Load the protocol YAML files into dicts + keep per-file SHA256 hashes."""

    REQUIRED_FILES = (
        "constants.yml",
        "commands.yml",
    )

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_PROTOCOL_DIR

        # Full documents
        self.constants_doc: Dict[str, Any] = {}
        self.commands_doc: Dict[str, Any] = {}

        # Extracted structures used by Protocol(...)
        self.constants: Dict[str, Any] = {}
        self.control: Dict[str, Any] = {}
        self.commands: Dict[str, Any] = {}

        # File fingerprints (filename -> sha256 hex)
        self.file_hashes: Dict[str, str] = {}

    def load_all(self) -> None:
        # Ensure required files exist + compute hashes
        self.file_hashes.clear()
        for fn in self.REQUIRED_FILES:
            path = self.config_dir / fn
            if not path.exists():
                raise FileNotFoundError(f"Protocol file not found: {path}")
            self.file_hashes[fn] = sha256_file(path)

        # Load YAML documents
        self.constants_doc = self._load_yaml("constants.yml")
        self.commands_doc = self._load_yaml("commands.yml")

        # Extract payloads
        self.constants = self.constants_doc
        if not isinstance(self.constants, dict):
            raise ValueError("constants.yml must be a mapping")

        self.control = self.constants.get("control", {}) or {}
        self.commands = self.commands_doc.get("commands", {}) or {}

        # Basic shape validation
        if not isinstance(self.control, dict):
            raise ValueError("constants.yml 'control' must be a mapping")
        for key in ("ack", "nack"):
            if key not in self.control:
                raise ValueError(f"constants.yml 'control' is missing '{key}'")
        if not isinstance(self.commands, dict):
            raise ValueError("commands.yml must contain 'commands' mapping")
        for name, cmd in self.commands.items():
            if not isinstance(cmd, dict) or "code" not in cmd:
                raise ValueError(f"Command '{name}' must be a mapping with a 'code'")

    def protocol_version(self) -> int:
        """
        Catalog version.
        Defaults to 0 if not specified.
        """
        v = self.constants.get("protocol_version", 0)
        try:
            return int(v)
        except Exception:
            raise ValueError(f"Invalid protocol version in constants.yml: {v!r}")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        path = self.config_dir / filename
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
