from __future__ import annotations

from typing import Any, Dict, FrozenSet, Optional, Union

from .frame import MAX_PAYLOAD
from ..loader import ProtocolLoader

CommandRef = Union[int, str]


class Protocol:
    """Runtime access to protocol metadata (control codes + command catalog)."""

    def __init__(self, loader: ProtocolLoader):
        self.constants: Dict[str, Any] = loader.constants
        self.commands: Dict[str, Dict[str, Any]] = loader.commands

        self.encoding: str = str(self.constants.get("encoding", "utf-8"))
        self.max_payload: int = min(int(self.constants.get("max_payload", MAX_PAYLOAD)), MAX_PAYLOAD)

        self.ack_code: int = self._byte(loader.control["ack"], "control.ack")
        self.nack_code: int = self._byte(loader.control["nack"], "control.nack")
        if self.ack_code == self.nack_code:
            raise ValueError(f"ACK and NACK share code 0x{self.ack_code:02X}")

        # Fast lookup maps
        self.codes_by_name: Dict[str, int] = {}
        self.names_by_code: Dict[int, str] = {}
        simple = set()
        for name, cmd in self.commands.items():
            code = self._byte(cmd.get("code"), f"commands.{name}.code")
            if code in self.names_by_code:
                raise ValueError(f"Duplicate code=0x{code:02X} for commands '{name}' and '{self.names_by_code[code]}'")
            if code in (self.ack_code, self.nack_code):
                raise ValueError(f"Command '{name}' uses reserved control code 0x{code:02X}")
            self.codes_by_name[name] = code
            self.names_by_code[code] = name
            if cmd.get("simple", False):
                simple.add(code)

        self.simple_codes: FrozenSet[int] = frozenset(simple)

    @staticmethod
    def _byte(v: Any, what: str) -> int:
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError(f"{what} must be an integer, got {v!r}")
        if not 0 <= v <= 0xFF:
            raise ValueError(f"{what}={v} does not fit in one byte")
        return v

    def resolve_command(self, command: CommandRef) -> int:
        if isinstance(command, str):
            if command not in self.codes_by_name:
                raise ValueError(f"Unknown command: {command}")
            return self.codes_by_name[command]
        return self._byte(command, "command")

    def command_name(self, code: int) -> str:
        if code == self.ack_code:
            return "ACK"
        if code == self.nack_code:
            return "NACK"
        return self.names_by_code.get(code, f"CMD_0x{code:02X}")

    def is_simple(self, code: int) -> bool:
        return code in self.simple_codes

    def is_control(self, code: int) -> bool:
        return code in (self.ack_code, self.nack_code)


def load_protocol(config_dir: Optional[str] = None) -> Protocol:
    """Load a Protocol from ``config_dir`` (packaged defaults when omitted)."""
    loader = ProtocolLoader(config_dir)
    loader.load_all()
    return Protocol(loader)
