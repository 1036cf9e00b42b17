"""Parser for WireGuard configuration text.

Converts the INI-like text into an immutable ConfigSummary. Only syntax is
checked here; semantic rules live in validator.py.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ..errors import ValidationError

INTERFACE_SECTION = "Interface"
PEER_SECTION = "Peer"

# Keys understood by wg-quick but rejected by `wg syncconf`
QUICK_ONLY_KEYS = frozenset({
    "Address",
    "DNS",
    "MTU",
    "Table",
    "PreUp",
    "PostUp",
    "PreDown",
    "PostDown",
    "SaveConfig",
})


class ParseError(ValidationError):
    """Configuration text could not be parsed."""
    pass


class LineError(ParseError):
    """Parse failure attributable to one line (1-based)."""

    def __init__(self, message: str, line: int):
        super().__init__(f"{message} at line {line}")
        self.line = line


class UnknownSectionError(LineError):
    def __init__(self, section: str, line: int):
        super().__init__(f"unknown section {section!r}", line)
        self.section = section


class OutsideSectionError(LineError):
    def __init__(self, line: int):
        super().__init__("key-value outside of section", line)


class EmptyKeyError(LineError):
    def __init__(self, line: int):
        super().__init__("empty key", line)


class MalformedLineError(LineError):
    def __init__(self, line: int):
        super().__init__("expected key = value", line)


class MissingInterfaceError(ParseError):
    def __init__(self):
        super().__init__("missing [Interface] section")


class NoPeersError(ParseError):
    def __init__(self):
        super().__init__("no peers defined")


def _freeze(values: dict[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(values))


@dataclass(frozen=True)
class ConfigSummary:
    """Parsed configuration: one merged interface mapping plus ordered peers."""
    interface: Mapping[str, str] = field(default_factory=lambda: _freeze({}))
    peers: tuple[Mapping[str, str], ...] = ()

    @property
    def listen_port(self) -> str:
        return self.interface.get("ListenPort", "")

    @property
    def peer_keys(self) -> list[str]:
        return [p.get("PublicKey", "") for p in self.peers]

    def to_dict(self) -> dict:
        """Convert to plain dicts for JSON serialization."""
        return {
            "interface": dict(self.interface),
            "peers": [dict(p) for p in self.peers],
        }


class ConfigParser:
    """Line-oriented parser for [Interface]/[Peer] configuration text."""

    def __init__(self, strict: bool = False):
        """
        Initialize parser.

        Args:
            strict: Require at least one [Peer] section
        """
        self.strict = strict

    def parse(self, text: str) -> ConfigSummary:
        """
        Parse configuration text.

        Repeated [Interface] headers merge into the same mapping, later
        keys overwriting earlier ones. Each [Peer] header starts a new,
        empty peer mapping.

        Args:
            text: Raw configuration text

        Returns:
            ConfigSummary

        Raises:
            LineError: For a line-level syntax problem
            ParseError: If the interface section is empty, or strict and
                no peers are present
        """
        interface: dict[str, str] = {}
        peers: list[dict[str, str]] = []
        current: dict[str, str] | None = None

        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()

            if not line or line.startswith(("#", ";")):
                continue

            if line.startswith("[") and line.endswith("]"):
                section = line[1:-1].strip()
                if section == INTERFACE_SECTION:
                    current = interface
                elif section == PEER_SECTION:
                    current = {}
                    peers.append(current)
                else:
                    raise UnknownSectionError(section, lineno)
                continue

            if current is None:
                raise OutsideSectionError(lineno)

            if "=" not in line:
                raise MalformedLineError(lineno)

            key, value = line.split("=", 1)
            key = key.strip()
            if not key:
                raise EmptyKeyError(lineno)

            current[key] = value.strip()

        if not interface:
            raise MissingInterfaceError()

        if self.strict and not peers:
            raise NoPeersError()

        return ConfigSummary(
            interface=_freeze(interface),
            peers=tuple(_freeze(p) for p in peers),
        )


def parse_config(text: str, strict: bool = False) -> ConfigSummary:
    """Parse configuration text with a one-off parser."""
    return ConfigParser(strict=strict).parse(text)


def render_config(summary: ConfigSummary, strip_quick: bool = False) -> str:
    """
    Render a summary back to configuration text.

    Args:
        summary: Parsed configuration
        strip_quick: Drop wg-quick-only interface keys so the result is
            accepted by `wg setconf`/`wg syncconf`

    Returns:
        Configuration text (comments and ordering of duplicates are lost)
    """
    lines = [f"[{INTERFACE_SECTION}]"]
    for key, value in summary.interface.items():
        if strip_quick and key in QUICK_ONLY_KEYS:
            continue
        lines.append(f"{key} = {value}")

    for peer in summary.peers:
        lines.append("")
        lines.append(f"[{PEER_SECTION}]")
        for key, value in peer.items():
            lines.append(f"{key} = {value}")

    return "\n".join(lines) + "\n"
