"""Config Model - parsing and validation of WireGuard configuration text.

Usage:
    from wg_bridge.config_model import ConfigParser, ConfigValidator

    summary = ConfigParser(strict=True).parse(text)
    ConfigValidator(strict=True).validate(summary)
"""

from .parser import (
    ConfigParser,
    ConfigSummary,
    ParseError,
    LineError,
    UnknownSectionError,
    OutsideSectionError,
    EmptyKeyError,
    MalformedLineError,
    MissingInterfaceError,
    NoPeersError,
    parse_config,
    render_config,
    QUICK_ONLY_KEYS,
)
from .addresses import validate_ips, detect_ip_conflicts, split_entries
from .validator import ConfigValidator, validate_interface_name, is_wg_key
from .manifest import Manifest, ManifestValidator, compute_checksum

__all__ = [
    # Parser
    "ConfigParser",
    "ConfigSummary",
    "ParseError",
    "LineError",
    "UnknownSectionError",
    "OutsideSectionError",
    "EmptyKeyError",
    "MalformedLineError",
    "MissingInterfaceError",
    "NoPeersError",
    "parse_config",
    "render_config",
    "QUICK_ONLY_KEYS",
    # Addresses
    "validate_ips",
    "detect_ip_conflicts",
    "split_entries",
    # Validation
    "ConfigValidator",
    "validate_interface_name",
    "is_wg_key",
    # Manifest
    "Manifest",
    "ManifestValidator",
    "compute_checksum",
]
