"""Semantic validation for parsed WireGuard configurations.

Catches unsafe or inconsistent configurations before anything touches
the filesystem or the running interface.
"""
import ipaddress
import re
from typing import Mapping, Sequence

from ..errors import ConflictError, ValidationError
from .addresses import detect_ip_conflicts, split_entries, validate_addresses, validate_ips
from .parser import ConfigSummary

INTERFACE_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]{1,15}$")

# 32 raw bytes in base64: 43 significant chars, the last carrying 2 bits
WG_KEY_RE = re.compile(r"^[A-Za-z0-9+/]{42}[AEIMQUYcgkosw048]=$")

MAX_PEERS = 100
MIN_MTU = 576
MAX_PORT = 65535

REQUIRED_KEYS = {
    "Interface": ("PrivateKey",),
    "Peer": ("PublicKey", "AllowedIPs"),
}


def validate_interface_name(name: str) -> None:
    """Reject names that are not valid interface names or unsafe in paths."""
    if not isinstance(name, str) or not INTERFACE_NAME_RE.match(name) or name in (".", ".."):
        raise ValidationError(f"invalid interface name: {name!r}")


def is_wg_key(value: str) -> bool:
    return bool(WG_KEY_RE.match(value))


class ConfigValidator:
    """Validate a ConfigSummary, raising the first problem found."""

    def __init__(self, strict: bool = True, max_peers: int = MAX_PEERS):
        """
        Initialize validator.

        Args:
            strict: Require peers and refuse catch-all AllowedIPs
            max_peers: Upper bound on peer sections
        """
        self.strict = strict
        self.max_peers = max_peers

    def validate(self, summary: ConfigSummary) -> None:
        """
        Validate a parsed configuration.

        Checks run in order: interface fields, each peer, duplicate
        public keys, then AllowedIPs overlap.

        Raises:
            ValidationError: Malformed field
            ConflictError: Duplicate peer or overlapping AllowedIPs
        """
        try:
            self._validate_interface(summary.interface)
        except ValidationError as e:
            raise ValidationError(f"interface validation failed: {e}") from e

        self._validate_peers(summary.peers)
        detect_ip_conflicts(summary.peers)

    def _validate_interface(self, iface: Mapping[str, str]) -> None:
        for key in REQUIRED_KEYS["Interface"]:
            if key not in iface:
                raise ValidationError(f"missing required key: {key}")

        if not is_wg_key(iface["PrivateKey"]):
            raise ValidationError("invalid PrivateKey format")

        if "Address" in iface:
            validate_addresses(iface["Address"])

        if "ListenPort" in iface:
            self._validate_port(iface["ListenPort"], "ListenPort")

        if "DNS" in iface:
            for server in split_entries(iface["DNS"]):
                try:
                    ipaddress.ip_address(server)
                except ValueError:
                    raise ValidationError(f"invalid DNS server: {server}")

        if "MTU" in iface:
            mtu = self._to_int(iface["MTU"], "MTU")
            if mtu < MIN_MTU or mtu > MAX_PORT:
                raise ValidationError(f"MTU out of range: {mtu} ({MIN_MTU}-{MAX_PORT})")

    def _validate_peers(self, peers: Sequence[Mapping[str, str]]) -> None:
        if self.strict and not peers:
            raise ValidationError("no peers defined")

        if len(peers) > self.max_peers:
            raise ValidationError(f"too many peers: {len(peers)} (max {self.max_peers})")

        seen: set[str] = set()
        for index, peer in enumerate(peers):
            self._validate_peer(peer, index)

            public_key = peer["PublicKey"]
            if public_key in seen:
                raise ConflictError(f"duplicate peer PublicKey: {public_key}")
            seen.add(public_key)

    def _validate_peer(self, peer: Mapping[str, str], index: int) -> None:
        for key in REQUIRED_KEYS["Peer"]:
            if key not in peer:
                raise ValidationError(f"peer {index} missing required key: {key}")

        if not is_wg_key(peer["PublicKey"]):
            raise ValidationError(f"peer {index}: invalid PublicKey format")

        psk = peer.get("PresharedKey", "")
        if psk and not is_wg_key(psk):
            raise ValidationError(f"peer {index}: invalid PresharedKey format")

        try:
            validate_ips(peer["AllowedIPs"], self.strict)
        except ValidationError as e:
            raise ValidationError(f"peer {index}: {e}") from e

        endpoint = peer.get("Endpoint", "")
        if endpoint:
            self._validate_endpoint(endpoint, index)

        keepalive = peer.get("PersistentKeepalive", "")
        if keepalive:
            value = self._to_int(keepalive, f"peer {index}: PersistentKeepalive")
            if value < 0 or value > MAX_PORT:
                raise ValidationError(f"peer {index}: keepalive out of range: {value} (0-{MAX_PORT})")

    def _validate_endpoint(self, endpoint: str, index: int) -> None:
        """Endpoint is host:port, or [v6]:port."""
        host, sep, port = endpoint.rpartition(":")
        if not sep or not host:
            raise ValidationError(f"peer {index}: endpoint missing port: {endpoint}")

        self._validate_port(port, f"peer {index}: Endpoint port")

        host = host.strip("[]")
        try:
            ipaddress.ip_address(host)
        except ValueError:
            if len(host) == 0 or len(host) > 253:
                raise ValidationError(f"peer {index}: invalid hostname length: {host}")

    def _validate_port(self, value: str, label: str) -> None:
        port = self._to_int(value, label)
        if port < 1 or port > MAX_PORT:
            raise ValidationError(f"{label} out of range: {port}")

    @staticmethod
    def _to_int(value: str, label: str) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"invalid {label}: {value}")
