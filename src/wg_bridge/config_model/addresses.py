"""AllowedIPs syntax checks and overlap detection between peers."""
import ipaddress
from typing import Iterable, Mapping, Union

from ..errors import ConflictError, ValidationError

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

# Literal catch-all routes refused in strict mode
CATCH_ALL_ROUTES = ("0.0.0.0/0", "::/0")


def split_entries(value: str) -> list[str]:
    """Split a comma-separated list, trimming and skipping empty entries."""
    return [e.strip() for e in value.split(",") if e.strip()]


def parse_entry(entry: str) -> Union[IPNetwork, IPAddress, None]:
    """
    Classify one entry as a network (has a prefix) or a host address.

    Host bits in a CIDR are tolerated and masked off ("10.0.0.1/24" is
    the 10.0.0.0/24 network). Returns None if the entry is neither.
    """
    if "/" in entry:
        addr, _, prefix = entry.partition("/")
        if not prefix.isdigit():
            return None
        try:
            return ipaddress.ip_network(f"{addr}/{prefix}", strict=False)
        except ValueError:
            return None

    try:
        return ipaddress.ip_address(entry)
    except ValueError:
        return None


def validate_ips(allowed_ips: str, strict: bool = False) -> None:
    """
    Validate an AllowedIPs value.

    Args:
        allowed_ips: Comma-separated CIDRs and/or bare addresses
        strict: Reject the catch-all routes 0.0.0.0/0 and ::/0

    Raises:
        ValidationError: On the first invalid or disallowed entry
    """
    if not allowed_ips.strip():
        raise ValidationError("empty AllowedIPs")

    for entry in split_entries(allowed_ips):
        if strict and entry in CATCH_ALL_ROUTES:
            raise ValidationError(f"disallowed AllowedIPs {entry}")

        if parse_entry(entry) is None:
            raise ValidationError(f"invalid AllowedIPs {entry}")


def validate_addresses(value: str) -> None:
    """Validate an interface Address list (IPs or CIDRs, no catch-all rule)."""
    for entry in split_entries(value):
        if parse_entry(entry) is None:
            raise ValidationError(f"invalid address: {entry}")


def detect_ip_conflicts(peers: Iterable[Mapping[str, str]]) -> None:
    """
    Check that no two peers route overlapping addresses.

    Peers are processed in order and the first conflict aborts, so the
    error names the later of the two offending entries. Networks are
    compared with full range intersection; a host address conflicts with
    any earlier network containing it or an equal earlier host.

    Raises:
        ValidationError: A peer lacks PublicKey or AllowedIPs
        ConflictError: Two entries overlap
    """
    networks: list[IPNetwork] = []
    hosts: list[IPAddress] = []

    for index, peer in enumerate(peers):
        public_key = peer.get("PublicKey", "")
        if not public_key:
            raise ValidationError(f"peer {index} missing PublicKey")

        allowed = peer.get("AllowedIPs", "")
        if not allowed:
            raise ValidationError(f"peer {public_key} missing AllowedIPs")

        for entry in split_entries(allowed):
            parsed = parse_entry(entry)
            if parsed is None:
                continue

            if isinstance(parsed, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
                for existing in networks:
                    if parsed.version == existing.version and parsed.overlaps(existing):
                        raise ConflictError(
                            f"overlapping AllowedIPs: {entry} conflicts with existing range {existing}"
                        )
                for existing_host in hosts:
                    if existing_host in parsed:
                        raise ConflictError(
                            f"overlapping AllowedIPs: {entry} contains existing address {existing_host}"
                        )
                networks.append(parsed)
            else:
                for existing in networks:
                    if parsed in existing:
                        raise ConflictError(
                            f"IP {entry} conflicts with existing range {existing}"
                        )
                if parsed in hosts:
                    raise ConflictError(f"duplicate IP {entry}")
                hosts.append(parsed)
