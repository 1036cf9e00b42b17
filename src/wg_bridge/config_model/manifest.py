"""Bundle manifest model, validation and payload checksums."""
import hashlib
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import ValidationError, VerificationError
from .validator import validate_interface_name

SUPPORTED_VERSIONS = (1, 2)
MAX_MANIFEST_SIZE = 1024 * 1024
MAX_SOURCE_LENGTH = 255
MAX_FUTURE_SECONDS = 24 * 60 * 60

CHECKSUM_RE = re.compile(r"^[A-Fa-f0-9]{64}$")


def compute_checksum(data: bytes) -> str:
    """Lowercase hex SHA256 of a payload."""
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class Manifest:
    """Metadata record carried inside an exchange bundle."""
    interface: str
    version: int
    checksum: str
    timestamp: Optional[int] = None
    source: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "interface": self.interface,
            "version": self.version,
            "checksum": self.checksum,
        }
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        if self.source is not None:
            data["source"] = self.source
        return data

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()


class ManifestValidator:
    """Validate manifest fields and the payload checksum they describe."""

    def __init__(self, strict: bool = False):
        """
        Initialize validator.

        Args:
            strict: Also reject timestamps that are non-positive or more
                than 24h in the future
        """
        self.strict = strict

    def parse(self, data: bytes) -> Manifest:
        """
        Parse and validate raw manifest JSON.

        Raises:
            ValidationError: Oversized, malformed or invalid manifest
        """
        if len(data) > MAX_MANIFEST_SIZE:
            raise ValidationError(
                f"manifest too large: {len(data)} bytes (max {MAX_MANIFEST_SIZE})"
            )

        try:
            raw = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"invalid manifest JSON: {e}")
        except RecursionError:
            raise ValidationError("invalid manifest JSON: nested too deeply")

        if not isinstance(raw, dict):
            raise ValidationError("manifest must be a JSON object")

        version = raw.get("version")
        timestamp = raw.get("timestamp")
        # bool is an int subclass; reject it explicitly
        if not isinstance(version, int) or isinstance(version, bool):
            raise ValidationError(f"unsupported version: {version!r}")
        if timestamp is not None and (not isinstance(timestamp, int) or isinstance(timestamp, bool)):
            raise ValidationError(f"invalid timestamp: {timestamp!r}")
        for key in ("interface", "checksum"):
            if not isinstance(raw.get(key, ""), str):
                raise ValidationError(f"invalid {key}: {raw[key]!r}")

        manifest = Manifest(
            interface=raw.get("interface", ""),
            version=version,
            checksum=raw.get("checksum", ""),
            timestamp=timestamp,
            source=raw.get("source"),
        )
        self.validate_fields(manifest)
        return manifest

    def validate_fields(self, manifest: Manifest) -> None:
        """Validate manifest field values (not the checksum match)."""
        validate_interface_name(manifest.interface)

        if manifest.version not in SUPPORTED_VERSIONS:
            raise ValidationError(
                f"unsupported version: {manifest.version} (supported: {list(SUPPORTED_VERSIONS)})"
            )

        if not CHECKSUM_RE.match(manifest.checksum):
            raise ValidationError(
                f"invalid checksum: expected 64 hex characters, got {manifest.checksum!r}"
            )

        if manifest.source is not None:
            self._validate_source(manifest.source)

        if self.strict and manifest.timestamp is not None:
            self._validate_timestamp(manifest.timestamp)

    def verify_checksum(self, manifest: Manifest, payload: bytes) -> None:
        """
        Compare the manifest checksum to sha256(payload), case-insensitively.

        Raises:
            ValidationError: Empty payload
            VerificationError: Checksum mismatch
        """
        if not payload:
            raise ValidationError("empty config data")

        expected = compute_checksum(payload)
        if manifest.checksum.lower() != expected:
            raise VerificationError(
                f"checksum mismatch: expected {expected}, got {manifest.checksum}"
            )

    def _validate_source(self, source: Any) -> None:
        if not isinstance(source, str) or not 1 <= len(source) <= MAX_SOURCE_LENGTH:
            raise ValidationError(f"invalid source: length must be 1-{MAX_SOURCE_LENGTH}")
        if any(ord(c) < 32 or ord(c) > 126 for c in source):
            raise ValidationError("invalid source: contains non-printable characters")

    def _validate_timestamp(self, timestamp: int) -> None:
        if timestamp <= 0:
            raise ValidationError(f"invalid timestamp: {timestamp}")
        if timestamp > int(time.time()) + MAX_FUTURE_SECONDS:
            raise ValidationError(f"timestamp too far in future: {timestamp}")
