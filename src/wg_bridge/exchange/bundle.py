"""Bundle archive format.

A decrypted bundle is a POSIX tar holding:
    manifest.json   Manifest record
    config.conf     Configuration text
    meta/<name>     Optional auxiliary files
Other members are ignored.
"""
import io
import re
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional, Union

from ..config_model import Manifest, ManifestValidator
from ..errors import ValidationError

MANIFEST_NAME = "manifest.json"
CONFIG_NAME = "config.conf"
META_PREFIX = "meta/"

MAX_MEMBER_SIZE = 16 * 1024 * 1024
META_PART_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.+-]{0,127}$")


def sanitize_meta_name(name: str) -> str:
    """
    Normalise an auxiliary file name relative to meta/.

    Raises:
        ValidationError: Empty name, absolute path, traversal or odd characters
    """
    if name.startswith(META_PREFIX):
        name = name[len(META_PREFIX):]
    path = PurePosixPath(name)
    if not name or path.is_absolute():
        raise ValidationError(f"invalid metadata name: {name!r}")
    for part in path.parts:
        if part in (".", "..") or not META_PART_RE.match(part):
            raise ValidationError(f"invalid metadata name: {name!r}")
    return str(path)


@dataclass
class BundleContents:
    """Unpacked bundle payload."""
    manifest: Manifest
    config: bytes
    meta: dict[str, bytes] = field(default_factory=dict)


def _add_member(tar: tarfile.TarFile, name: str, data: bytes, mtime: int) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = 0o600
    info.mtime = mtime
    tar.addfile(info, io.BytesIO(data))


def pack(manifest: Manifest, config: bytes, meta: Optional[dict[str, bytes]] = None) -> bytes:
    """Build the tar archive for a bundle."""
    mtime = manifest.timestamp or int(time.time())
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        _add_member(tar, MANIFEST_NAME, manifest.to_json(), mtime)
        _add_member(tar, CONFIG_NAME, config, mtime)
        for name, data in sorted((meta or {}).items()):
            _add_member(tar, META_PREFIX + sanitize_meta_name(name), data, mtime)
    return buf.getvalue()


def unpack(source: Union[Path, bytes], validator: ManifestValidator) -> BundleContents:
    """
    Read manifest, payload and metadata out of a bundle archive.

    Args:
        source: Path to the tar file, or its bytes
        validator: Validates the manifest fields

    Raises:
        ValidationError: Corrupt archive, missing manifest, empty payload,
            oversized member or unsafe metadata name
    """
    manifest_raw: Optional[bytes] = None
    config = b""
    meta: dict[str, bytes] = {}

    try:
        if isinstance(source, bytes):
            tar = tarfile.open(fileobj=io.BytesIO(source), mode="r:")
        else:
            tar = tarfile.open(source, mode="r:")
        with tar:
            for member in tar:
                if not member.isfile():
                    continue
                if member.size > MAX_MEMBER_SIZE:
                    raise ValidationError(f"bundle member {member.name} too large")
                if member.name == MANIFEST_NAME:
                    manifest_raw = _read(tar, member)
                elif member.name == CONFIG_NAME:
                    config = _read(tar, member)
                elif member.name.startswith(META_PREFIX):
                    meta[sanitize_meta_name(member.name)] = _read(tar, member)
    except tarfile.TarError as e:
        raise ValidationError(f"corrupt bundle archive: {e}")

    if manifest_raw is None:
        raise ValidationError("incomplete bundle: missing manifest")
    if not config:
        raise ValidationError("incomplete bundle: empty configuration payload")

    return BundleContents(manifest=validator.parse(manifest_raw), config=config, meta=meta)


def _read(tar: tarfile.TarFile, member: tarfile.TarInfo) -> bytes:
    f = tar.extractfile(member)
    if f is None:
        raise ValidationError(f"unreadable bundle member {member.name}")
    with f:
        return f.read()
