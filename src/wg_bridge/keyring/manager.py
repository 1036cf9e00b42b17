"""Key material lifecycle: generation, rotation, trust store.

Key directory:
    exchange.key / exchange.pub   X25519, bundle encryption
    signing.key  / signing.pub    Ed25519, bundle signatures
    <name>.<YYYYmmddHHMMSS>       retained rotation backups

All four files hold base64 text of the raw 32-byte key and are 0600.
"""
import logging
import os
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..errors import StorageError, ValidationError, VerificationError
from ..settings import BUNDLE_SUFFIX, SIGNATURE_SUFFIX, BridgeSettings
from ..utils.audit_log import AuditSink
from ..utils.files import OWNER_ONLY, write_atomic
from . import crypto

logger = logging.getLogger(__name__)

EXCHANGE_PRIVATE = "exchange.key"
EXCHANGE_PUBLIC = "exchange.pub"
SIGNING_PRIVATE = "signing.key"
SIGNING_PUBLIC = "signing.pub"
KEY_FILES = (EXCHANGE_PRIVATE, EXCHANGE_PUBLIC, SIGNING_PRIVATE, SIGNING_PUBLIC)

ROTATION_FORMAT = "%Y%m%d%H%M%S"
TRUSTED_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}$")


class KeyringManager:
    """Owns the node's exchange and signing keys."""

    def __init__(self, settings: BridgeSettings, audit: AuditSink):
        self.key_dir = settings.key_dir
        self.trusted_keys_dir = settings.trusted_keys_dir
        self.inbox_dir = settings.inbox_dir
        self.audit = audit
        self._lock = threading.RLock()

    def _path(self, name: str) -> Path:
        return self.key_dir / name

    def _read_key(self, name: str) -> bytes:
        path = self._path(name)
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise StorageError(f"key file missing: {name}", details="run ensure_keys first")
        except OSError as e:
            raise StorageError(f"cannot read key file {name}: {e}")
        try:
            raw = crypto.b64d(text)
        except ValidationError:
            raise StorageError(f"key file {name} is corrupt")
        if len(raw) != crypto.KEY_SIZE:
            raise StorageError(f"key file {name} is corrupt")
        return raw

    def _write_key(self, name: str, raw: bytes) -> None:
        try:
            write_atomic(self._path(name), crypto.b64e(raw) + "\n", mode=OWNER_ONLY)
        except OSError as e:
            raise StorageError(f"cannot write key file {name}: {e}")

    def _generate_exchange(self) -> bytes:
        priv, pub = crypto.x25519_generate()
        self._write_key(EXCHANGE_PRIVATE, priv)
        self._write_key(EXCHANGE_PUBLIC, pub)
        return pub

    def _generate_signing(self) -> bytes:
        priv, pub = crypto.ed25519_generate()
        self._write_key(SIGNING_PRIVATE, priv)
        self._write_key(SIGNING_PUBLIC, pub)
        return pub

    def ensure_keys(self) -> list[str]:
        """
        Generate whichever keypairs are missing.

        Returns:
            Names of the keypairs generated ("exchange", "signing"); empty
            when everything already existed.
        """
        with self._lock:
            try:
                self.key_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
            except OSError as e:
                self.audit.emit("generate_keys", "error", error=str(e))
                raise StorageError(f"cannot create key directory: {e}")

            generated = []
            if not self._path(EXCHANGE_PRIVATE).exists():
                self._generate_exchange()
                generated.append("exchange")
            elif not self._path(EXCHANGE_PUBLIC).exists():
                self._write_key(EXCHANGE_PUBLIC, crypto.x25519_public(self._read_key(EXCHANGE_PRIVATE)))

            if not self._path(SIGNING_PRIVATE).exists():
                self._generate_signing()
                generated.append("signing")
            elif not self._path(SIGNING_PUBLIC).exists():
                self._write_key(SIGNING_PUBLIC, crypto.ed25519_public(self._read_key(SIGNING_PRIVATE)))

            if generated:
                logger.info(f"Generated key material: {', '.join(generated)}")
                self.audit.emit("generate_keys", "success", generated=generated)
            return generated

    # Read-only accessors

    def exchange_private(self) -> bytes:
        return self._read_key(EXCHANGE_PRIVATE)

    def signing_private(self) -> bytes:
        return self._read_key(SIGNING_PRIVATE)

    def get_exchange_key(self) -> str:
        """Public exchange key as base64 text, for senders to encrypt to."""
        return crypto.b64e(self._read_key(EXCHANGE_PUBLIC))

    def get_signing_public(self) -> str:
        return crypto.b64e(self._read_key(SIGNING_PUBLIC))

    def get_signing_fingerprint(self) -> str:
        return crypto.fingerprint(self._read_key(SIGNING_PUBLIC))

    # Trust store

    def trusted_signing_keys(self) -> dict[str, bytes]:
        """
        Collect keys whose signatures ingest accepts.

        Returns:
            fingerprint -> raw Ed25519 public key
        """
        trusted: dict[str, bytes] = {}
        if self.trusted_keys_dir.is_dir():
            for path in sorted(self.trusted_keys_dir.glob("*.pub")):
                try:
                    raw = crypto.decode_public_key(path.read_text())
                except (OSError, ValidationError) as e:
                    logger.warning(f"Ignoring unreadable trusted key {path.name}: {e}")
                    continue
                trusted[crypto.fingerprint(raw)] = raw

        own = self._path(SIGNING_PUBLIC)
        if own.exists():
            raw = self._read_key(SIGNING_PUBLIC)
            trusted[crypto.fingerprint(raw)] = raw
        return trusted

    def trust_signing_key(self, name: str, public_key: str) -> str:
        """
        Add a peer's signing key to the trust store.

        Args:
            name: File stem for the key (<name>.pub)
            public_key: Base64 Ed25519 public key

        Returns:
            Fingerprint of the trusted key
        """
        if not isinstance(name, str) or not TRUSTED_NAME_RE.match(name):
            raise ValidationError(f"invalid trusted key name: {name!r}")
        raw = crypto.decode_public_key(public_key)
        fp = crypto.fingerprint(raw)

        try:
            self.trusted_keys_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
            write_atomic(self.trusted_keys_dir / f"{name}.pub", crypto.b64e(raw) + "\n")
        except OSError as e:
            self.audit.emit("trust_key", "error", name=name, error=str(e))
            raise StorageError(f"cannot store trusted key {name}: {e}")

        self.audit.emit("trust_key", "success", name=name, fingerprint=fp)
        logger.info(f"Trusted signing key {name} ({fp})")
        return fp

    # Rotation

    def _rotation_token(self) -> str:
        base = datetime.now().strftime(ROTATION_FORMAT)
        token = base
        counter = 0
        while any(self._path(f"{name}.{token}").exists() for name in KEY_FILES):
            counter += 1
            token = f"{base}-{counter}"
        return token

    def rotate_keys(self) -> str:
        """
        Replace both keypairs and re-encrypt resident inbox bundles.

        The previous generation is renamed with a timestamp suffix and
        kept. Each inbox bundle whose signature verifies is decrypted
        with the old exchange key, sealed to the new one and re-signed
        with the new signing key. Bundles that fail any step are left
        untouched.

        Returns:
            New public exchange key (base64)
        """
        with self._lock:
            self.key_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
            trusted = self.trusted_signing_keys()
            old_exchange: Optional[bytes] = None
            if self._path(EXCHANGE_PRIVATE).exists():
                old_exchange = self._read_key(EXCHANGE_PRIVATE)

            token = self._rotation_token()
            try:
                for name in KEY_FILES:
                    path = self._path(name)
                    if path.exists():
                        os.rename(path, self._path(f"{name}.{token}"))
            except OSError as e:
                self.audit.emit("rotate_keys", "error", rotation=token, error=str(e))
                raise StorageError(f"cannot back up key material: {e}")

            new_pub = self._generate_exchange()
            self._generate_signing()
            new_signing = self.signing_private()

            reencrypted, skipped = 0, 0
            if old_exchange is not None:
                reencrypted, skipped = self._reencrypt_inbox(old_exchange, new_pub, new_signing, trusted)

            self.audit.emit(
                "rotate_keys", "success",
                rotation=token,
                reencrypted=reencrypted,
                skipped=skipped,
            )
            logger.info(
                f"Rotated keys ({token}): {reencrypted} bundles re-encrypted, {skipped} skipped"
            )
            return crypto.b64e(new_pub)

    def _reencrypt_inbox(
        self,
        old_priv: bytes,
        new_pub: bytes,
        new_signing: bytes,
        trusted: dict[str, bytes],
    ) -> tuple[int, int]:
        if not self.inbox_dir.is_dir():
            return 0, 0

        done, skipped = 0, 0
        for bundle in sorted(self.inbox_dir.glob(f"*{BUNDLE_SUFFIX}")):
            if not bundle.is_file():
                continue
            sig_path = bundle.with_name(bundle.name + SIGNATURE_SUFFIX)
            try:
                blob = bundle.read_bytes()
                crypto.verify_signature(sig_path.read_bytes(), blob, trusted)
                plaintext = crypto.open_sealed(blob, old_priv)
                sealed = crypto.seal(plaintext, new_pub)
                write_atomic(sig_path, crypto.make_signature(new_signing, sealed))
                write_atomic(bundle, sealed)
            except (OSError, VerificationError, ValidationError) as e:
                logger.warning(f"Skipping {bundle.name} during re-encryption: {e}")
                skipped += 1
                continue
            done += 1
        return done, skipped
