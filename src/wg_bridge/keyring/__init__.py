"""Keyring - exchange/signing key lifecycle and bundle cryptography."""

from .crypto import (
    seal,
    open_sealed,
    make_signature,
    verify_signature,
    fingerprint,
    decode_public_key,
)
from .manager import KeyringManager, KEY_FILES

__all__ = [
    "KeyringManager",
    "KEY_FILES",
    "seal",
    "open_sealed",
    "make_signature",
    "verify_signature",
    "fingerprint",
    "decode_public_key",
]
