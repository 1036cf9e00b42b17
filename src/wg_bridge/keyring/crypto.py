"""Cryptographic primitives for bundle exchange.

- Ed25519: detached signatures over encrypted bundle bytes
- X25519 + HKDF + AES-GCM: sealed-box encryption to a recipient key

Sealed layout: MAGIC | ephemeral X25519 public (32) | nonce (12) | ciphertext+tag.
MAGIC and the ephemeral public key are authenticated as associated data.
"""
import base64
import binascii
import hashlib
import json
import os
from typing import Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ed25519, x25519
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..errors import ValidationError, VerificationError

MAGIC = b"WGX1"
KEY_SIZE = 32
NONCE_SIZE = 12
HKDF_INFO = b"wg-bridge-bundle-v1"
HEADER_SIZE = len(MAGIC) + KEY_SIZE + NONCE_SIZE


def b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64d(text: str) -> bytes:
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"invalid base64: {e}")


def decode_public_key(text: str) -> bytes:
    """Decode a base64 public key and check its length."""
    raw = b64d(text)
    if len(raw) != KEY_SIZE:
        raise ValidationError(f"public key must be {KEY_SIZE} bytes, got {len(raw)}")
    return raw


# --------- Ed25519 (sign/verify) ----------
def ed25519_generate() -> Tuple[bytes, bytes]:
    sk = ed25519.Ed25519PrivateKey.generate()
    return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()


def ed25519_public(priv_raw: bytes) -> bytes:
    return ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw).public_key().public_bytes_raw()


def ed25519_sign(priv_raw: bytes, data: bytes) -> bytes:
    return ed25519.Ed25519PrivateKey.from_private_bytes(priv_raw).sign(data)


def ed25519_verify(pub_raw: bytes, sig: bytes, data: bytes) -> bool:
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(pub_raw).verify(sig, data)
        return True
    except (InvalidSignature, ValueError):
        return False


def fingerprint(pub_raw: bytes) -> str:
    """Stable short identifier for a signing key: sha256 hex, 32 chars."""
    return hashlib.sha256(pub_raw).hexdigest()[:32]


# --------- X25519 + HKDF + AES-GCM (seal/open) ----------
def x25519_generate() -> Tuple[bytes, bytes]:
    sk = x25519.X25519PrivateKey.generate()
    return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()


def x25519_public(priv_raw: bytes) -> bytes:
    return x25519.X25519PrivateKey.from_private_bytes(priv_raw).public_key().public_bytes_raw()


def _derive_key(shared: bytes, ephemeral_pub: bytes) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=ephemeral_pub, info=HKDF_INFO)
    return hkdf.derive(shared)


def seal(plaintext: bytes, recipient_pub: bytes) -> bytes:
    """Encrypt plaintext so only the holder of recipient's private key can read it."""
    try:
        recipient = x25519.X25519PublicKey.from_public_bytes(recipient_pub)
    except ValueError as e:
        raise ValidationError(f"invalid recipient key: {e}")

    ephemeral = x25519.X25519PrivateKey.generate()
    ephemeral_pub = ephemeral.public_key().public_bytes_raw()
    key = _derive_key(ephemeral.exchange(recipient), ephemeral_pub)

    nonce = os.urandom(NONCE_SIZE)
    aad = MAGIC + ephemeral_pub
    return aad + nonce + AESGCM(key).encrypt(nonce, plaintext, aad)


def open_sealed(blob: bytes, priv_raw: bytes) -> bytes:
    """
    Decrypt a sealed blob.

    Raises:
        VerificationError: Wrong key, bad format or tampered ciphertext
    """
    if len(blob) < HEADER_SIZE + 16 or not blob.startswith(MAGIC):
        raise VerificationError("not a sealed bundle")

    ephemeral_pub = blob[len(MAGIC):len(MAGIC) + KEY_SIZE]
    nonce = blob[len(MAGIC) + KEY_SIZE:HEADER_SIZE]
    ciphertext = blob[HEADER_SIZE:]

    sk = x25519.X25519PrivateKey.from_private_bytes(priv_raw)
    try:
        shared = sk.exchange(x25519.X25519PublicKey.from_public_bytes(ephemeral_pub))
    except ValueError as e:
        raise VerificationError(f"invalid ephemeral key: {e}")

    key = _derive_key(shared, ephemeral_pub)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, MAGIC + ephemeral_pub)
    except InvalidTag:
        raise VerificationError("decryption failed: wrong key or corrupted bundle")


# --------- Detached signature documents ----------
def make_signature(priv_raw: bytes, data: bytes) -> bytes:
    """Build the JSON signature document stored next to a bundle."""
    doc = {
        "key_id": fingerprint(ed25519_public(priv_raw)),
        "signature": b64e(ed25519_sign(priv_raw, data)),
    }
    return json.dumps(doc, sort_keys=True).encode() + b"\n"


def parse_signature(raw: bytes) -> Tuple[str, bytes]:
    """
    Returns:
        (key_id, signature bytes)

    Raises:
        VerificationError: Malformed signature document
    """
    try:
        doc = json.loads(raw)
        key_id = doc["key_id"]
        sig = base64.b64decode(doc["signature"], validate=True)
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise VerificationError(f"malformed signature file: {e}")
    if not isinstance(key_id, str):
        raise VerificationError("malformed signature file: key_id must be a string")
    return key_id, sig


def verify_signature(raw_sig: bytes, data: bytes, trusted: dict[str, bytes]) -> str:
    """
    Verify a signature document against a set of trusted keys.

    Args:
        raw_sig: Contents of the .sig file
        data: Signed bytes
        trusted: fingerprint -> raw Ed25519 public key

    Returns:
        Fingerprint of the key that verified

    Raises:
        VerificationError: Unknown signer or bad signature
    """
    key_id, sig = parse_signature(raw_sig)
    pub = trusted.get(key_id)
    if pub is None:
        raise VerificationError(f"signature by untrusted key {key_id}")
    if not ed25519_verify(pub, sig, data):
        raise VerificationError(f"bad signature from key {key_id}")
    return key_id
