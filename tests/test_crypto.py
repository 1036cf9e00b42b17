"""Tests for sealing and signing primitives."""
import json

import pytest

from wg_bridge.errors import ValidationError, VerificationError
from wg_bridge.keyring import crypto


@pytest.fixture
def recipient():
    return crypto.x25519_generate()


@pytest.fixture
def signer():
    return crypto.ed25519_generate()


class TestSeal:
    """Tests for seal/open_sealed."""

    def test_recipient_can_open(self, recipient):
        priv, pub = recipient
        blob = crypto.seal(b"payload", pub)

        assert blob.startswith(crypto.MAGIC)
        assert b"payload" not in blob
        assert crypto.open_sealed(blob, priv) == b"payload"

    def test_each_seal_is_fresh(self, recipient):
        _, pub = recipient
        assert crypto.seal(b"payload", pub) != crypto.seal(b"payload", pub)

    def test_wrong_key(self, recipient):
        _, pub = recipient
        other_priv, _ = crypto.x25519_generate()
        with pytest.raises(VerificationError, match="decryption failed"):
            crypto.open_sealed(crypto.seal(b"payload", pub), other_priv)

    def test_tampered_ciphertext(self, recipient):
        priv, pub = recipient
        blob = bytearray(crypto.seal(b"payload", pub))
        blob[-1] ^= 0x01
        with pytest.raises(VerificationError):
            crypto.open_sealed(bytes(blob), priv)

    def test_tampered_header(self, recipient):
        priv, pub = recipient
        blob = bytearray(crypto.seal(b"payload", pub))
        blob[len(crypto.MAGIC)] ^= 0x01
        with pytest.raises(VerificationError):
            crypto.open_sealed(bytes(blob), priv)

    def test_not_a_sealed_blob(self, recipient):
        priv, _ = recipient
        with pytest.raises(VerificationError, match="not a sealed bundle"):
            crypto.open_sealed(b"plain tar data" * 10, priv)

    def test_bad_recipient_key(self):
        with pytest.raises(ValidationError):
            crypto.seal(b"payload", b"short")


class TestSignatures:
    """Tests for detached signature documents."""

    def test_verify_with_trusted_key(self, signer):
        priv, pub = signer
        sig = crypto.make_signature(priv, b"data")
        trusted = {crypto.fingerprint(pub): pub}

        assert crypto.verify_signature(sig, b"data", trusted) == crypto.fingerprint(pub)
        assert json.loads(sig)["key_id"] == crypto.fingerprint(pub)

    def test_untrusted_signer(self, signer):
        priv, _ = signer
        _, other_pub = crypto.ed25519_generate()
        sig = crypto.make_signature(priv, b"data")
        with pytest.raises(VerificationError, match="untrusted"):
            crypto.verify_signature(sig, b"data", {crypto.fingerprint(other_pub): other_pub})

    def test_modified_data(self, signer):
        priv, pub = signer
        sig = crypto.make_signature(priv, b"data")
        with pytest.raises(VerificationError, match="bad signature"):
            crypto.verify_signature(sig, b"data!", {crypto.fingerprint(pub): pub})

    def test_key_id_spoofing(self, signer):
        """Claiming a trusted key id does not help a different signer."""
        priv, _ = signer
        _, trusted_pub = crypto.ed25519_generate()
        doc = json.loads(crypto.make_signature(priv, b"data"))
        doc["key_id"] = crypto.fingerprint(trusted_pub)
        with pytest.raises(VerificationError, match="bad signature"):
            crypto.verify_signature(
                json.dumps(doc).encode(), b"data", {crypto.fingerprint(trusted_pub): trusted_pub}
            )

    @pytest.mark.parametrize("raw", [b"", b"not json", b"{}", b'{"key_id": 1, "signature": ""}',
                                     b'{"key_id": "a", "signature": "***"}'])
    def test_malformed_signature_file(self, raw):
        with pytest.raises(VerificationError, match="malformed"):
            crypto.verify_signature(raw, b"data", {})


class TestKeyEncoding:
    def test_fingerprint_shape(self, signer):
        _, pub = signer
        fp = crypto.fingerprint(pub)
        assert len(fp) == 32
        int(fp, 16)

    def test_decode_public_key(self, signer):
        _, pub = signer
        assert crypto.decode_public_key(crypto.b64e(pub) + "\n") == pub

    @pytest.mark.parametrize("text", ["", "!!!", "YWJj"])
    def test_decode_rejects_bad_keys(self, text):
        with pytest.raises(ValidationError):
            crypto.decode_public_key(text)

    def test_public_derivation(self):
        priv, pub = crypto.x25519_generate()
        assert crypto.x25519_public(priv) == pub
        priv, pub = crypto.ed25519_generate()
        assert crypto.ed25519_public(priv) == pub
