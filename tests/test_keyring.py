"""Tests for key generation, rotation and the trust store."""
import re
import stat

import pytest

from conftest import build_bundle
from wg_bridge.errors import StorageError, ValidationError, VerificationError
from wg_bridge.exchange import ExchangeIngestPipeline
from wg_bridge.keyring import KEY_FILES, KeyringManager, crypto

CONFIG = b"[Interface]\nPrivateKey = X\n"


class TestEnsureKeys:
    """Tests for ensure_keys."""

    def test_generates_all_four_files(self, settings, audit):
        ring = KeyringManager(settings, audit)
        assert ring.ensure_keys() == ["exchange", "signing"]

        for name in KEY_FILES:
            path = settings.key_dir / name
            assert path.exists()
            assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert len(audit.find("generate_keys", "success")) == 1

    def test_idempotent(self, settings, audit):
        ring = KeyringManager(settings, audit)
        ring.ensure_keys()
        key = ring.get_exchange_key()

        assert ring.ensure_keys() == []
        assert ring.get_exchange_key() == key
        assert len(audit.find("generate_keys")) == 1

    def test_regenerates_missing_public_half(self, keyring, settings, audit):
        key = keyring.get_exchange_key()
        (settings.key_dir / "exchange.pub").unlink()

        assert keyring.ensure_keys() == []
        assert keyring.get_exchange_key() == key

    def test_public_key_matches_private(self, keyring):
        pub = crypto.decode_public_key(keyring.get_exchange_key())
        assert crypto.x25519_public(keyring.exchange_private()) == pub

    def test_fingerprint(self, keyring):
        pub = crypto.decode_public_key(keyring.get_signing_public())
        assert keyring.get_signing_fingerprint() == crypto.fingerprint(pub)

    def test_missing_keys(self, settings, audit):
        ring = KeyringManager(settings, audit)
        with pytest.raises(StorageError, match="missing"):
            ring.get_exchange_key()

    def test_corrupt_key_file(self, keyring, settings):
        (settings.key_dir / "exchange.key").write_text("garbage!")
        with pytest.raises(StorageError, match="corrupt"):
            keyring.exchange_private()


class TestRotateKeys:
    """Tests for rotate_keys."""

    def test_backs_up_previous_generation(self, keyring, settings, audit):
        old_exchange = keyring.get_exchange_key()
        old_fp = keyring.get_signing_fingerprint()

        new_exchange = keyring.rotate_keys()

        assert new_exchange != old_exchange
        assert keyring.get_exchange_key() == new_exchange
        assert keyring.get_signing_fingerprint() != old_fp

        record = audit.find("rotate_keys", "success")[0]
        token = record.get("rotation")
        assert re.fullmatch(r"\d{14}", token)
        for name in KEY_FILES:
            assert (settings.key_dir / f"{name}.{token}").exists()
        assert (settings.key_dir / f"exchange.pub.{token}").read_text().strip() == old_exchange

    def test_rotations_never_overwrite_backups(self, keyring, settings, audit):
        keyring.rotate_keys()
        keyring.rotate_keys()

        tokens = [r.get("rotation") for r in audit.find("rotate_keys", "success")]
        assert len(set(tokens)) == 2
        backups = [p for p in settings.key_dir.iterdir() if p.name not in KEY_FILES]
        assert len(backups) == 8

    @pytest.mark.asyncio
    async def test_inbox_bundle_readable_after_rotation(self, keyring, settings, audit):
        """A bundle sealed to the old key is ingestible once rotation completes."""
        old_pub = crypto.decode_public_key(keyring.get_exchange_key())
        bundle = build_bundle(settings.inbox_dir, "site-b", CONFIG, old_pub, keyring.signing_private())
        original = bundle.read_bytes()

        keyring.rotate_keys()

        # without the re-encryption pass the new key could not open it
        with pytest.raises(VerificationError):
            crypto.open_sealed(original, keyring.exchange_private())
        assert bundle.read_bytes() != original
        assert audit.find("rotate_keys")[0].get("reencrypted") == 1

        pipeline = ExchangeIngestPipeline(settings, keyring, audit)
        assert await pipeline.handle_bundle(bundle) == "wg0"
        assert (settings.pending_dir / "wg0" / "config.conf").read_bytes() == CONFIG

    def test_unverifiable_bundle_skipped(self, keyring, settings, audit):
        old_pub = crypto.decode_public_key(keyring.get_exchange_key())
        unsigned = build_bundle(settings.inbox_dir, "unsigned", CONFIG, old_pub, None)
        before = unsigned.read_bytes()

        keyring.rotate_keys()

        assert unsigned.read_bytes() == before
        record = audit.find("rotate_keys", "success")[0]
        assert record.get("skipped") == 1
        assert record.get("reencrypted") == 0

    def test_foreign_bundle_skipped(self, keyring, settings, audit):
        _, foreign_pub = crypto.x25519_generate()
        foreign = build_bundle(settings.inbox_dir, "foreign", CONFIG, foreign_pub, keyring.signing_private())
        before = foreign.read_bytes()

        keyring.rotate_keys()

        assert foreign.read_bytes() == before
        assert audit.find("rotate_keys")[0].get("skipped") == 1


class TestTrustStore:
    """Tests for trusted signing keys."""

    def test_own_key_is_trusted(self, keyring):
        pub = crypto.decode_public_key(keyring.get_signing_public())
        assert keyring.trusted_signing_keys() == {crypto.fingerprint(pub): pub}

    def test_trust_peer_key(self, keyring, settings, audit):
        _, peer_pub = crypto.ed25519_generate()
        fp = keyring.trust_signing_key("site-b", crypto.b64e(peer_pub))

        assert fp == crypto.fingerprint(peer_pub)
        assert (settings.trusted_keys_dir / "site-b.pub").exists()
        assert keyring.trusted_signing_keys()[fp] == peer_pub
        assert audit.find("trust_key", "success")[0].get("fingerprint") == fp

    def test_unreadable_trusted_key_ignored(self, keyring, settings):
        (settings.trusted_keys_dir / "broken.pub").write_text("not base64!")
        assert len(keyring.trusted_signing_keys()) == 1

    @pytest.mark.parametrize("name", ["", "../x", ".hidden", "a/b", "x" * 65])
    def test_rejects_bad_names(self, keyring, name):
        _, peer_pub = crypto.ed25519_generate()
        with pytest.raises(ValidationError):
            keyring.trust_signing_key(name, crypto.b64e(peer_pub))

    def test_rejects_bad_key(self, keyring):
        with pytest.raises(ValidationError):
            keyring.trust_signing_key("site-b", "c2hvcnQ=")
