"""Tests for the bundle archive format."""
import io
import tarfile

import pytest

from wg_bridge.config_model import Manifest, ManifestValidator, compute_checksum
from wg_bridge.errors import ValidationError
from wg_bridge.exchange import bundle as archive

CONFIG = b"[Interface]\nPrivateKey = X\n"


def manifest() -> Manifest:
    return Manifest("wg0", 2, compute_checksum(CONFIG), 1700000000, "site-a")


def raw_tar(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class TestPackUnpack:
    """Tests for pack/unpack."""

    def test_contents_survive(self):
        data = archive.pack(manifest(), CONFIG, {"notes.txt": b"hello", "meta/sub/peer.pub": b"k"})
        contents = archive.unpack(data, ManifestValidator())

        assert contents.manifest == manifest()
        assert contents.config == CONFIG
        assert contents.meta == {"notes.txt": b"hello", "sub/peer.pub": b"k"}

    def test_unpack_from_path(self, tmp_path):
        path = tmp_path / "b.tar"
        path.write_bytes(archive.pack(manifest(), CONFIG))
        assert archive.unpack(path, ManifestValidator()).config == CONFIG

    def test_member_layout(self):
        with tarfile.open(fileobj=io.BytesIO(archive.pack(manifest(), CONFIG, {"a": b"1"}))) as tar:
            assert tar.getnames() == ["manifest.json", "config.conf", "meta/a"]

    def test_unknown_members_ignored(self):
        data = raw_tar({"manifest.json": manifest().to_json(), "config.conf": CONFIG, "README": b"x"})
        contents = archive.unpack(data, ManifestValidator())
        assert contents.meta == {}

    def test_missing_manifest(self):
        with pytest.raises(ValidationError, match="missing manifest"):
            archive.unpack(raw_tar({"config.conf": CONFIG}), ManifestValidator())

    def test_empty_payload(self):
        data = raw_tar({"manifest.json": manifest().to_json(), "config.conf": b""})
        with pytest.raises(ValidationError, match="empty configuration"):
            archive.unpack(data, ManifestValidator())

    def test_missing_payload(self):
        with pytest.raises(ValidationError, match="empty configuration"):
            archive.unpack(raw_tar({"manifest.json": manifest().to_json()}), ManifestValidator())

    def test_traversal_member_rejected(self):
        data = raw_tar({
            "manifest.json": manifest().to_json(),
            "config.conf": CONFIG,
            "meta/../escape": b"x",
        })
        with pytest.raises(ValidationError, match="metadata name"):
            archive.unpack(data, ManifestValidator())

    def test_corrupt_archive(self):
        with pytest.raises(ValidationError, match="corrupt"):
            archive.unpack(b"\x00not a tar" * 100, ManifestValidator())

    def test_bad_manifest_propagates(self):
        data = raw_tar({"manifest.json": b"{}", "config.conf": CONFIG})
        with pytest.raises(ValidationError):
            archive.unpack(data, ManifestValidator())


class TestSanitizeMetaName:
    @pytest.mark.parametrize("name,expected", [
        ("notes.txt", "notes.txt"),
        ("meta/notes.txt", "notes.txt"),
        ("peers/b.pub", "peers/b.pub"),
    ])
    def test_accepts(self, name, expected):
        assert archive.sanitize_meta_name(name) == expected

    @pytest.mark.parametrize("name", ["", "/etc/passwd", "../x", "a/../../x", ".hidden", "sp ace"])
    def test_rejects(self, name):
        with pytest.raises(ValidationError):
            archive.sanitize_meta_name(name)

    def test_pack_rejects_bad_name(self):
        with pytest.raises(ValidationError):
            archive.pack(manifest(), CONFIG, {"../evil": b"x"})
