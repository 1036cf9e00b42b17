"""Tests for the configuration parser."""
import dataclasses

import pytest

from wg_bridge.config_model import (
    ConfigParser,
    EmptyKeyError,
    LineError,
    MalformedLineError,
    MissingInterfaceError,
    NoPeersError,
    OutsideSectionError,
    UnknownSectionError,
    parse_config,
    render_config,
)
from wg_bridge.errors import ValidationError


class TestParse:
    """Tests for ConfigParser.parse."""

    def test_literal_scenario(self):
        """Minimal interface plus one peer parses to the expected mappings."""
        summary = parse_config("[Interface]\nPrivateKey = X\n\n[Peer]\nPublicKey = Y\nAllowedIPs = 10.0.0.2/32")

        assert dict(summary.interface) == {"PrivateKey": "X"}
        assert len(summary.peers) == 1
        assert dict(summary.peers[0]) == {"PublicKey": "Y", "AllowedIPs": "10.0.0.2/32"}

    def test_comments_and_blank_lines_skipped(self):
        text = """
# leading comment
[Interface]
; semicolon comment
PrivateKey = X

   # indented comment
[Peer]
PublicKey = Y
AllowedIPs = 10.0.0.2/32
"""
        summary = parse_config(text)
        assert dict(summary.interface) == {"PrivateKey": "X"}
        assert summary.peer_keys == ["Y"]

    def test_splits_on_first_equals(self):
        """Base64 padding in values survives."""
        summary = parse_config("[Interface]\nPrivateKey = abc==\n")
        assert summary.interface["PrivateKey"] == "abc=="

    def test_repeated_interface_sections_merge(self):
        """A second [Interface] merges into the first; later keys win."""
        text = (
            "[Interface]\nPrivateKey = X\nListenPort = 1000\n"
            "[Peer]\nPublicKey = Y\nAllowedIPs = 10.0.0.2/32\n"
            "[Interface]\nListenPort = 2000\nMTU = 1420\n"
        )
        summary = parse_config(text)

        assert dict(summary.interface) == {"PrivateKey": "X", "ListenPort": "2000", "MTU": "1420"}
        assert len(summary.peers) == 1

    def test_each_peer_header_starts_new_mapping(self):
        text = "[Interface]\nPrivateKey = X\n[Peer]\nPublicKey = A\n[Peer]\nPublicKey = B\n"
        summary = parse_config(text)
        assert summary.peer_keys == ["A", "B"]

    def test_unknown_section(self):
        with pytest.raises(UnknownSectionError) as exc_info:
            parse_config("[Interface]\nPrivateKey = X\n\n[Bogus]\n")
        assert exc_info.value.line == 4
        assert exc_info.value.section == "Bogus"
        assert "line 4" in str(exc_info.value)

    def test_key_outside_section(self):
        with pytest.raises(OutsideSectionError) as exc_info:
            parse_config("PrivateKey = X\n[Interface]\n")
        assert exc_info.value.line == 1

    def test_empty_key(self):
        with pytest.raises(EmptyKeyError) as exc_info:
            parse_config("[Interface]\n = value\n")
        assert exc_info.value.line == 2

    def test_line_without_equals(self):
        with pytest.raises(MalformedLineError):
            parse_config("[Interface]\nPrivateKey\n")

    def test_empty_interface_is_fatal(self):
        with pytest.raises(MissingInterfaceError):
            parse_config("[Interface]\n[Peer]\nPublicKey = Y\n")

    def test_strict_requires_peer(self):
        with pytest.raises(NoPeersError):
            ConfigParser(strict=True).parse("[Interface]\nPrivateKey = X\n")

    def test_non_strict_allows_no_peers(self):
        summary = ConfigParser(strict=False).parse("[Interface]\nPrivateKey = X\n")
        assert summary.peers == ()

    def test_errors_are_validation_errors(self):
        """Parse failures share the ValidationError code."""
        with pytest.raises(ValidationError):
            parse_config("[Nope]\n")
        assert issubclass(LineError, ValidationError)


class TestConfigSummary:
    """Tests for the immutable summary."""

    def test_mappings_are_read_only(self):
        summary = parse_config("[Interface]\nPrivateKey = X\n[Peer]\nPublicKey = Y\n")
        with pytest.raises(TypeError):
            summary.interface["PrivateKey"] = "Z"
        with pytest.raises(TypeError):
            summary.peers[0]["PublicKey"] = "Z"

    def test_frozen(self):
        summary = parse_config("[Interface]\nPrivateKey = X\n")
        with pytest.raises(dataclasses.FrozenInstanceError):
            summary.peers = ()

    def test_to_dict(self):
        summary = parse_config("[Interface]\nPrivateKey = X\nListenPort = 51820\n[Peer]\nPublicKey = Y\n")
        assert summary.to_dict() == {
            "interface": {"PrivateKey": "X", "ListenPort": "51820"},
            "peers": [{"PublicKey": "Y"}],
        }
        assert summary.listen_port == "51820"


class TestRenderConfig:
    """Tests for rendering a summary back to text."""

    def test_strip_quick_keys(self):
        text = (
            "[Interface]\nPrivateKey = X\nAddress = 10.0.0.1/24\nDNS = 1.1.1.1\n"
            "ListenPort = 51820\nPostUp = iptables -A FORWARD\n"
            "[Peer]\nPublicKey = Y\nAllowedIPs = 10.0.0.2/32\n"
        )
        rendered = render_config(parse_config(text), strip_quick=True)

        assert "Address" not in rendered
        assert "DNS" not in rendered
        assert "PostUp" not in rendered
        assert "ListenPort = 51820" in rendered
        assert "PublicKey = Y" in rendered

    def test_full_render_reparses(self):
        summary = parse_config("[Interface]\nPrivateKey = X\nAddress = 10.0.0.1/24\n[Peer]\nPublicKey = Y\n")
        assert parse_config(render_config(summary)) == summary
