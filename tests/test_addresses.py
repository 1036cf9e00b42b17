"""Tests for AllowedIPs validation and overlap detection."""
import pytest

from wg_bridge.config_model import detect_ip_conflicts, split_entries, validate_ips
from wg_bridge.errors import ConflictError, ValidationError


def peers(*allowed):
    return [{"PublicKey": f"key{i}", "AllowedIPs": a} for i, a in enumerate(allowed)]


class TestValidateIPs:
    """Tests for validate_ips."""

    def test_catch_all_rejected_in_strict_mode(self):
        with pytest.raises(ValidationError):
            validate_ips("0.0.0.0/0", strict=True)

    def test_catch_all_allowed_when_not_strict(self):
        validate_ips("0.0.0.0/0", strict=False)
        validate_ips("::/0", strict=False)

    def test_ipv6_catch_all_rejected_in_strict_mode(self):
        with pytest.raises(ValidationError, match="::/0"):
            validate_ips("10.0.0.2/32, ::/0", strict=True)

    def test_bare_addresses_and_cidrs(self):
        validate_ips("10.0.0.2, 10.1.0.0/16, fd00::2, fd00:1::/64", strict=True)

    def test_empty_entries_skipped(self):
        validate_ips(" 10.0.0.1/32 , , 10.0.0.2/32 ,", strict=True)
        assert split_entries(" a , , b ,") == ["a", "b"]

    @pytest.mark.parametrize("value", ["10.0.0.300/32", "10.0.0.0/abc", "not-an-ip", "10.0.0.0/33"])
    def test_invalid_entries(self, value):
        with pytest.raises(ValidationError, match="invalid AllowedIPs"):
            validate_ips(value)

    def test_empty_value(self):
        with pytest.raises(ValidationError):
            validate_ips("   ")


class TestDetectIPConflicts:
    """Tests for detect_ip_conflicts."""

    def test_network_containing_later_host_route(self):
        with pytest.raises(ConflictError) as exc_info:
            detect_ip_conflicts(peers("10.0.0.0/24", "10.0.0.1/32"))
        assert "10.0.0.1/32" in str(exc_info.value)

    def test_disjoint_hosts_pass(self):
        detect_ip_conflicts(peers("10.0.0.1/32", "10.0.0.2/32"))

    def test_later_network_containing_earlier_route(self):
        with pytest.raises(ConflictError):
            detect_ip_conflicts(peers("10.0.0.1/32", "10.0.0.0/24"))

    def test_non_aligned_overlap_detected(self):
        """Partial overlap without either base address inside the other."""
        with pytest.raises(ConflictError):
            detect_ip_conflicts(peers("10.0.0.0/23", "10.0.1.128/25"))

    def test_bare_host_inside_later_network(self):
        with pytest.raises(ConflictError, match="contains existing address"):
            detect_ip_conflicts(peers("10.0.0.5", "10.0.0.0/24"))

    def test_bare_host_inside_earlier_network(self):
        with pytest.raises(ConflictError, match="conflicts with existing range"):
            detect_ip_conflicts(peers("10.0.0.0/24", "10.0.0.5"))

    def test_duplicate_bare_host(self):
        with pytest.raises(ConflictError, match="duplicate IP"):
            detect_ip_conflicts(peers("10.0.0.5", "10.0.0.5"))

    def test_address_families_never_conflict(self):
        detect_ip_conflicts(peers("0.0.0.0/0", "::/0"))

    def test_first_conflict_in_insertion_order(self):
        with pytest.raises(ConflictError) as exc_info:
            detect_ip_conflicts(peers("10.0.0.0/24", "10.0.1.0/24", "10.0.1.7/32", "10.0.0.9/32"))
        assert "10.0.1.7/32" in str(exc_info.value)

    def test_missing_public_key(self):
        with pytest.raises(ValidationError, match="PublicKey") as exc_info:
            detect_ip_conflicts([{"AllowedIPs": "10.0.0.1/32"}])
        assert not isinstance(exc_info.value, ConflictError)

    def test_missing_allowed_ips(self):
        with pytest.raises(ValidationError, match="AllowedIPs"):
            detect_ip_conflicts([{"PublicKey": "abc"}])
