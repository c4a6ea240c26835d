"""IP allow-list matching tests."""

import pytest

from tollgate.auth.ip import is_ip_allowed, parse_ip, validate_entry


def test_empty_allow_list_allows_everyone():
    assert is_ip_allowed("203.0.113.9", [])
    assert is_ip_allowed(None, [])


def test_exact_match():
    assert is_ip_allowed("203.0.113.9", ["203.0.113.9"])
    assert not is_ip_allowed("203.0.113.10", ["203.0.113.9"])


def test_cidr_match():
    allowed = ["10.0.0.0/8", "2001:db8::/32"]
    assert is_ip_allowed("10.20.30.40", allowed)
    assert is_ip_allowed("2001:db8::1", allowed)
    assert not is_ip_allowed("11.0.0.1", allowed)
    assert not is_ip_allowed("2001:db9::1", allowed)


def test_ipv4_mapped_ipv6_client_is_compared_as_ipv4():
    assert parse_ip("::ffff:10.0.0.1") == parse_ip("10.0.0.1")
    assert is_ip_allowed("::ffff:10.0.0.1", ["10.0.0.0/24"])
    assert is_ip_allowed("::ffff:192.168.1.5", ["192.168.1.5"])


def test_unparseable_client_never_matches_non_empty_list():
    assert not is_ip_allowed("not-an-ip", ["0.0.0.0/0"])
    assert not is_ip_allowed(None, ["0.0.0.0/0"])


def test_validate_entry_normalises():
    assert validate_entry(" 10.1.2.3/8 ") == "10.0.0.0/8"
    assert validate_entry("::ffff:10.0.0.1") == "10.0.0.1"
    assert validate_entry("2001:DB8::1") == "2001:db8::1"


@pytest.mark.parametrize("entry", ["", "300.1.1.1", "10.0.0.0/33", "example.com"])
def test_validate_entry_rejects_garbage(entry):
    with pytest.raises(ValueError):
        validate_entry(entry)
