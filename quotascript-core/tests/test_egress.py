"""Tests for IP classification and the egress policy decision."""

import ipaddress

import pytest

from quotascript.models.config import EgressPolicy
from quotascript.policy.egress import (
    classify_ip,
    ipv4_is_private,
    ipv6_is_link_local,
    ipv6_is_unique_local,
    ipv6_mapped_ipv4,
    is_disallowed_ip,
    parse_ip,
)


def ip(value: str):
    return ipaddress.ip_address(value)


class TestIpv4Predicates:

    @pytest.mark.parametrize("addr", ["10.0.0.1", "172.16.0.1", "172.31.255.255", "192.168.1.1"])
    def test_private_ranges(self, addr):
        assert ipv4_is_private(ip(addr))

    @pytest.mark.parametrize("addr", ["172.15.0.1", "172.32.0.1", "8.8.8.8", "192.169.0.1"])
    def test_not_private(self, addr):
        assert not ipv4_is_private(ip(addr))


class TestIpv6Predicates:

    def test_unique_local(self):
        assert ipv6_is_unique_local(ip("fd00::1"))
        assert ipv6_is_unique_local(ip("fc00::1"))
        assert not ipv6_is_unique_local(ip("2001:db8::1"))

    def test_link_local(self):
        assert ipv6_is_link_local(ip("fe80::1"))
        assert ipv6_is_link_local(ip("febf::1"))
        assert not ipv6_is_link_local(ip("fec0::1"))

    def test_mapped_ipv4(self):
        assert ipv6_mapped_ipv4(ip("::ffff:127.0.0.1")) == ip("127.0.0.1")
        assert ipv6_mapped_ipv4(ip("2001:db8::1")) is None


class TestAlwaysBlocked:
    """Link-local, unspecified, multicast and broadcast are blocked under both policies."""

    @pytest.mark.parametrize("policy", [EgressPolicy.STRICT, EgressPolicy.TRUSTED])
    @pytest.mark.parametrize(
        "addr",
        [
            "169.254.169.254",
            "0.0.0.0",
            "224.0.0.1",
            "239.255.255.250",
            "255.255.255.255",
            "fe80::1",
            "::",
            "ff02::1",
        ],
    )
    def test_blocked(self, addr, policy):
        assert is_disallowed_ip(ip(addr), policy)


class TestStrictOnly:
    """Loopback and private ranges are blocked only under STRICT."""

    @pytest.mark.parametrize(
        "addr", ["127.0.0.1", "127.8.8.8", "10.1.2.3", "172.20.0.1", "192.168.0.10", "::1", "fd12::1"]
    )
    def test_strict_blocks(self, addr):
        assert is_disallowed_ip(ip(addr), EgressPolicy.STRICT)

    @pytest.mark.parametrize(
        "addr", ["127.0.0.1", "10.1.2.3", "192.168.0.10", "::1", "fd12::1"]
    )
    def test_trusted_allows(self, addr):
        assert not is_disallowed_ip(ip(addr), EgressPolicy.TRUSTED)

    @pytest.mark.parametrize("policy", [EgressPolicy.STRICT, EgressPolicy.TRUSTED])
    @pytest.mark.parametrize("addr", ["93.184.216.34", "8.8.8.8", "2606:4700::1111"])
    def test_public_allowed(self, addr, policy):
        assert not is_disallowed_ip(ip(addr), policy)


class TestMappedAddresses:
    """IPv4-mapped IPv6 addresses are judged as the IPv4 address they carry."""

    def test_mapped_loopback_strict(self):
        assert is_disallowed_ip(ip("::ffff:127.0.0.1"), EgressPolicy.STRICT)

    def test_mapped_metadata_always(self):
        assert is_disallowed_ip(ip("::ffff:169.254.169.254"), EgressPolicy.TRUSTED)

    def test_mapped_public_allowed(self):
        assert not is_disallowed_ip(ip("::ffff:8.8.8.8"), EgressPolicy.STRICT)


class TestParseIp:

    def test_plain(self):
        assert parse_ip("10.0.0.1") == ip("10.0.0.1")

    def test_brackets_and_zone(self):
        assert parse_ip("[fe80::1%eth0]") == ip("fe80::1")

    def test_hostname_is_none(self):
        assert parse_ip("api.example.com") is None


class TestClassifyIp:

    def test_labels(self):
        assert classify_ip(ip("127.0.0.1")) == ["loopback"]
        assert classify_ip(ip("8.8.8.8")) == []
        assert classify_ip(ip("::ffff:10.0.0.1")) == ["ipv4-mapped", "private"]
        assert classify_ip(ip("fd00::1")) == ["unique-local"]
