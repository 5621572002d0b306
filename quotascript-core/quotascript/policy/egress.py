# QuotaScript — Sandboxed Usage-Query Script Engine
# Copyright (C) 2026 QuotaScript Project Contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""IP address classification and egress decisions.

Pure predicates over address octets, independent of any networking
library. Each predicate answers one question about one address family;
``is_disallowed_ip`` combines them under an ``EgressPolicy``.

Always blocked:   link-local, unspecified, multicast, IPv4 broadcast
Blocked (strict): loopback, RFC1918 private, IPv6 unique-local
"""

from __future__ import annotations

import ipaddress
from typing import Union

from quotascript.models.config import EgressPolicy

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


# ── IPv4 ──


def ipv4_is_private(ip: ipaddress.IPv4Address) -> bool:
    a, b, _, _ = ip.packed
    return a == 10 or (a == 172 and (b & 0xF0) == 16) or (a == 192 and b == 168)


def ipv4_is_loopback(ip: ipaddress.IPv4Address) -> bool:
    return ip.packed[0] == 127


def ipv4_is_link_local(ip: ipaddress.IPv4Address) -> bool:
    a, b, _, _ = ip.packed
    return a == 169 and b == 254


def ipv4_is_multicast(ip: ipaddress.IPv4Address) -> bool:
    return (ip.packed[0] & 0xF0) == 224


def ipv4_is_broadcast(ip: ipaddress.IPv4Address) -> bool:
    return ip.packed == b"\xff\xff\xff\xff"


def ipv4_is_unspecified(ip: ipaddress.IPv4Address) -> bool:
    return ip.packed == b"\x00\x00\x00\x00"


# ── IPv6 ──


def _first_segment(ip: ipaddress.IPv6Address) -> int:
    return int.from_bytes(ip.packed[:2], "big")


def ipv6_is_loopback(ip: ipaddress.IPv6Address) -> bool:
    return ip.packed == b"\x00" * 15 + b"\x01"


def ipv6_is_unspecified(ip: ipaddress.IPv6Address) -> bool:
    return ip.packed == b"\x00" * 16


def ipv6_is_multicast(ip: ipaddress.IPv6Address) -> bool:
    return (_first_segment(ip) & 0xFF00) == 0xFF00


def ipv6_is_unique_local(ip: ipaddress.IPv6Address) -> bool:
    return (_first_segment(ip) & 0xFE00) == 0xFC00


def ipv6_is_link_local(ip: ipaddress.IPv6Address) -> bool:
    return (_first_segment(ip) & 0xFFC0) == 0xFE80


def ipv6_mapped_ipv4(ip: ipaddress.IPv6Address) -> ipaddress.IPv4Address | None:
    """Return the embedded IPv4 address of a ``::ffff:a.b.c.d`` address."""
    packed = ip.packed
    if packed[:10] == b"\x00" * 10 and packed[10:12] == b"\xff\xff":
        return ipaddress.IPv4Address(packed[12:])
    return None


# ── Policy ──


def parse_ip(value: str) -> IPAddress | None:
    """Parse a literal address (brackets and zone ids tolerated); None if not an IP."""
    candidate = value.strip()
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]
    candidate = candidate.split("%", 1)[0]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def is_disallowed_ip(ip: IPAddress, policy: EgressPolicy) -> bool:
    """Decide whether *ip* must not be contacted under *policy*.

    IPv4-mapped IPv6 addresses are judged as the IPv4 address they carry.
    """
    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ipv6_mapped_ipv4(ip)
        if mapped is not None:
            ip = mapped

    if isinstance(ip, ipaddress.IPv4Address):
        blocked = (
            ipv4_is_link_local(ip)
            or ipv4_is_unspecified(ip)
            or ipv4_is_multicast(ip)
            or ipv4_is_broadcast(ip)
        )
        if policy == EgressPolicy.STRICT:
            return blocked or ipv4_is_loopback(ip) or ipv4_is_private(ip)
        return blocked

    blocked = ipv6_is_link_local(ip) or ipv6_is_unspecified(ip) or ipv6_is_multicast(ip)
    if policy == EgressPolicy.STRICT:
        return blocked or ipv6_is_loopback(ip) or ipv6_is_unique_local(ip)
    return blocked


def classify_ip(ip: IPAddress) -> list[str]:
    """Return the classification labels that apply to *ip* (for reporting)."""
    labels: list[str] = []
    if isinstance(ip, ipaddress.IPv6Address):
        mapped = ipv6_mapped_ipv4(ip)
        if mapped is not None:
            labels.append("ipv4-mapped")
            ip = mapped

    if isinstance(ip, ipaddress.IPv4Address):
        checks = (
            ("loopback", ipv4_is_loopback),
            ("private", ipv4_is_private),
            ("link-local", ipv4_is_link_local),
            ("multicast", ipv4_is_multicast),
            ("broadcast", ipv4_is_broadcast),
            ("unspecified", ipv4_is_unspecified),
        )
    else:
        checks = (
            ("loopback", ipv6_is_loopback),
            ("unique-local", ipv6_is_unique_local),
            ("link-local", ipv6_is_link_local),
            ("multicast", ipv6_is_multicast),
            ("unspecified", ipv6_is_unspecified),
        )
    labels.extend(name for name, check in checks if check(ip))
    return labels
