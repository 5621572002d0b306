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

"""URL validation for outbound script requests (SSRF defence).

Every URL a usage script asks for, including each redirect hop, passes
through ``UrlGuard.validate`` before any connection is made:

1. parse            → url_invalid
2. scheme           → url_scheme_not_allowed (http/https only, pre-DNS)
3. userinfo         → url_userinfo_not_allowed
4. host / allowlist → url_host_missing, url_host_not_allowed
5. resolve          → dns_lookup_failed (error or zero addresses)
6. classify         → url_blocked (any address disallowed by policy)
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.config import EngineConfig, normalize_host
from quotascript.policy.egress import is_disallowed_ip, parse_ip

logger = logging.getLogger(__name__)

Resolver = Callable[[str, int], Awaitable[list[str]]]

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class ValidatedUrl:
    """A URL that passed every guard check at construction time."""

    url: httpx.URL
    host: str
    port: int
    addresses: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        return str(self.url)


async def resolve_host_ips(host: str, port: int) -> list[str]:
    """Resolve *host* to every candidate address via the event loop's resolver."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    addresses: list[str] = []
    for info in infos:
        address = str(info[4][0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def _blocked_error() -> UsageScriptError:
    return UsageScriptError(
        ErrorKind.URL_BLOCKED,
        "目标地址被策略阻止",
        "Target address is blocked by policy",
    )


class UrlGuard:
    """Applies scheme, credential, allowlist and egress rules to a URL."""

    def __init__(self, config: EngineConfig, resolver: Optional[Resolver] = None) -> None:
        self.config = config
        self.resolver: Resolver = resolver or resolve_host_ips

    def __repr__(self) -> str:
        return f"UrlGuard(policy={self.config.egress_policy.value}, allowlist={self.config.allowed_hosts})"

    async def validate(self, raw_url: str) -> ValidatedUrl:
        """Validate *raw_url*; raise ``UsageScriptError`` on the first failed check."""
        try:
            url = httpx.URL(raw_url)
        except (httpx.InvalidURL, TypeError) as e:
            raise UsageScriptError(
                ErrorKind.URL_INVALID,
                f"URL 格式无效: {e}",
                f"Invalid URL format: {e}",
            ) from e

        scheme = url.scheme
        if scheme not in _DEFAULT_PORTS:
            raise UsageScriptError(
                ErrorKind.URL_SCHEME_NOT_ALLOWED,
                f"URL 仅支持 http/https，当前: {scheme}",
                f"Only http/https URLs are allowed; got {scheme}",
            )

        if url.userinfo:
            raise UsageScriptError(
                ErrorKind.URL_USERINFO_NOT_ALLOWED,
                "URL 不允许包含用户名或密码",
                "URL must not include username or password",
            )

        host = url.raw_host.decode("ascii", errors="replace")
        if not host:
            raise UsageScriptError(
                ErrorKind.URL_HOST_MISSING,
                "URL 缺少主机名",
                "URL is missing a host",
            )

        allowed = self.config.allowed_hosts
        if allowed is not None and normalize_host(host) not in allowed:
            raise UsageScriptError(
                ErrorKind.URL_HOST_NOT_ALLOWED,
                f"主机名不在允许列表中: {host}",
                f"Host is not in allowlist: {host}",
            )

        policy = self.config.egress_policy
        port = url.port or _DEFAULT_PORTS[scheme]

        literal = parse_ip(host)
        if literal is not None:
            if is_disallowed_ip(literal, policy):
                logger.warning("Blocked literal address %s under %s policy", literal, policy.value)
                raise _blocked_error()
            return ValidatedUrl(url=url, host=host, port=port, addresses=(str(literal),))

        addresses = await self._resolve(host, port)
        for address in addresses:
            ip = parse_ip(address)
            if ip is None or is_disallowed_ip(ip, policy):
                logger.warning(
                    "Blocked %s: resolved to %s under %s policy", host, address, policy.value
                )
                raise _blocked_error()

        logger.debug("URL host %s resolved to %s", host, ", ".join(addresses))
        return ValidatedUrl(url=url, host=host, port=port, addresses=tuple(addresses))

    async def _resolve(self, host: str, port: int) -> list[str]:
        try:
            addresses = await self.resolver(host, port)
        except (OSError, UnicodeError) as e:
            raise UsageScriptError(
                ErrorKind.DNS_LOOKUP_FAILED,
                f"DNS 解析失败: {e}",
                f"DNS lookup failed: {e}",
            ) from e

        if not addresses:
            raise UsageScriptError(
                ErrorKind.DNS_LOOKUP_FAILED,
                "DNS 解析失败: 未解析到地址",
                "DNS lookup failed: no addresses resolved",
            )
        return list(addresses)
