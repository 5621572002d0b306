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

"""Outbound HTTP execution for usage scripts.

Sends exactly the request a script asked for, after the URL guard and the
size/header/method checks pass. The response is streamed with a running
byte counter so an oversized body is abandoned mid-stream instead of
buffered. Redirects are off unless enabled; when enabled every hop target
goes back through the URL guard before it is requested.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.config import EngineConfig, clamp_timeout
from quotascript.models.request import (
    RequestConfig,
    is_forbidden_header_name,
    is_valid_method,
)
from quotascript.policy.url_guard import UrlGuard

logger = logging.getLogger(__name__)

ERROR_PREVIEW_CHARS = 200
OMITTED_BODY = "<response body omitted>"

# (match substrings, zh, en) for connect-level failures
_CONNECT_REASONS = (
    (("refused",), "无法连接到目标服务器（连接被拒绝）", "Unable to connect to the server (connection refused)"),
    (
        ("dns", "name or service not known", "nodename nor servname", "getaddrinfo", "name resolution"),
        "DNS 解析失败，请检查域名是否正确",
        "DNS resolution failed; please verify the domain name",
    ),
)


def classify_transport_error(exc: Exception) -> UsageScriptError:
    """Map an httpx failure to a user-facing transport error."""
    detail = str(exc) or type(exc).__name__
    lowered = detail.lower()

    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)) or "invalid url" in lowered:
        kind = ErrorKind.REQUEST_INVALID_URL
        zh, en = "URL 格式无效，请检查脚本中的 request.url 配置", "Invalid URL format; please check request.url in your script"
    elif isinstance(exc, httpx.ConnectError):
        kind = ErrorKind.CONNECT_FAILED
        zh, en = "无法连接到目标服务器", "Unable to connect to the server"
        for (needles, reason_zh, reason_en), reason_kind in zip(
            _CONNECT_REASONS, (ErrorKind.CONNECTION_REFUSED, ErrorKind.DNS_FAILED)
        ):
            if any(needle in lowered for needle in needles):
                kind, zh, en = reason_kind, reason_zh, reason_en
                break
    elif isinstance(exc, httpx.TimeoutException):
        kind = ErrorKind.REQUEST_TIMEOUT
        zh, en = "请求超时，目标服务器响应过慢", "Request timed out; the server took too long to respond"
    elif isinstance(exc, httpx.LocalProtocolError):
        kind = ErrorKind.REQUEST_MALFORMED
        zh, en = "请求构建失败，请检查 URL 和 HTTP 方法配置", "Request build failed; please check the URL and HTTP method"
    else:
        kind = ErrorKind.REQUEST_FAILED
        zh, en = "请求失败", "Request failed"

    return UsageScriptError(kind, f"{zh}: {detail}", f"{en}: {detail}")


async def read_response_body(response: httpx.Response, max_bytes: int) -> str:
    """Stream *response* into memory, aborting as soon as it exceeds *max_bytes*."""
    buf = bytearray()
    total = 0
    try:
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                logger.warning("Response exceeded %d bytes; aborting read", max_bytes)
                raise UsageScriptError(
                    ErrorKind.RESPONSE_TOO_LARGE,
                    f"响应体过大，最大允许 {max_bytes} 字节",
                    f"Response body too large; max {max_bytes} bytes allowed",
                )
            buf.extend(chunk)
    except httpx.HTTPError as e:
        raise UsageScriptError(
            ErrorKind.READ_RESPONSE_FAILED,
            f"读取响应失败: {e}",
            f"Failed to read response: {e}",
        ) from e
    return buf.decode("utf-8", errors="replace")


def _error_preview(text: str, include_body: bool) -> str:
    if not include_body:
        return OMITTED_BODY
    if len(text) > ERROR_PREVIEW_CHARS:
        return f"{text[:ERROR_PREVIEW_CHARS]}..."
    return text


class HttpExecutor:
    """Sends one validated usage request and returns the response text."""

    def __init__(
        self,
        config: EngineConfig,
        guard: UrlGuard,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.guard = guard
        self.transport = transport

    def _check_request(self, request: RequestConfig) -> None:
        max_body = self.config.max_body_bytes
        if request.body is not None and request.body_size > max_body:
            raise UsageScriptError(
                ErrorKind.REQUEST_BODY_TOO_LARGE,
                f"请求体过大，最大允许 {max_body} 字节",
                f"Request body too large; max {max_body} bytes allowed",
            )

        count = len(request.headers)
        max_headers = self.config.max_header_count
        if count > max_headers:
            raise UsageScriptError(
                ErrorKind.HEADER_COUNT_EXCEEDED,
                f"请求头数量超过限制: {count} / {max_headers}",
                f"Request header count exceeds limit: {count} / {max_headers}",
            )

        for name in request.headers:
            if is_forbidden_header_name(name):
                raise UsageScriptError(
                    ErrorKind.FORBIDDEN_HEADER,
                    f"不允许设置请求头: {name}",
                    f"Forbidden header name: {name}",
                )

        # No fallback to GET for a bad method
        if not is_valid_method(request.method):
            raise UsageScriptError(
                ErrorKind.INVALID_HTTP_METHOD,
                f"不支持的 HTTP 方法: {request.method}",
                f"Unsupported HTTP method: {request.method}",
            )

    def _build_client(self, timeout_secs: float) -> httpx.AsyncClient:
        try:
            return httpx.AsyncClient(
                timeout=httpx.Timeout(clamp_timeout(timeout_secs)),
                follow_redirects=False,
                trust_env=False,
                transport=self.transport,
            )
        except (ValueError, TypeError, OSError) as e:
            raise UsageScriptError(
                ErrorKind.CLIENT_CREATE_FAILED,
                f"创建客户端失败: {e}",
                f"Failed to create client: {e}",
            ) from e

    async def send(self, request: RequestConfig, timeout_secs: float) -> str:
        """Validate and send *request*; return the body text of a 2xx response.

        The clamped timeout bounds the whole exchange: every redirect hop and
        the full body read, not just each individual socket operation.
        """
        validated = await self.guard.validate(request.url)
        self._check_request(request)

        limit = clamp_timeout(timeout_secs)
        async with self._build_client(timeout_secs) as client:
            try:
                outgoing = client.build_request(
                    request.method,
                    validated.url,
                    headers=request.headers,
                    content=request.body.encode("utf-8") if request.body is not None else None,
                )
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise classify_transport_error(e) from e
            except ValueError as e:
                # non-ASCII header names or values
                raise UsageScriptError(
                    ErrorKind.REQUEST_MALFORMED,
                    f"请求构建失败，请检查 URL 和 HTTP 方法配置: {e}",
                    f"Request build failed; please check the URL and HTTP method: {e}",
                ) from e

            try:
                return await asyncio.wait_for(self._exchange(client, outgoing), timeout=limit)
            except asyncio.TimeoutError as e:
                logger.warning("Usage request exceeded its %ss limit", limit)
                raise UsageScriptError(
                    ErrorKind.REQUEST_TIMEOUT,
                    f"请求超时，目标服务器响应过慢: 超过 {limit} 秒",
                    f"Request timed out; the server took too long to respond: exceeded {limit}s",
                ) from e

    async def _exchange(self, client: httpx.AsyncClient, outgoing: httpx.Request) -> str:
        hops = 0
        while True:
            try:
                response = await client.send(outgoing, stream=True)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise classify_transport_error(e) from e

            try:
                next_request = response.next_request
                if self.config.allow_redirects and next_request is not None:
                    if hops >= self.config.max_redirects:
                        raise UsageScriptError(
                            ErrorKind.TOO_MANY_REDIRECTS,
                            f"重定向次数超过限制: {self.config.max_redirects}",
                            f"Too many redirects; max {self.config.max_redirects} allowed",
                        )
                    await self.guard.validate(str(next_request.url))
                    hops += 1
                    logger.debug("Following redirect %d to %s", hops, next_request.url.host)
                    outgoing = next_request
                    continue

                text = await read_response_body(response, self.config.max_response_bytes)
            finally:
                await response.aclose()

            if not response.is_success:
                preview = _error_preview(text, self.config.include_error_body)
                status = f"{response.status_code} {response.reason_phrase}".strip()
                raise UsageScriptError(
                    ErrorKind.HTTP_ERROR,
                    f"HTTP {status} : {preview}",
                    f"HTTP {status} : {preview}",
                    status_code=response.status_code,
                )
            return text
