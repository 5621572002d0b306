"""Tests for the outbound HTTP executor (MockTransport, no real network)."""

import asyncio
import json
import time

import httpx
import pytest

from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.config import EgressPolicy, EngineConfig
from quotascript.models.request import RequestConfig
from quotascript.policy.url_guard import UrlGuard
from quotascript.transport.executor import (
    OMITTED_BODY,
    HttpExecutor,
    classify_transport_error,
)

ADDRESSES = {
    "api.example.com": ["93.184.216.34"],
    "cdn.example.com": ["93.184.216.35"],
    "internal.example.com": ["10.0.0.7"],
}


async def resolver(host, port):
    return list(ADDRESSES.get(host, []))


class Recorder:
    """MockTransport handler that records requests and replies via *respond*."""

    def __init__(self, respond):
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)


def make_executor(respond, **config_kwargs):
    config = EngineConfig(**config_kwargs)
    recorder = Recorder(respond)
    executor = HttpExecutor(
        config,
        UrlGuard(config, resolver=resolver),
        transport=httpx.MockTransport(recorder),
    )
    return executor, recorder


def ok_json(request):
    return httpx.Response(200, json={"remaining": 42})


def get(url="https://api.example.com/v1/usage", method="GET", **kwargs):
    return RequestConfig(url=url, method=method, **kwargs)


async def failure(executor, request):
    with pytest.raises(UsageScriptError) as exc_info:
        await executor.send(request, 10)
    return exc_info.value


class TestSend:

    @pytest.mark.asyncio
    async def test_returns_body_text(self):
        executor, recorder = make_executor(ok_json)
        text = await executor.send(get(), 10)
        assert json.loads(text) == {"remaining": 42}
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_sends_method_headers_and_body(self):
        executor, recorder = make_executor(ok_json)
        await executor.send(
            get(method="POST", headers={"Authorization": "Bearer sk-1", "X-Trace": "t"}, body='{"q":1}'),
            10,
        )
        sent = recorder.requests[0]
        assert sent.method == "POST"
        assert sent.url == httpx.URL("https://api.example.com/v1/usage")
        assert sent.headers["Authorization"] == "Bearer sk-1"
        assert sent.headers["X-Trace"] == "t"
        assert sent.content == b'{"q":1}'

    @pytest.mark.asyncio
    async def test_unusual_but_valid_method(self):
        executor, recorder = make_executor(ok_json)
        await executor.send(get(method="PROPFIND"), 10)
        assert recorder.requests[0].method == "PROPFIND"

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self):
        executor, _ = make_executor(lambda r: httpx.Response(200, content=b'{"a":"\xff"}'))
        assert await executor.send(get(), 10) == '{"a":"\ufffd"}'


class TestRequestChecks:
    """Size, header and method checks run before anything is sent."""

    @pytest.mark.asyncio
    async def test_body_too_large(self):
        executor, recorder = make_executor(ok_json, max_body_bytes=4)
        err = await failure(executor, get(method="POST", body="héllo"))
        assert err.kind == ErrorKind.REQUEST_BODY_TOO_LARGE
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_header_count_exceeded(self):
        executor, recorder = make_executor(ok_json, max_header_count=2)
        err = await failure(executor, get(headers={"A": "1", "B": "2", "C": "3"}))
        assert err.kind == ErrorKind.HEADER_COUNT_EXCEEDED
        assert str(err) == "Request header count exceeds limit: 3 / 2"
        assert recorder.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["Host", "content-length", " Transfer-Encoding ", "Proxy-Authorization"])
    async def test_forbidden_header(self, name):
        executor, recorder = make_executor(ok_json)
        err = await failure(executor, get(headers={name: "x"}))
        assert err.kind == ErrorKind.FORBIDDEN_HEADER
        assert recorder.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["", "GET POST", "G\r\nET"])
    async def test_invalid_method_is_not_downgraded(self, method):
        executor, recorder = make_executor(ok_json)
        err = await failure(executor, get(method=method))
        assert err.kind == ErrorKind.INVALID_HTTP_METHOD
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_url_checked_before_request_shape(self):
        executor, recorder = make_executor(ok_json, egress_policy=EgressPolicy.STRICT)
        err = await failure(executor, get(url="http://internal.example.com/", headers={"Host": "x"}))
        assert err.kind == ErrorKind.URL_BLOCKED
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_non_ascii_header_value_is_malformed(self):
        executor, recorder = make_executor(ok_json)
        err = await failure(executor, get(headers={"X-Plan": "café"}))
        assert err.kind == ErrorKind.REQUEST_MALFORMED
        assert err.localized("en").startswith("Request build failed")
        assert recorder.requests == []


class TestResponses:

    @pytest.mark.asyncio
    async def test_response_too_large(self):
        executor, _ = make_executor(
            lambda r: httpx.Response(200, content=b"x" * 100), max_response_bytes=10
        )
        assert (await failure(executor, get())).kind == ErrorKind.RESPONSE_TOO_LARGE

    @pytest.mark.asyncio
    async def test_oversized_stream_stops_reading_early(self):
        produced = []

        async def chunks():
            for i in range(20):
                produced.append(i)
                yield b"z" * 8

        executor, _ = make_executor(
            lambda r: httpx.Response(200, content=chunks()), max_response_bytes=50
        )
        assert (await failure(executor, get())).kind == ErrorKind.RESPONSE_TOO_LARGE
        assert len(produced) == 7

    @pytest.mark.asyncio
    async def test_response_at_limit_is_accepted(self):
        executor, _ = make_executor(
            lambda r: httpx.Response(200, content=b"y" * 10), max_response_bytes=10
        )
        assert await executor.send(get(), 10) == "y" * 10

    @pytest.mark.asyncio
    async def test_http_error_omits_body_by_default(self):
        executor, _ = make_executor(lambda r: httpx.Response(401, text="invalid key sk-secret"))
        err = await failure(executor, get())
        assert err.kind == ErrorKind.HTTP_ERROR
        assert err.status_code == 401
        assert str(err) == f"HTTP 401 Unauthorized : {OMITTED_BODY}"
        assert "sk-secret" not in err.localized("zh")

    @pytest.mark.asyncio
    async def test_http_error_preview_when_enabled(self):
        executor, _ = make_executor(
            lambda r: httpx.Response(500, text="e" * 300), include_error_body=True
        )
        err = await failure(executor, get())
        assert err.status_code == 500
        assert str(err) == "HTTP 500 Internal Server Error : " + "e" * 200 + "..."

    @pytest.mark.asyncio
    async def test_short_error_body_not_truncated(self):
        executor, _ = make_executor(
            lambda r: httpx.Response(429, text="slow down"), include_error_body=True
        )
        err = await failure(executor, get())
        assert str(err) == "HTTP 429 Too Many Requests : slow down"


def redirecting(routes):
    """Handler returning 302s from *routes* (path → location) and 200 otherwise."""

    def respond(request):
        location = routes.get(request.url.path)
        if location is not None:
            return httpx.Response(302, headers={"Location": location})
        return httpx.Response(200, text='{"final": true}')

    return respond


class TestRedirects:

    @pytest.mark.asyncio
    async def test_redirect_not_followed_by_default(self):
        executor, recorder = make_executor(redirecting({"/start": "https://cdn.example.com/end"}))
        err = await failure(executor, get(url="https://api.example.com/start"))
        assert err.kind == ErrorKind.HTTP_ERROR
        assert err.status_code == 302
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_redirect_followed_when_enabled(self):
        executor, recorder = make_executor(
            redirecting({"/start": "https://cdn.example.com/end"}), allow_redirects=True
        )
        assert await executor.send(get(url="https://api.example.com/start"), 10) == '{"final": true}'
        assert [str(r.url) for r in recorder.requests] == [
            "https://api.example.com/start",
            "https://cdn.example.com/end",
        ]

    @pytest.mark.asyncio
    async def test_redirect_to_metadata_address_blocked(self):
        executor, recorder = make_executor(
            redirecting({"/start": "http://169.254.169.254/latest/meta-data"}), allow_redirects=True
        )
        err = await failure(executor, get(url="https://api.example.com/start"))
        assert err.kind == ErrorKind.URL_BLOCKED
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_redirect_to_private_host_blocked_under_strict(self):
        executor, recorder = make_executor(
            redirecting({"/start": "http://internal.example.com/"}),
            allow_redirects=True,
            egress_policy=EgressPolicy.STRICT,
        )
        err = await failure(executor, get(url="https://api.example.com/start"))
        assert err.kind == ErrorKind.URL_BLOCKED
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_redirect_hop_must_match_allowlist(self):
        executor, _ = make_executor(
            redirecting({"/start": "https://cdn.example.com/end"}),
            allow_redirects=True,
            allowed_hosts="api.example.com",
        )
        err = await failure(executor, get(url="https://api.example.com/start"))
        assert err.kind == ErrorKind.URL_HOST_NOT_ALLOWED

    @pytest.mark.asyncio
    async def test_too_many_redirects(self):
        executor, recorder = make_executor(
            redirecting({"/loop": "/loop"}), allow_redirects=True, max_redirects=2
        )
        err = await failure(executor, get(url="https://api.example.com/loop"))
        assert err.kind == ErrorKind.TOO_MANY_REDIRECTS
        assert len(recorder.requests) == 3


def raising(exc):
    def respond(request):
        raise exc

    return respond


class TestTransportErrors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "exc,kind",
        [
            (httpx.ConnectError("[Errno 111] Connection refused"), ErrorKind.CONNECTION_REFUSED),
            (httpx.ConnectError("[Errno -2] Name or service not known"), ErrorKind.DNS_FAILED),
            (httpx.ConnectError("[Errno 113] No route to host"), ErrorKind.CONNECT_FAILED),
            (httpx.ReadTimeout("timed out"), ErrorKind.REQUEST_TIMEOUT),
            (httpx.ConnectTimeout("timed out"), ErrorKind.REQUEST_TIMEOUT),
            (httpx.RemoteProtocolError("peer closed connection"), ErrorKind.REQUEST_FAILED),
        ],
    )
    async def test_classified(self, exc, kind):
        executor, _ = make_executor(raising(exc))
        err = await failure(executor, get())
        assert err.kind == kind
        assert str(exc) in str(err)

    def test_classify_local_protocol_error(self):
        err = classify_transport_error(httpx.LocalProtocolError("illegal header"))
        assert err.kind == ErrorKind.REQUEST_MALFORMED

    def test_classify_unsupported_protocol(self):
        err = classify_transport_error(httpx.UnsupportedProtocol("Request URL has an unsupported protocol"))
        assert err.kind == ErrorKind.REQUEST_INVALID_URL

    def test_classify_messages_are_localized(self):
        err = classify_transport_error(httpx.ReadTimeout("timed out"))
        assert err.localized("en").startswith("Request timed out")
        assert err.localized("zh").startswith("请求超时")


class TestOverallDeadline:
    """The timeout bounds the whole exchange, not each socket read."""

    @pytest.mark.asyncio
    async def test_slow_drip_body_times_out(self):
        async def drip():
            for _ in range(40):
                await asyncio.sleep(0.5)
                yield b"x"

        executor, recorder = make_executor(lambda r: httpx.Response(200, content=drip()))
        started = time.monotonic()
        with pytest.raises(UsageScriptError) as exc_info:
            await executor.send(get(), 2)
        elapsed = time.monotonic() - started

        assert exc_info.value.kind == ErrorKind.REQUEST_TIMEOUT
        assert "2" in exc_info.value.localized("en")
        assert len(recorder.requests) == 1
        assert elapsed < 5

    @pytest.mark.asyncio
    async def test_fast_body_within_deadline(self):
        async def quick():
            for _ in range(3):
                await asyncio.sleep(0.01)
                yield b"ok"

        executor, _ = make_executor(lambda r: httpx.Response(200, content=quick()))
        assert await executor.send(get(), 2) == "okokok"
