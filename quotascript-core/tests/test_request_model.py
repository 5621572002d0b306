"""Tests for the request model a script's phase 1 produces."""

import pytest

from quotascript.engine.orchestrator import parse_request_config
from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.request import is_forbidden_header_name, is_valid_method


class TestParseRequestConfig:

    def test_minimal(self):
        request = parse_request_config('{"url": "https://api.example.com", "method": "GET"}')
        assert request.url == "https://api.example.com"
        assert request.method == "GET"
        assert request.headers == {}
        assert request.body is None
        assert request.body_size == 0

    def test_full(self):
        request = parse_request_config(
            '{"url": "https://api.example.com", "method": "POST",'
            ' "headers": {"Authorization": "Bearer k"}, "body": "{\\"q\\": \\"é\\"}"}'
        )
        assert request.headers == {"Authorization": "Bearer k"}
        assert request.body_size == len('{"q": "é"}'.encode("utf-8"))

    @pytest.mark.parametrize(
        "payload",
        [
            '{"method": "GET"}',
            '{"url": "https://api.example.com"}',
            '{"url": 42, "method": "GET"}',
            '{"url": "https://api.example.com", "method": "GET", "headers": {"X-Count": 1}}',
            '{"url": "https://api.example.com", "method": "GET", "body": {"a": 1}}',
            "[]",
        ],
    )
    def test_invalid_shapes(self, payload):
        with pytest.raises(UsageScriptError) as exc_info:
            parse_request_config(payload)
        assert exc_info.value.kind == ErrorKind.REQUEST_FORMAT_INVALID


class TestHeaderAndMethodRules:

    @pytest.mark.parametrize(
        "name", ["Host", " content-length ", "Transfer-Encoding", "CONNECTION", "Proxy-Authorization"]
    )
    def test_forbidden(self, name):
        assert is_forbidden_header_name(name)

    @pytest.mark.parametrize("name", ["Authorization", "User-Agent", "X-Api-Key", "Accept"])
    def test_allowed(self, name):
        assert not is_forbidden_header_name(name)

    @pytest.mark.parametrize("method", ["GET", "POST", "PATCH", "PROPFIND", "get"])
    def test_valid_methods(self, method):
        assert is_valid_method(method)

    @pytest.mark.parametrize("method", ["", "GET POST", "GET\n", "GET\r\n", "G(E)T"])
    def test_invalid_methods(self, method):
        assert not is_valid_method(method)
