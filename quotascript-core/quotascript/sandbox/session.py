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

"""Resource-bounded QuickJS interpreter sessions.

One ``InterpreterSession`` wraps one ``quickjs.Context`` for one phase of
one invocation. Limits are applied before any user code runs:

- memory ceiling (32 MiB)
- call-stack ceiling (512 KiB)
- a time limit re-armed before every evaluation from the time left until
  a deadline fixed when the session opens (timeout clamped to [2, 30]s)

Only Python strings and JSON values leave a session; the context is
dropped on ``__exit__`` and must not be held across an ``await``.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

import quickjs

from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.config import (
    JS_MAX_STACK_SIZE,
    JS_MEMORY_LIMIT_BYTES,
    clamp_timeout,
)

logger = logging.getLogger(__name__)

_CONFIG = "__quotascript_config"
_RESPONSE = "__quotascript_response"
_RESULT = "__quotascript_result"


class DeadlineExceeded(Exception):
    """The session deadline passed before an evaluation could start."""


_JS_ERRORS = (quickjs.JSException, quickjs.StackOverflow, MemoryError, DeadlineExceeded)


class InterpreterSession:
    """A single-use sandbox for evaluating a usage script.

    Usage::

        with InterpreterSession(source, timeout_secs=10) as session:
            request_json = session.extract_request()
    """

    def __init__(
        self,
        script_source: str,
        timeout_secs: float,
        *,
        memory_limit: int = JS_MEMORY_LIMIT_BYTES,
        max_stack_size: int = JS_MAX_STACK_SIZE,
    ) -> None:
        self.script_source = script_source
        self.timeout_secs = clamp_timeout(timeout_secs)
        self.memory_limit = memory_limit
        self.max_stack_size = max_stack_size
        self._context: Optional[quickjs.Context] = None
        self._deadline = 0.0

    def __enter__(self) -> "InterpreterSession":
        try:
            context = quickjs.Context()
            context.set_memory_limit(self.memory_limit)
            context.set_max_stack_size(self.max_stack_size)
        except (MemoryError, RuntimeError) as e:
            raise UsageScriptError(
                ErrorKind.CONTEXT_CREATE_FAILED,
                f"创建 JS 上下文失败: {e}",
                f"Failed to create JS context: {e}",
            ) from e
        self._context = context
        self._deadline = time.monotonic() + self.timeout_secs
        logger.debug(
            "Opened QuickJS session (memory=%d, stack=%d, timeout=%ss)",
            self.memory_limit,
            self.max_stack_size,
            self.timeout_secs,
        )
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self._context = None
        logger.debug("Released QuickJS session")

    def _eval(self, code: str) -> Any:
        if self._context is None:
            raise RuntimeError("InterpreterSession used outside its with-block")
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            raise DeadlineExceeded(f"script exceeded its {self.timeout_secs}s time limit")
        self._context.set_time_limit(remaining)
        return self._context.eval(code)

    def _evaluate_config(self, kind: ErrorKind) -> None:
        if kind == ErrorKind.CONFIG_REPARSE_FAILED:
            zh, en = "重新解析配置失败", "Failed to re-parse config"
        else:
            zh, en = "解析配置失败", "Failed to parse config"

        source_literal = json.dumps(self.script_source)
        try:
            self._eval(f"globalThis.{_CONFIG} = (0, eval)({source_literal}); undefined;")
            is_object = self._eval(
                f"{_CONFIG} !== null && "
                f"(typeof {_CONFIG} === 'object' || typeof {_CONFIG} === 'function')"
            )
        except _JS_ERRORS as e:
            raise UsageScriptError(kind, f"{zh}: {e}", f"{en}: {e}") from e

        if not is_object:
            raise UsageScriptError(
                kind,
                f"{zh}: 脚本必须返回对象",
                f"{en}: script must evaluate to an object",
            )

    # ── Phase 1 ──

    def extract_request(self) -> str:
        """Evaluate the script and return its ``request`` property as JSON text."""
        self._evaluate_config(ErrorKind.CONFIG_PARSE_FAILED)

        try:
            has_request = self._eval(
                f"{_CONFIG}.request !== null && typeof {_CONFIG}.request === 'object'"
            )
        except _JS_ERRORS as e:
            raise UsageScriptError(
                ErrorKind.REQUEST_MISSING,
                f"缺少 request 配置: {e}",
                f"Missing request config: {e}",
            ) from e
        if not has_request:
            raise UsageScriptError(
                ErrorKind.REQUEST_MISSING,
                "缺少 request 配置: request 不是对象",
                "Missing request config: request is not an object",
            )

        try:
            request_json = self._eval(f"JSON.stringify({_CONFIG}.request)")
        except _JS_ERRORS as e:
            raise UsageScriptError(
                ErrorKind.REQUEST_SERIALIZE_FAILED,
                f"序列化 request 失败: {e}",
                f"Failed to serialize request: {e}",
            ) from e
        if not isinstance(request_json, str):
            raise UsageScriptError(
                ErrorKind.SERIALIZE_NONE,
                "序列化返回 None",
                "Serialization returned None",
            )
        return request_json

    # ── Phase 2 ──

    def invoke_extractor(self, response_text: str) -> Any:
        """Re-evaluate the script, call ``extractor(parsed_response)``, return its JSON value."""
        self._evaluate_config(ErrorKind.CONFIG_REPARSE_FAILED)

        try:
            is_function = self._eval(f"typeof {_CONFIG}.extractor === 'function'")
        except _JS_ERRORS as e:
            raise UsageScriptError(
                ErrorKind.EXTRACTOR_MISSING,
                f"缺少 extractor 函数: {e}",
                f"Missing extractor function: {e}",
            ) from e
        if not is_function:
            raise UsageScriptError(
                ErrorKind.EXTRACTOR_MISSING,
                "缺少 extractor 函数",
                "Missing extractor function",
            )

        try:
            self._eval(f"globalThis.{_RESPONSE} = JSON.parse({json.dumps(response_text)}); undefined;")
        except _JS_ERRORS as e:
            raise UsageScriptError(
                ErrorKind.RESPONSE_PARSE_FAILED,
                f"解析响应 JSON 失败: {e}",
                f"Failed to parse response JSON: {e}",
            ) from e

        try:
            self._eval(f"globalThis.{_RESULT} = {_CONFIG}.extractor({_RESPONSE}); undefined;")
        except _JS_ERRORS as e:
            raise UsageScriptError(
                ErrorKind.EXTRACTOR_EXEC_FAILED,
                f"执行 extractor 失败: {e}",
                f"Failed to execute extractor: {e}",
            ) from e

        try:
            result_json = self._eval(f"JSON.stringify({_RESULT})")
        except _JS_ERRORS as e:
            raise UsageScriptError(
                ErrorKind.RESULT_SERIALIZE_FAILED,
                f"序列化结果失败: {e}",
                f"Failed to serialize result: {e}",
            ) from e
        if not isinstance(result_json, str):
            raise UsageScriptError(
                ErrorKind.SERIALIZE_NONE,
                "序列化返回 None",
                "Serialization returned None",
            )

        try:
            return json.loads(result_json)
        except ValueError as e:
            raise UsageScriptError(
                ErrorKind.JSON_PARSE_FAILED,
                f"JSON 解析失败: {e}",
                f"JSON parse failed: {e}",
            ) from e


def run_request_phase(script_source: str, timeout_secs: float) -> str:
    """Phase 1 in a fresh session: return the serialized request config."""
    with InterpreterSession(script_source, timeout_secs) as session:
        return session.extract_request()


def run_extractor_phase(script_source: str, response_text: str, timeout_secs: float) -> Any:
    """Phase 2 in a fresh session: return the extractor's JSON value."""
    with InterpreterSession(script_source, timeout_secs) as session:
        return session.invoke_extractor(response_text)
