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

"""Usage script orchestration.

One invocation moves through two phases separated by the single network
call:

  substitute → EXTRACTING_REQUEST (session #1) → parse RequestConfig
             → HttpExecutor.send (await)
             → EXTRACTING_RESULT (session #2) → validate_result

Each phase opens and closes its own ``InterpreterSession`` inside one
synchronous call run in a worker thread, so no interpreter state exists
while the task is suspended on I/O and no two invocations share one.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from quotascript.errors import ErrorKind, UsageScriptError
from quotascript.models.config import DEFAULT_TIMEOUT_SECS, EngineConfig
from quotascript.models.request import RequestConfig
from quotascript.models.usage import UsageResult
from quotascript.engine.result_validator import validate_result
from quotascript.policy.url_guard import Resolver, UrlGuard
from quotascript.sandbox.session import run_extractor_phase, run_request_phase
from quotascript.sandbox.substitution import substitute_variables
from quotascript.transport.executor import HttpExecutor

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Where an invocation currently is."""

    EXTRACTING_REQUEST = "extracting_request"
    SENDING = "sending"
    EXTRACTING_RESULT = "extracting_result"
    VALIDATING = "validating"


def parse_request_config(request_json: str) -> RequestConfig:
    """Parse phase-1 output into a ``RequestConfig``."""
    try:
        return RequestConfig.model_validate_json(request_json)
    except ValidationError as e:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise UsageScriptError(
            ErrorKind.REQUEST_FORMAT_INVALID,
            f"request 配置格式错误: {detail}",
            f"Invalid request config format: {detail}",
        ) from e


class UsageScriptEngine:
    """Runs usage scripts against one ``EngineConfig``.

    The engine holds only immutable configuration, so one instance may
    serve any number of concurrent invocations.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        resolver: Optional[Resolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig.from_env()
        self.guard = UrlGuard(self.config, resolver=resolver)
        self.executor = HttpExecutor(self.config, self.guard, transport=transport)

    async def execute(
        self,
        script_code: str,
        api_key: str,
        base_url: str,
        timeout_secs: float = DEFAULT_TIMEOUT_SECS,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Any:
        """Run a script end to end and return its validated usage value.

        Raises:
            UsageScriptError: on any failure; no partial result is returned.
        """
        script_source = substitute_variables(
            script_code, api_key, base_url, access_token=access_token, user_id=user_id
        )

        phase = Phase.EXTRACTING_REQUEST
        try:
            logger.debug("Usage script phase: %s", phase.value)
            request_json = await asyncio.to_thread(run_request_phase, script_source, timeout_secs)
            request = parse_request_config(request_json)

            phase = Phase.SENDING
            logger.debug("Usage script phase: %s (%s)", phase.value, request.method)
            response_text = await self.executor.send(request, timeout_secs)

            phase = Phase.EXTRACTING_RESULT
            logger.debug("Usage script phase: %s", phase.value)
            result = await asyncio.to_thread(
                run_extractor_phase, script_source, response_text, timeout_secs
            )

            phase = Phase.VALIDATING
            logger.debug("Usage script phase: %s", phase.value)
            validate_result(result)
        except UsageScriptError as e:
            logger.info("Usage script failed while %s: %s", phase.value, e.kind.value)
            raise
        return result

    async def query(
        self,
        script_code: str,
        api_key: str,
        base_url: str,
        timeout_secs: float = DEFAULT_TIMEOUT_SECS,
        access_token: Optional[str] = None,
        user_id: Optional[str] = None,
        lang: str = "en",
    ) -> UsageResult:
        """Like ``execute`` but folds the outcome into a ``UsageResult`` envelope."""
        try:
            data = await self.execute(
                script_code,
                api_key,
                base_url,
                timeout_secs=timeout_secs,
                access_token=access_token,
                user_id=user_id,
            )
        except UsageScriptError as e:
            logger.info("Usage query failed: %s", e.kind.value)
            return UsageResult(success=False, error=e.localized(lang), error_kind=e.kind.value)
        return UsageResult(success=True, data=data)


async def execute_usage_script(
    script_code: str,
    api_key: str,
    base_url: str,
    timeout_secs: float = DEFAULT_TIMEOUT_SECS,
    access_token: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Any:
    """Run a script with a config read from the environment."""
    engine = UsageScriptEngine(EngineConfig.from_env())
    return await engine.execute(
        script_code,
        api_key,
        base_url,
        timeout_secs=timeout_secs,
        access_token=access_token,
        user_id=user_id,
    )
