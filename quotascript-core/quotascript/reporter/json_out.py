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

"""Canonical JSON for usage envelopes.

Output is byte-stable for the same result: keys sorted, two-space indent,
``\n`` line endings and one trailing newline. Model fields are written
under their camelCase aliases (``errorKind``, ``isValid`` ...), the names
scripts and front ends use.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from quotascript.models.usage import UsageResult

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    if isinstance(value, UsageResult):
        return value.model_dump(by_alias=True, exclude_none=True)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    return value


def to_canonical_json(data: Any) -> str:
    """Serialize an envelope, a mapping of envelopes, or plain JSON data."""
    text = json.dumps(_plain(data), sort_keys=True, indent=2, ensure_ascii=False)
    return text + "\n"


def batch_to_json(results: Iterable[tuple[str, UsageResult]]) -> str:
    """Serialize batch results as ``{name: envelope}``."""
    return to_canonical_json({name: result for name, result in results})


def write_result(result: UsageResult, output_path: Path) -> None:
    """Write one envelope to *output_path*, creating parent directories."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(to_canonical_json(result), encoding="utf-8", newline="\n")
    logger.info("Wrote usage result to %s", output_path)
