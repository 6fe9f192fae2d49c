"""Best-effort JSON recovery from language-model completions.

Models are asked for JSON only but routinely wrap it in prose or fences.
``parse_json_strict`` decodes the first complete object found in the text
and raises on failure; ``recover_json`` is the total variant used by
providers and always returns a mapping.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict

from ..exceptions import UnparsableModelOutputError

_OPEN_BRACE = re.compile(r"\{")
_DECODER = json.JSONDecoder()


def parse_json_strict(text: str) -> Dict[str, Any]:
    if not isinstance(text, str):
        raise UnparsableModelOutputError("completion is not text", stage="parse")
    last_error = "no JSON object in completion"
    # Try each "{" in order; raw_decode stops at the end of the first complete value.
    for match in _OPEN_BRACE.finditer(text):
        try:
            data, _ = _DECODER.raw_decode(text, match.start())
        except (json.JSONDecodeError, RecursionError) as e:
            last_error = f"invalid JSON: {e}"
            continue
        if isinstance(data, dict):
            return data
    raise UnparsableModelOutputError(last_error, stage="parse")


def recover_json(text: str) -> Dict[str, Any]:
    """Return the fields found in ``text`` or ``{}``. Never raises."""
    try:
        return parse_json_strict(text)
    except UnparsableModelOutputError:
        return {}
