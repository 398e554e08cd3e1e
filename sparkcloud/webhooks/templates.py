"""Minimal ``{{token}}`` substitution for webhook definitions.

There are no expressions, filters or escapes: a placeholder is replaced by
the stringified context value, and an unknown token becomes an empty
string. Existing webhook definitions depend on exactly this behaviour.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Mapping

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")


def stringify(value: Any) -> str:
    """Render a context value the way it appears in a compiled template."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=stringify)
    return str(value)


def compile_template(template: str, context: Mapping[str, Any]) -> str:
    return _PLACEHOLDER_RE.sub(
        lambda match: stringify(context.get(match.group(1))),
        template,
    )


def compile_object(value: Any, context: Mapping[str, Any]) -> Any:
    """Compile every string leaf of a nested dict/list structure.

    Keys are left alone, as are numbers, booleans and ``None``. A new
    structure is returned; the input is not modified.
    """
    if isinstance(value, str):
        return compile_template(value, context)
    if isinstance(value, dict):
        return {key: compile_object(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [compile_object(item, context) for item in value]
    return value
