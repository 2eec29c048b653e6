"""Template Resolver - {{path}} substitution against an execution context.

Resolves ``{{trigger_data.contact_id}}`` style placeholders in arbitrary
JSON-like data. Strings are inlined verbatim; any other resolved value is
JSON-serialized into the surrounding text. Placeholders that cannot be
resolved are left untouched. Never raises.
"""

import json
import re
from typing import Any, List, Mapping

from core.logging import get_logger

logger = get_logger(__name__)

# identifier(.identifier)*
TEMPLATE_PATTERN = re.compile(r'\{\{(\w+(?:\.\w+)*)\}\}')

_MISSING = object()


def resolve(value: Any, context: Mapping[str, Any]) -> Any:
    """Resolve all placeholders in value against context."""
    if isinstance(value, str):
        if '{{' not in value:
            return value
        return _resolve_string(value, context)
    if isinstance(value, Mapping):
        return {k: resolve(v, context) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve(item, context) for item in value]
    return value


def find_placeholders(value: Any) -> List[str]:
    """List every placeholder path in value, in document order."""
    if isinstance(value, str):
        return TEMPLATE_PATTERN.findall(value)
    if isinstance(value, Mapping):
        return [p for v in value.values() for p in find_placeholders(v)]
    if isinstance(value, (list, tuple)):
        return [p for item in value for p in find_placeholders(item)]
    return []


def _resolve_string(value: str, context: Mapping[str, Any]) -> str:
    def replace(match: "re.Match[str]") -> str:
        path = match.group(1)
        resolved = _navigate_path(context, path.split('.'))
        if resolved is _MISSING:
            logger.debug("Unresolved template", placeholder=path, available=list(context.keys()))
            return match.group(0)
        if isinstance(resolved, str):
            return resolved
        return _to_json(resolved)

    return TEMPLATE_PATTERN.sub(replace, value)


def _navigate_path(data: Any, path: List[str]) -> Any:
    """Walk a dot path through nested mappings (and list indexes)."""
    current = data
    for part in path:
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


def _to_json(value: Any) -> str:
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
