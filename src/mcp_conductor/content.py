# content.py
# Turning provider results into plain text / JSON-safe values.
#
# Providers answer with MCP CallToolResult objects (a list of content items),
# but stubs and direct callers may hand back dicts or strings.

import json
from typing import Any

from pydantic import BaseModel


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def to_text(value: Any) -> str:
    """Best plain-text rendering of a tool result."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value

    content = getattr(value, "content", None)
    if isinstance(content, list):
        parts = []
        for item in content:
            text = getattr(item, "text", None)
            if text is None and isinstance(item, dict):
                text = item.get("text")
            parts.append(text if text is not None else json.dumps(to_jsonable(item)))
        return "\n".join(parts)

    return json.dumps(to_jsonable(value), ensure_ascii=False)
