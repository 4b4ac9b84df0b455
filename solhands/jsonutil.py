from __future__ import annotations

"""Minimal JSON utilities backed by orjson."""

from typing import Any, Callable

import orjson

__all__ = ["loads", "dumps_bytes"]


def loads(data: str | bytes) -> Any:
    """Parse JSON from ``data`` into Python objects."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return orjson.loads(data)


def dumps_bytes(
    obj: Any,
    *,
    sort_keys: bool = False,
    indent: int | None = None,
    default: Callable[[Any], Any] | None = None,
) -> bytes:
    """Serialize ``obj`` to a JSON byte string."""
    opts = 0
    if indent:
        opts |= orjson.OPT_INDENT_2
    if sort_keys:
        opts |= orjson.OPT_SORT_KEYS
    return orjson.dumps(obj, option=opts, default=default)

