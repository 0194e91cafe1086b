"""
Fast JSON utilities backed by orjson.

Usage:
    from eigentrader.core.json_utils import dumps, loads

    log.info(dumps({"event": "inference_saved", "id": record_id}))
"""

from __future__ import annotations

from typing import Any

import orjson


def dumps(obj: Any) -> str:
    """Compact JSON encode to string."""
    return orjson.dumps(obj).decode("utf-8")


def dumps_pretty(obj: Any) -> str:
    """Indented JSON, used when data is embedded in prompts."""
    return orjson.dumps(obj, option=orjson.OPT_INDENT_2).decode("utf-8")


def loads(s: str | bytes) -> Any:
    """JSON decode. Raises orjson.JSONDecodeError (a ValueError) on bad input."""
    return orjson.loads(s)
