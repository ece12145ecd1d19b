from __future__ import annotations

from decimal import Decimal

import orjson


def _default(v):
    if isinstance(v, Decimal):
        return str(v)
    raise TypeError


def dumps(v) -> str:
    return orjson.dumps(v, default=_default).decode("utf-8")


def loads(s: str | bytes):
    return orjson.loads(s)
