from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from sqlalchemy import and_, or_

from sharespace.backend.tables import TableSpec
from sharespace.core.errors import ValidationFailed


@dataclass(frozen=True)
class Order:
    column: str
    desc: bool = False
    nulls_last: bool = False


def _column(spec: TableSpec, name: str):
    if name not in spec.columns:
        raise ValidationFailed(f"Unknown column {spec.name}.{name}")
    return getattr(spec.model, name)


def match(spec: TableSpec, filters: Mapping[str, Any] | None) -> list:
    """Equality filters; None means IS NULL, a list/tuple/set means IN."""
    cond = []
    for key, value in (filters or {}).items():
        col = _column(spec, key)
        if value is None:
            cond.append(col.is_(None))
        elif isinstance(value, (list, tuple, set, frozenset)):
            cond.append(col.in_(list(value)))
        else:
            cond.append(col == value)
    return cond


def build_conditions(
    spec: TableSpec,
    filters: Mapping[str, Any] | None = None,
    match_any: Sequence[Mapping[str, Any]] | None = None,
) -> list:
    cond = match(spec, filters)
    if match_any:
        cond.append(or_(*[and_(*match(spec, f)) for f in match_any]))
    return cond


def build_order(spec: TableSpec, order: Sequence[Order] | None) -> list:
    out = []
    for o in order or ():
        col = _column(spec, o.column)
        expr = col.desc() if o.desc else col.asc()
        if o.nulls_last:
            expr = expr.nulls_last()
        out.append(expr)
    out.append(spec.model.id.asc())
    return out
