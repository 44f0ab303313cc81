"""Helpers for ``where`` filters over chunk metadata.

Supported operators: ``$and``, ``$or``, ``$in``, ``$nin``, ``$ne``,
``$contains``, ``$gt``, ``$gte``, ``$lt`` and ``$lte``.  A bare value
means equality; for list-valued fields such as ``tags`` equality and
``$contains`` test membership.
"""
from __future__ import annotations

from typing import Any, Callable, Dict

from core.chunking import Chunk

_SEQUENCES = (list, tuple, set, frozenset)


def _contains(value: Any, cond: Any) -> bool:
    if isinstance(value, _SEQUENCES):
        return cond in value
    return str(cond) in str(value if value is not None else "")


def _match_expr(value: Any, expr: Any) -> bool:
    """Match a single field against an expression."""

    if isinstance(expr, dict):
        for op, cond in expr.items():
            if op == "$in":
                if isinstance(value, _SEQUENCES):
                    if not any(v in cond for v in value):
                        return False
                elif value not in cond:
                    return False
            elif op == "$nin":
                if isinstance(value, _SEQUENCES):
                    if any(v in cond for v in value):
                        return False
                elif value in cond:
                    return False
            elif op == "$ne":
                if value == cond:
                    return False
            elif op == "$contains":
                if not _contains(value, cond):
                    return False
            elif op in ("$gt", "$gte", "$lt", "$lte"):
                if value is None:
                    return False
                try:
                    ok = {
                        "$gt": value > cond,
                        "$gte": value >= cond,
                        "$lt": value < cond,
                        "$lte": value <= cond,
                    }[op]
                except TypeError:
                    return False
                if not ok:
                    return False
            else:  # unknown operator
                return False
        return True
    if isinstance(value, _SEQUENCES) and not isinstance(expr, _SEQUENCES):
        return expr in value
    return value == expr


def build_where(where: Dict[str, Any] | None) -> Callable[[Dict[str, Any]], bool]:
    """Compile a ``where`` expression into a predicate function."""

    if not where:
        return lambda obj: True

    if "$and" in where:
        preds = [build_where(w) for w in where["$and"]]
        return lambda obj: all(p(obj) for p in preds)

    if "$or" in where:
        preds = [build_where(w) for w in where["$or"]]
        return lambda obj: any(p(obj) for p in preds)

    tests = []
    for name, expr in where.items():
        if name.startswith("$"):
            continue

        def test(obj: Dict[str, Any], name=name, expr=expr) -> bool:
            return _match_expr(obj.get(name), expr)

        tests.append(test)

    return lambda obj: all(t(obj) for t in tests)


def filter_fields(chunk: Chunk) -> Dict[str, Any]:
    """Flat view of a chunk that ``where`` expressions are evaluated against.

    Authored extras (``section``, ``as_of``...) sit next to the schema
    fields; meta card keys are reachable as ``meta_card.<key>``.
    """
    view: Dict[str, Any] = dict(chunk.metadata)
    data = chunk.to_dict()
    data.pop("metadata")
    view.update(data)
    for key, value in chunk.meta_card.items():
        view[f"meta_card.{key}"] = value
    return view


def validate_where(where: Any) -> None:
    """Raise ``ValueError`` unless ``where`` is a well-formed expression."""

    if where is None:
        return
    if not isinstance(where, dict):
        raise ValueError("where must be an object")
    for key, expr in where.items():
        if key in ("$and", "$or"):
            if not isinstance(expr, list):
                raise ValueError(f"{key} must be a list")
            for sub in expr:
                validate_where(sub)
        elif key.startswith("$"):
            raise ValueError(f"unsupported operator {key}")
        elif isinstance(expr, dict):
            for op, cond in expr.items():
                if op in ("$in", "$nin") and not isinstance(cond, list):
                    raise ValueError(f"{key}.{op} must be a list")
