"""
Append-only persistence helpers.

``AppendOnlyLog`` is the only write path for compliance tables: it can add
rows and read them back, nothing else. ``register_append_only`` backs that up
at the ORM layer so a stray attribute change or bulk UPDATE/DELETE on a
protected model fails loudly instead of rewriting history. The database
triggers created with the tables are the last line.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy import event, select
from sqlalchemy.orm import ORMExecuteState, Session

from app.ascops.errors import AppendOnlyViolation

T = TypeVar("T")

_APPEND_ONLY_MODELS: set[type] = set()


class AppendOnlyLog(Generic[T]):
    """Write-once ledger over a mapped model: ``append`` and ``list`` only."""

    def __init__(self, s: Session, model: type[T]) -> None:
        if model not in _APPEND_ONLY_MODELS:
            raise TypeError(f"{model.__name__} is not registered as append-only")
        self._s = s
        self._model = model

    def append(self, **fields: Any) -> T:
        row = self._model(**fields)
        self._s.add(row)
        self._s.flush()
        return row

    def list(self, *criteria: Any, order_by: Any = None) -> list[T]:
        stmt = select(self._model).where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
        return list(self._s.scalars(stmt).all())


def _reject_update(mapper, connection, target) -> None:
    raise AppendOnlyViolation(f"{type(target).__name__} rows are append-only (UPDATE rejected)")


def _reject_delete(mapper, connection, target) -> None:
    raise AppendOnlyViolation(f"{type(target).__name__} rows are append-only (DELETE rejected)")


def register_append_only(model: type[T]) -> type[T]:
    """Class decorator: mark a mapped model as write-once."""
    if model in _APPEND_ONLY_MODELS:
        return model
    event.listen(model, "before_update", _reject_update)
    event.listen(model, "before_delete", _reject_delete)
    _APPEND_ONLY_MODELS.add(model)
    return model


def is_append_only(model: type) -> bool:
    return model in _APPEND_ONLY_MODELS


@event.listens_for(Session, "do_orm_execute")
def _reject_bulk_writes(state: ORMExecuteState) -> None:
    if not (state.is_update or state.is_delete):
        return
    mapper = state.bind_mapper
    if mapper is not None and mapper.class_ in _APPEND_ONLY_MODELS:
        verb = "UPDATE" if state.is_update else "DELETE"
        raise AppendOnlyViolation(f"{mapper.class_.__name__} rows are append-only (bulk {verb} rejected)")
