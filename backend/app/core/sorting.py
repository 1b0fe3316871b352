"""Sorting for list endpoints."""

from __future__ import annotations

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query

from app.core.database import Base


def apply_order_by(
    query: Query,  # type: ignore[type-arg]
    model: type[Base],
    order_by: str | None,
    default_field: str = "created_at",
    default_direction: str = "desc",
) -> Query:  # type: ignore[type-arg]
    """Order *query* by a ``"field:direction"`` string such as ``"started_at:asc"``.

    Unknown columns fall back to *default_field*. Rows are tie-broken by
    primary key so paging through equal timestamps is stable.
    """
    columns = model.__table__.columns
    field = default_field
    direction = default_direction

    if order_by:
        candidate_field, _, candidate_direction = order_by.partition(":")
        if candidate_field in columns:
            field = candidate_field
            direction = candidate_direction if candidate_direction in ("asc", "desc") else "asc"

    order_func = asc if direction == "asc" else desc
    query = query.order_by(order_func(getattr(model, field)))
    if field != "id" and "id" in columns:
        query = query.order_by(order_func(model.id))
    return query
