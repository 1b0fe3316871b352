"""CalendarEvent repository used by the sync engine's local record store."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.calendar_event import CalendarEvent


class CalendarEventRepository:
    """Repository for CalendarEvent model. Mutations flush without committing."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: UUID, organization_id: UUID) -> CalendarEvent | None:
        return (
            self.db.query(CalendarEvent)
            .filter(
                CalendarEvent.id == event_id,
                CalendarEvent.organization_id == organization_id,
            )
            .first()
        )

    def changed_since(
        self,
        organization_id: UUID,
        since: datetime | None = None,
        ids: Iterable[UUID] | None = None,
    ) -> list[CalendarEvent]:
        query = self.db.query(CalendarEvent).filter(
            CalendarEvent.organization_id == organization_id
        )
        conditions = []
        if since is not None:
            conditions.append(CalendarEvent.updated_at > since)
        if ids:
            conditions.append(CalendarEvent.id.in_(list(ids)))
        if conditions:
            query = query.filter(or_(*conditions))
        return query.order_by(CalendarEvent.start_time.asc()).all()

    def add(self, organization_id: UUID, values: dict[str, Any]) -> CalendarEvent:
        event = CalendarEvent(organization_id=organization_id, **values)
        self.db.add(event)
        self.db.flush()
        return event

    def apply(self, event: CalendarEvent, values: dict[str, Any]) -> CalendarEvent:
        for key, value in values.items():
            setattr(event, key, value)
        self.db.flush()
        return event
