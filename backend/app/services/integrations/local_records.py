"""Local record stores the reconciliation engine writes through.

Stores flush but never commit; the engine decides transaction boundaries.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.calendar_event import CalendarEvent, CalendarEventStatus
from app.models.contact import Contact
from app.models.record_mapping import RecordType
from app.models.shared import as_utc, utc_now
from app.repositories.calendar_event_repository import CalendarEventRepository
from app.repositories.contact_repository import ContactRepository
from app.services.integrations.base import CALENDAR_EVENT_FIELDS, CONTACT_FIELDS


def normalize_email(value: Any) -> str | None:
    if not value:
        return None
    email = str(value).strip().lower()
    return email or None


def normalize_phone(value: Any) -> str | None:
    if not value:
        return None
    digits = re.sub(r"\D", "", str(value))
    return digits or None


class LocalRecordStore(ABC):
    record_type: RecordType
    # JSON column holding unmapped provider fields
    extra_attribute: str

    def __init__(self, db: Session, organization_id: UUID):
        self.db = db
        self.organization_id = organization_id

    @abstractmethod
    def get(self, local_id: UUID) -> Any: ...  # pragma: no cover

    @abstractmethod
    def find_by_business_key(self, fields: dict[str, Any]) -> list[Any]: ...  # pragma: no cover

    @abstractmethod
    def create(self, fields: dict[str, Any], source: str) -> Any: ...  # pragma: no cover

    @abstractmethod
    def update(self, record: Any, fields: dict[str, Any]) -> Any: ...  # pragma: no cover

    @abstractmethod
    def mark_deleted(self, record: Any) -> bool: ...  # pragma: no cover

    @abstractmethod
    def pending_outbound(
        self, since: datetime | None = None, ids: Iterable[UUID] | None = None
    ) -> list[Any]: ...  # pragma: no cover

    @abstractmethod
    def to_fields(self, record: Any) -> dict[str, Any]: ...  # pragma: no cover

    def updated_at(self, record: Any) -> datetime | None:
        return as_utc(record.updated_at)

    @abstractmethod
    def _values(self, fields: dict[str, Any]) -> dict[str, Any]: ...  # pragma: no cover

    def is_unchanged(self, record: Any, fields: dict[str, Any]) -> bool:
        """True when applying *fields* would not change *record*."""
        for key, value in self._values(fields).items():
            current = getattr(record, key)
            if isinstance(value, datetime) and isinstance(current, datetime):
                if as_utc(value) != as_utc(current):
                    return False
            elif current != value:
                return False
        extra = getattr(record, self.extra_attribute) or {}
        return all(extra.get(k) == v for k, v in (fields.get("custom_fields") or {}).items())


def _present(fields: dict[str, Any], names: Iterable[str]) -> dict[str, Any]:
    """Only fields the remote side actually supplied; missing ones never blank local data."""
    return {name: fields[name] for name in names if fields.get(name) is not None}


class ContactStore(LocalRecordStore):
    record_type = RecordType.CONTACT
    extra_attribute = "custom_fields"

    def __init__(self, db: Session, organization_id: UUID):
        super().__init__(db, organization_id)
        self.repo = ContactRepository(db)

    def get(self, local_id: UUID) -> Contact | None:
        return self.repo.get_by_id(local_id, self.organization_id)

    def find_by_business_key(self, fields: dict[str, Any]) -> list[Contact]:
        """Candidates by normalized email, falling back to normalized phone."""
        email = normalize_email(fields.get("email"))
        if email:
            matches = self.repo.find_by_email(self.organization_id, email)
            if matches:
                return matches
        phone = normalize_phone(fields.get("phone_number"))
        if phone:
            return self.repo.find_by_phone(self.organization_id, phone)
        return []

    def _values(self, fields: dict[str, Any]) -> dict[str, Any]:
        values = _present(fields, CONTACT_FIELDS)
        if "email" in values:
            values["email_normalized"] = normalize_email(values["email"])
        if "phone_number" in values:
            values["phone_normalized"] = normalize_phone(values["phone_number"])
        return values

    def create(self, fields: dict[str, Any], source: str) -> Contact:
        values = self._values(fields)
        values["source"] = source
        values["tags"] = [f"{source}-import"]
        values["custom_fields"] = dict(fields.get("custom_fields") or {})
        return self.repo.add(self.organization_id, values)

    def update(self, record: Contact, fields: dict[str, Any]) -> Contact:
        # ``source`` is left alone so a contact imported elsewhere keeps its origin
        values = self._values(fields)
        if fields.get("custom_fields"):
            values["custom_fields"] = {**(record.custom_fields or {}), **fields["custom_fields"]}
        return self.repo.apply(record, values)

    def mark_deleted(self, record: Contact) -> bool:
        # Remote deletions never remove local contacts
        return False

    def pending_outbound(
        self, since: datetime | None = None, ids: Iterable[UUID] | None = None
    ) -> list[Contact]:
        if ids is not None:
            ids = list(ids)
            if not ids:
                return []
            return self.repo.changed_since(self.organization_id, ids=ids)
        return self.repo.changed_since(self.organization_id, since=since)

    def to_fields(self, record: Contact) -> dict[str, Any]:
        fields = {name: getattr(record, name) for name in CONTACT_FIELDS}
        fields["custom_fields"] = dict(record.custom_fields or {})
        return fields


class CalendarEventStore(LocalRecordStore):
    """Calendar events have no business key, so remote events are never adopted."""

    record_type = RecordType.CALENDAR_EVENT
    extra_attribute = "extra_data"
    # Outbound sync only considers events from this far back onwards
    outbound_window = timedelta(days=1)

    def __init__(self, db: Session, organization_id: UUID):
        super().__init__(db, organization_id)
        self.repo = CalendarEventRepository(db)

    def get(self, local_id: UUID) -> CalendarEvent | None:
        return self.repo.get_by_id(local_id, self.organization_id)

    def find_by_business_key(self, fields: dict[str, Any]) -> list[CalendarEvent]:
        return []

    def _values(self, fields: dict[str, Any]) -> dict[str, Any]:
        values = _present(fields, CALENDAR_EVENT_FIELDS)
        for key in ("start_time", "end_time"):
            if key in values:
                values[key] = as_utc(values[key])
        return values

    def create(self, fields: dict[str, Any], source: str) -> CalendarEvent:
        values = self._values(fields)
        values["source"] = source
        values.setdefault("title", "Untitled Event")
        values.setdefault("status", CalendarEventStatus.SCHEDULED.value)
        if fields.get("custom_fields"):
            values["extra_data"] = dict(fields["custom_fields"])
        return self.repo.add(self.organization_id, values)

    def update(self, record: CalendarEvent, fields: dict[str, Any]) -> CalendarEvent:
        values = self._values(fields)
        if fields.get("custom_fields"):
            values["extra_data"] = {**(record.extra_data or {}), **fields["custom_fields"]}
        return self.repo.apply(record, values)

    def mark_deleted(self, record: CalendarEvent) -> bool:
        if record.status == CalendarEventStatus.CANCELLED.value:
            return False
        self.repo.apply(record, {"status": CalendarEventStatus.CANCELLED.value})
        return True

    def pending_outbound(
        self, since: datetime | None = None, ids: Iterable[UUID] | None = None
    ) -> list[CalendarEvent]:
        if ids is not None:
            ids = list(ids)
            if not ids:
                return []
            return self.repo.changed_since(self.organization_id, ids=ids)
        horizon = utc_now() - self.outbound_window
        return [
            event
            for event in self.repo.changed_since(self.organization_id, since=since)
            if as_utc(event.start_time) is not None and as_utc(event.start_time) >= horizon
        ]

    def to_fields(self, record: CalendarEvent) -> dict[str, Any]:
        fields = {name: getattr(record, name) for name in CALENDAR_EVENT_FIELDS}
        fields["start_time"] = as_utc(record.start_time)
        fields["end_time"] = as_utc(record.end_time)
        return fields


def get_local_store(record_type: str, db: Session, organization_id: UUID) -> LocalRecordStore:
    if record_type == RecordType.CALENDAR_EVENT.value:
        return CalendarEventStore(db, organization_id)
    return ContactStore(db, organization_id)
