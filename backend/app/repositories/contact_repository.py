"""Contact repository used by the sync engine's local record store."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.contact import Contact


class ContactRepository:
    """Repository for Contact model. Mutations flush without committing."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, contact_id: UUID, organization_id: UUID) -> Contact | None:
        return (
            self.db.query(Contact)
            .filter(Contact.id == contact_id, Contact.organization_id == organization_id)
            .first()
        )

    def find_by_email(self, organization_id: UUID, email_normalized: str) -> list[Contact]:
        return (
            self.db.query(Contact)
            .filter(
                Contact.organization_id == organization_id,
                Contact.email_normalized == email_normalized,
            )
            .order_by(Contact.created_at.asc())
            .limit(10)
            .all()
        )

    def find_by_phone(self, organization_id: UUID, phone_normalized: str) -> list[Contact]:
        return (
            self.db.query(Contact)
            .filter(
                Contact.organization_id == organization_id,
                Contact.phone_normalized == phone_normalized,
            )
            .order_by(Contact.created_at.asc())
            .limit(10)
            .all()
        )

    def changed_since(
        self,
        organization_id: UUID,
        since: datetime | None = None,
        ids: Iterable[UUID] | None = None,
    ) -> list[Contact]:
        """Contacts updated after *since* plus any explicitly requested IDs."""
        query = self.db.query(Contact).filter(Contact.organization_id == organization_id)
        conditions = []
        if since is not None:
            conditions.append(Contact.updated_at > since)
        if ids:
            conditions.append(Contact.id.in_(list(ids)))
        if conditions:
            query = query.filter(or_(*conditions))
        return query.order_by(Contact.created_at.asc()).all()

    def add(self, organization_id: UUID, values: dict[str, Any]) -> Contact:
        contact = Contact(organization_id=organization_id, **values)
        self.db.add(contact)
        self.db.flush()
        return contact

    def apply(self, contact: Contact, values: dict[str, Any]) -> Contact:
        for key, value in values.items():
            setattr(contact, key, value)
        self.db.flush()
        return contact
