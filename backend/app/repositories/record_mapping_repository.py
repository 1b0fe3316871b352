"""RecordMapping repository for data access."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.sorting import apply_order_by
from app.models.record_mapping import RecordMapping


class RecordMappingRepository:
    """Repository for RecordMapping model.

    Mutating helpers only flush; the reconciliation engine owns the commit
    so a batch of mapping writes lands in one transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        integration_id: UUID,
        skip: int = 0,
        limit: int = 100,
        order_by: str | None = None,
        linked_resource_id: UUID | None = None,
    ) -> list[RecordMapping]:
        """Get all mappings for an integration."""
        query = self.db.query(RecordMapping).filter(RecordMapping.integration_id == integration_id)
        if linked_resource_id is not None:
            query = query.filter(RecordMapping.linked_resource_id == linked_resource_id)
        query = apply_order_by(query, RecordMapping, order_by)
        return query.offset(skip).limit(limit).all()

    def count(self, integration_id: UUID) -> int:
        return (
            self.db.query(RecordMapping)
            .filter(RecordMapping.integration_id == integration_id)
            .count()
        )

    def get_by_external_id(
        self,
        integration_id: UUID,
        external_id: str,
    ) -> RecordMapping | None:
        return (
            self.db.query(RecordMapping)
            .filter(
                RecordMapping.integration_id == integration_id,
                RecordMapping.external_id == external_id,
            )
            .first()
        )

    def get_by_local_id(
        self,
        integration_id: UUID,
        local_id: UUID,
    ) -> RecordMapping | None:
        return (
            self.db.query(RecordMapping)
            .filter(
                RecordMapping.integration_id == integration_id,
                RecordMapping.local_id == local_id,
            )
            .first()
        )

    def mapped_local_ids(self, integration_id: UUID, record_type: str) -> dict[UUID, RecordMapping]:
        """Index an integration's mappings of one record type by local ID."""
        rows = (
            self.db.query(RecordMapping)
            .filter(
                RecordMapping.integration_id == integration_id,
                RecordMapping.record_type == record_type,
            )
            .all()
        )
        return {row.local_id: row for row in rows}

    def add(
        self,
        integration_id: UUID,
        record_type: str,
        external_id: str,
        local_id: UUID,
        synced_at: datetime,
        external_updated_at: datetime | None = None,
        linked_resource_id: UUID | None = None,
    ) -> RecordMapping:
        mapping = RecordMapping(
            integration_id=integration_id,
            record_type=record_type,
            external_id=external_id,
            local_id=local_id,
            linked_resource_id=linked_resource_id,
            external_updated_at=external_updated_at,
            last_synced_at=synced_at,
        )
        self.db.add(mapping)
        self.db.flush()
        return mapping

    def touch(
        self,
        mapping: RecordMapping,
        synced_at: datetime,
        external_updated_at: datetime | None = None,
    ) -> RecordMapping:
        """Record a successful sync of an existing pair."""
        mapping.last_synced_at = synced_at
        if external_updated_at is not None:
            mapping.external_updated_at = external_updated_at
        self.db.flush()
        return mapping
