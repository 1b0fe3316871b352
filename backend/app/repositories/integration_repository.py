"""Integration repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.integration import Integration
from app.schemas.integration import IntegrationUpdate


class IntegrationRepository:
    """Repository for Integration model."""

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        organization_id: UUID,
        skip: int = 0,
        limit: int = 100,
        is_active: bool | None = None,
    ) -> list[Integration]:
        """Get all integrations for an organization."""
        query = self.db.query(Integration).filter(Integration.organization_id == organization_id)
        if is_active is not None:
            query = query.filter(Integration.is_active == is_active)
        return query.order_by(Integration.created_at.desc()).offset(skip).limit(limit).all()

    def count(self, organization_id: UUID) -> int:
        return (
            self.db.query(Integration)
            .filter(Integration.organization_id == organization_id)
            .count()
        )

    def get_active(self) -> list[Integration]:
        """Get every active integration across organizations, for scheduled sync."""
        return (
            self.db.query(Integration)
            .filter(Integration.is_active.is_(True))
            .order_by(Integration.created_at.asc())
            .all()
        )

    def get_by_id(
        self,
        integration_id: UUID,
        organization_id: UUID | None = None,
    ) -> Integration | None:
        """Get an integration by ID."""
        query = self.db.query(Integration).filter(Integration.id == integration_id)
        if organization_id is not None:
            query = query.filter(Integration.organization_id == organization_id)
        return query.first()

    def get_by_provider(
        self,
        organization_id: UUID,
        provider: str,
    ) -> Integration | None:
        """Get the integration for a provider in an organization, active or not."""
        return (
            self.db.query(Integration)
            .filter(
                Integration.organization_id == organization_id,
                Integration.provider == provider,
            )
            .first()
        )

    def update(
        self,
        integration_id: UUID,
        data: IntegrationUpdate,
        organization_id: UUID,
    ) -> Integration | None:
        """Update an integration."""
        integration = self.get_by_id(integration_id, organization_id)
        if not integration:
            return None
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(integration, key, value)
        self.db.commit()
        self.db.refresh(integration)
        return integration

    def deactivate(self, integration: Integration, reason: str | None = None) -> Integration:
        """Soft-delete an integration, optionally recording why."""
        integration.is_active = False
        if reason is not None:
            integration.error_details = {"reason": reason}
        self.db.commit()
        self.db.refresh(integration)
        return integration
