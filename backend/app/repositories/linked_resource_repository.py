"""LinkedResource repository for data access."""

from uuid import UUID

from sqlalchemy.orm import Session

from app.models.linked_resource import LinkedResource
from app.models.record_mapping import RecordMapping
from app.schemas.linked_resource import LinkedResourceCreate, LinkedResourceUpdate


class LinkedResourceRepository:
    """Repository for LinkedResource model."""

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        integration_id: UUID,
        skip: int = 0,
        limit: int = 100,
        is_active: bool | None = None,
    ) -> list[LinkedResource]:
        """Get all linked resources for an integration."""
        query = self.db.query(LinkedResource).filter(
            LinkedResource.integration_id == integration_id
        )
        if is_active is not None:
            query = query.filter(LinkedResource.is_active == is_active)
        return query.order_by(LinkedResource.created_at.asc()).offset(skip).limit(limit).all()

    def get_by_id(
        self,
        resource_id: UUID,
        integration_id: UUID | None = None,
    ) -> LinkedResource | None:
        query = self.db.query(LinkedResource).filter(LinkedResource.id == resource_id)
        if integration_id is not None:
            query = query.filter(LinkedResource.integration_id == integration_id)
        return query.first()

    def get_by_external_id(
        self,
        integration_id: UUID,
        external_resource_id: str,
    ) -> LinkedResource | None:
        return (
            self.db.query(LinkedResource)
            .filter(
                LinkedResource.integration_id == integration_id,
                LinkedResource.external_resource_id == external_resource_id,
            )
            .first()
        )

    def create(self, integration_id: UUID, data: LinkedResourceCreate) -> LinkedResource:
        """Create a new linked resource."""
        resource = LinkedResource(
            integration_id=integration_id,
            resource_type=data.resource_type.value,
            external_resource_id=data.external_resource_id,
            external_resource_name=data.external_resource_name,
            field_mapping=data.field_mapping,
            sync_direction=data.sync_direction.value,
        )
        self.db.add(resource)
        self.db.commit()
        self.db.refresh(resource)
        return resource

    def update(
        self,
        resource_id: UUID,
        data: LinkedResourceUpdate,
        integration_id: UUID | None = None,
    ) -> LinkedResource | None:
        resource = self.get_by_id(resource_id, integration_id)
        if not resource:
            return None
        for key, value in data.model_dump(exclude_unset=True, mode="json").items():
            setattr(resource, key, value)
        self.db.commit()
        self.db.refresh(resource)
        return resource

    def delete(self, resource_id: UUID, integration_id: UUID | None = None) -> bool:
        """Unlink a resource, removing the record mappings that came through it."""
        resource = self.get_by_id(resource_id, integration_id)
        if not resource:
            return False
        self.db.query(RecordMapping).filter(
            RecordMapping.linked_resource_id == resource.id
        ).delete(synchronize_session=False)
        self.db.delete(resource)
        self.db.commit()
        return True
