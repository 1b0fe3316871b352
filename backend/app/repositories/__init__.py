from app.repositories.calendar_event_repository import CalendarEventRepository
from app.repositories.contact_repository import ContactRepository
from app.repositories.integration_repository import IntegrationRepository
from app.repositories.linked_resource_repository import LinkedResourceRepository
from app.repositories.record_mapping_repository import RecordMappingRepository
from app.repositories.sync_run_repository import SyncRunRepository

__all__ = [
    "CalendarEventRepository",
    "ContactRepository",
    "IntegrationRepository",
    "LinkedResourceRepository",
    "RecordMappingRepository",
    "SyncRunRepository",
]
