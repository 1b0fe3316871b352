from app.models.calendar_event import CalendarEvent, CalendarEventStatus
from app.models.contact import Contact
from app.models.integration import Integration, IntegrationProvider, SyncDirection
from app.models.integration_credential import IntegrationCredential
from app.models.linked_resource import LinkedResource, LinkedResourceType
from app.models.organization import Organization
from app.models.record_mapping import RecordMapping, RecordType
from app.models.sync_run import SyncRun, SyncRunStatus, SyncType

__all__ = [
    "CalendarEvent",
    "CalendarEventStatus",
    "Contact",
    "Integration",
    "IntegrationCredential",
    "IntegrationProvider",
    "LinkedResource",
    "LinkedResourceType",
    "Organization",
    "RecordMapping",
    "RecordType",
    "SyncDirection",
    "SyncRun",
    "SyncRunStatus",
    "SyncType",
]
