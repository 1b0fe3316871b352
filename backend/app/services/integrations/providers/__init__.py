from app.services.integrations.providers.google_calendar import GoogleCalendarAdapter
from app.services.integrations.providers.google_sheets import GoogleSheetsAdapter
from app.services.integrations.providers.hubspot import HubSpotAdapter
from app.services.integrations.providers.microsoft_outlook import MicrosoftOutlookAdapter
from app.services.integrations.providers.pipedrive import PipedriveAdapter
from app.services.integrations.providers.salesforce import SalesforceAdapter
from app.services.integrations.providers.slack import SlackAdapter

__all__ = [
    "GoogleCalendarAdapter",
    "GoogleSheetsAdapter",
    "HubSpotAdapter",
    "MicrosoftOutlookAdapter",
    "PipedriveAdapter",
    "SalesforceAdapter",
    "SlackAdapter",
]
