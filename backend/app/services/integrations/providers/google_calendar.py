"""Google Calendar events adapter."""

import logging
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

from app.models.calendar_event import CalendarEventStatus
from app.models.integration import IntegrationProvider, SyncDirection
from app.models.record_mapping import RecordType
from app.models.shared import as_utc, utc_now
from app.services.integrations.base import Capability, RemotePage
from app.services.integrations.errors import ProviderError
from app.services.integrations.providers.google_oauth import GoogleOAuthAdapter

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/calendar/v3"
PAGE_SIZE = 250
LOOKAHEAD_DAYS = 90

_STATUS_FROM_GOOGLE = {
    "confirmed": CalendarEventStatus.CONFIRMED.value,
    "tentative": CalendarEventStatus.SCHEDULED.value,
    "cancelled": CalendarEventStatus.CANCELLED.value,
}


def _event_time(value: datetime | None, tz: str | None) -> dict[str, Any]:
    stamp = as_utc(value)
    assert stamp is not None
    return {"dateTime": stamp.isoformat(), "timeZone": tz or "UTC"}


class GoogleCalendarAdapter(GoogleOAuthAdapter):
    """Events of the primary calendar or of a linked calendar.

    Creates are sent with a client-chosen event id derived from the local
    record, so a retried create either succeeds or answers 409 for the
    event that already exists.
    """

    provider = IntegrationProvider.GOOGLE_CALENDAR
    record_type = RecordType.CALENDAR_EVENT
    capabilities = frozenset(
        {Capability.LIST, Capability.FETCH_BATCH, Capability.PUSH, Capability.IDEMPOTENT_PUSH}
    )
    default_direction = SyncDirection.BIDIRECTIONAL
    default_field_mapping = {
        "summary": "title",
        "description": "description",
        "location": "location",
        "start": "start_time",
        "end": "end_time",
        "timeZone": "timezone",
    }
    scopes = (
        "https://www.googleapis.com/auth/calendar.events",
        "https://www.googleapis.com/auth/userinfo.email",
    )

    def calendar_id(self, resource: Any = None) -> str:
        if resource is not None:
            return str(resource.external_resource_id)
        return str(self.integration_settings.get("calendar_id") or "primary")

    def _events_url(self, resource: Any = None) -> str:
        return f"{API_BASE}/calendars/{quote(self.calendar_id(resource), safe='')}/events"

    # ── records ─────────────────────────────────────────────────────────

    def list_remote_records(
        self,
        access_token: str,
        page_token: str | None = None,
        resource: Any = None,
        since: datetime | None = None,
        cursor: str | None = None,
    ) -> RemotePage:
        params: dict[str, Any] = {"maxResults": PAGE_SIZE, "singleEvents": "true"}
        if cursor:
            params["syncToken"] = cursor
        else:
            now = utc_now()
            params["timeMin"] = now.isoformat()
            params["timeMax"] = (now + timedelta(days=LOOKAHEAD_DAYS)).isoformat()
            params["showDeleted"] = "true"
        if page_token:
            params["pageToken"] = page_token

        try:
            data = self.http.get_json(self._events_url(resource), token=access_token, params=params)
        except ProviderError as exc:
            if exc.status_code == 410 and cursor:
                logger.warning(
                    "Google sync token expired for calendar %s, listing from scratch",
                    self.calendar_id(resource),
                )
                return self.list_remote_records(access_token, None, resource, since, None)
            raise

        return RemotePage(
            records=data.get("items") or [],
            next_page_token=data.get("nextPageToken"),
            sync_cursor=data.get("nextSyncToken"),
        )

    def fetch_remote_record_batch(
        self,
        access_token: str,
        external_ids: list[str],
        resource: Any = None,
    ) -> list[dict[str, Any]]:
        events = []
        for external_id in external_ids:
            try:
                events.append(
                    self.http.get_json(
                        f"{self._events_url(resource)}/{quote(external_id, safe='')}",
                        token=access_token,
                    )
                )
            except ProviderError as exc:
                if exc.status_code in (404, 410):
                    logger.info("Google event %s no longer exists", external_id)
                    continue
                raise
        return events

    def _body(self, fields: dict[str, Any]) -> dict[str, Any]:
        start = fields.get("start_time")
        end = fields.get("end_time") or (as_utc(start) + timedelta(hours=1) if start else None)
        tz = fields.get("timezone")
        body: dict[str, Any] = {
            "summary": fields.get("title"),
            "description": fields.get("description"),
            "location": fields.get("location"),
        }
        if start is not None:
            body["start"] = _event_time(start, tz)
            body["end"] = _event_time(end, tz)
        if fields.get("attendees"):
            body["attendees"] = [{"email": email} for email in fields["attendees"]]
        if fields.get("status") == CalendarEventStatus.CANCELLED.value:
            body["status"] = "cancelled"
        return {k: v for k, v in body.items() if v is not None}

    def push_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        external_id: str | None = None,
        resource: Any = None,
        idempotency_key: str | None = None,
    ) -> str:
        body = self._body(fields)
        if external_id:
            self.http.patch_json(
                f"{self._events_url(resource)}/{quote(external_id, safe='')}",
                token=access_token,
                json=body,
                idempotent=True,
            )
            return external_id

        if idempotency_key:
            body["id"] = idempotency_key
        try:
            data = self.http.post_json(
                self._events_url(resource),
                token=access_token,
                json=body,
                idempotent=idempotency_key is not None,
            )
        except ProviderError as exc:
            if exc.status_code == 409 and idempotency_key:
                # A previous attempt already created it
                return idempotency_key
            raise
        return str(data["id"])

    # ── field mapping ───────────────────────────────────────────────────

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        return raw.get("id")

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        start = raw.get("start") or {}
        end = raw.get("end") or {}
        return {
            "summary": raw.get("summary"),
            "description": raw.get("description"),
            "location": raw.get("location"),
            "start": start.get("dateTime") or start.get("date"),
            "end": end.get("dateTime") or end.get("date"),
            "timeZone": start.get("timeZone"),
            "status": raw.get("status"),
        }

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        return self.parse_time(raw.get("updated"))

    def is_deleted(self, raw: dict[str, Any]) -> bool:
        return raw.get("status") == "cancelled"

    def finalize_fields(
        self, fields: dict[str, Any], flat: dict[str, Any], raw: dict[str, Any]
    ) -> None:
        fields["start_time"] = self.parse_time(fields.get("start_time"))
        fields["end_time"] = self.parse_time(fields.get("end_time"))
        fields["all_day"] = bool((raw.get("start") or {}).get("date"))
        status = flat.get("status")
        fields["status"] = _STATUS_FROM_GOOGLE.get(str(status)) if status else None
        attendees = [a.get("email") for a in raw.get("attendees") or [] if a.get("email")]
        fields["attendees"] = attendees or None
