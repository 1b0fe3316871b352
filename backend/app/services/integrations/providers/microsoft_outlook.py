"""Microsoft Outlook calendar adapter (Microsoft Graph)."""

import logging
import re
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

from app.core.config import settings
from app.models.calendar_event import CalendarEventStatus
from app.models.integration import IntegrationProvider, SyncDirection
from app.models.record_mapping import RecordType
from app.models.shared import as_utc, utc_now
from app.services.integrations.base import (
    AccountIdentity,
    Capability,
    ProviderAdapter,
    RemotePage,
    TokenGrant,
)
from app.services.integrations.errors import ProviderError

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
LOOKAHEAD_DAYS = 90
# Ask Graph for UTC so naive dateTime values can be read as UTC
PREFER_UTC = {"Prefer": 'outlook.timezone="UTC"'}


def _graph_time(value: Any) -> Any:
    """Graph emits seven fractional digits; datetime parses at most six."""
    if isinstance(value, str):
        return re.sub(r"(\.\d{6})\d+", r"\1", value)
    return value


class MicrosoftOutlookAdapter(ProviderAdapter):
    """Outlook events via calendarView delta queries.

    Creates carry a ``transactionId`` so Graph drops a retried duplicate.
    """

    provider = IntegrationProvider.MICROSOFT_OUTLOOK
    record_type = RecordType.CALENDAR_EVENT
    capabilities = frozenset(
        {Capability.LIST, Capability.FETCH_BATCH, Capability.PUSH, Capability.IDEMPOTENT_PUSH}
    )
    default_direction = SyncDirection.BIDIRECTIONAL
    default_field_mapping = {
        "subject": "title",
        "bodyPreview": "description",
        "location": "location",
        "start": "start_time",
        "end": "end_time",
    }
    scopes = ("offline_access", "User.Read", "Calendars.ReadWrite")

    @property
    def authorize_endpoint(self) -> str:  # type: ignore[override]
        return f"https://login.microsoftonline.com/{settings.microsoft_tenant}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:  # type: ignore[override]
        return f"https://login.microsoftonline.com/{settings.microsoft_tenant}/oauth2/v2.0/token"

    @property
    def client_id(self) -> str:
        return settings.microsoft_client_id

    @property
    def client_secret(self) -> str:
        return settings.microsoft_client_secret

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        me = self.http.get_json(f"{GRAPH_BASE}/me", token=grant.access_token)
        return AccountIdentity(
            account_id=me.get("id"),
            email=me.get("mail") or me.get("userPrincipalName"),
        )

    def _calendar_path(self, resource: Any = None) -> str:
        calendar_id = (
            resource.external_resource_id
            if resource is not None
            else self.integration_settings.get("calendar_id")
        )
        if calendar_id:
            return f"{GRAPH_BASE}/me/calendars/{quote(str(calendar_id), safe='')}"
        return f"{GRAPH_BASE}/me"

    # ── records ─────────────────────────────────────────────────────────

    def list_remote_records(
        self,
        access_token: str,
        page_token: str | None = None,
        resource: Any = None,
        since: datetime | None = None,
        cursor: str | None = None,
    ) -> RemotePage:
        try:
            if page_token:
                data = self.http.get_json(page_token, token=access_token, headers=PREFER_UTC)
            elif cursor:
                data = self.http.get_json(cursor, token=access_token, headers=PREFER_UTC)
            else:
                now = utc_now()
                data = self.http.get_json(
                    f"{self._calendar_path(resource)}/calendarView/delta",
                    token=access_token,
                    headers=PREFER_UTC,
                    params={
                        "startDateTime": now.isoformat(),
                        "endDateTime": (now + timedelta(days=LOOKAHEAD_DAYS)).isoformat(),
                    },
                )
        except ProviderError as exc:
            if exc.status_code in (404, 410) and cursor and not page_token:
                logger.warning("Outlook delta link expired, listing from scratch")
                return self.list_remote_records(access_token, None, resource, since, None)
            raise

        return RemotePage(
            records=data.get("value") or [],
            next_page_token=data.get("@odata.nextLink"),
            sync_cursor=data.get("@odata.deltaLink"),
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
                        f"{GRAPH_BASE}/me/events/{quote(external_id, safe='')}",
                        token=access_token,
                        headers=PREFER_UTC,
                    )
                )
            except ProviderError as exc:
                if exc.status_code == 404:
                    logger.info("Outlook event %s no longer exists", external_id)
                    continue
                raise
        return events

    def _body(self, fields: dict[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {"subject": fields.get("title")}
        if fields.get("description"):
            body["body"] = {"contentType": "text", "content": fields["description"]}
        if fields.get("location"):
            body["location"] = {"displayName": fields["location"]}
        start = as_utc(fields.get("start_time"))
        if start is not None:
            end = as_utc(fields.get("end_time")) or start + timedelta(hours=1)
            body["start"] = {"dateTime": start.replace(tzinfo=None).isoformat(), "timeZone": "UTC"}
            body["end"] = {"dateTime": end.replace(tzinfo=None).isoformat(), "timeZone": "UTC"}
        if fields.get("all_day") is not None:
            body["isAllDay"] = bool(fields["all_day"])
        if fields.get("attendees"):
            body["attendees"] = [
                {"emailAddress": {"address": email}, "type": "required"}
                for email in fields["attendees"]
            ]
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
                f"{GRAPH_BASE}/me/events/{quote(external_id, safe='')}",
                token=access_token,
                json=body,
                idempotent=True,
            )
            return external_id
        if idempotency_key:
            body["transactionId"] = idempotency_key
        data = self.http.post_json(
            f"{self._calendar_path(resource)}/events",
            token=access_token,
            json=body,
            idempotent=idempotency_key is not None,
        )
        return str(data["id"])

    # ── field mapping ───────────────────────────────────────────────────

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        return raw.get("id")

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        start = raw.get("start") or {}
        end = raw.get("end") or {}
        location = raw.get("location") or {}
        return {
            "subject": raw.get("subject"),
            "bodyPreview": raw.get("bodyPreview"),
            "location": location.get("displayName") if isinstance(location, dict) else location,
            "start": _graph_time(start.get("dateTime")),
            "end": _graph_time(end.get("dateTime")),
        }

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        return self.parse_time(raw.get("lastModifiedDateTime"))

    def is_deleted(self, raw: dict[str, Any]) -> bool:
        return "@removed" in raw or bool(raw.get("isCancelled"))

    def finalize_fields(
        self, fields: dict[str, Any], flat: dict[str, Any], raw: dict[str, Any]
    ) -> None:
        fields["start_time"] = self.parse_time(fields.get("start_time"))
        fields["end_time"] = self.parse_time(fields.get("end_time"))
        fields["all_day"] = bool(raw.get("isAllDay"))
        fields["timezone"] = "UTC"
        if self.is_deleted(raw):
            fields["status"] = CalendarEventStatus.CANCELLED.value
        elif "isCancelled" in raw:
            fields["status"] = CalendarEventStatus.SCHEDULED.value
        attendees = [
            (a.get("emailAddress") or {}).get("address")
            for a in raw.get("attendees") or []
            if (a.get("emailAddress") or {}).get("address")
        ]
        fields["attendees"] = attendees or None
