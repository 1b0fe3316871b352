"""Provider adapter base class and factory.

Defines the abstract ProviderAdapter interface that every provider implements,
the normalized shapes exchanged with the reconciliation engine, and the
factory that returns the right adapter for an integration.

Adapters talk to the network only through ``ProviderHttpClient`` and never
touch the database; all local mutation goes through the engine.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from app.core.config import settings
from app.models.integration import Integration, IntegrationProvider, SyncDirection
from app.models.record_mapping import RecordType
from app.models.shared import parse_timestamp, utc_now
from app.services.integrations.errors import (
    CapabilityNotSupported,
    MalformedRecord,
    ProviderError,
    ReauthRequired,
    TokenRejected,
)
from app.services.integrations.http_client import ProviderHttpClient

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("contact_name", "email", "phone_number", "company_name", "notes")
CALENDAR_EVENT_FIELDS = (
    "title",
    "description",
    "location",
    "start_time",
    "end_time",
    "all_day",
    "timezone",
    "status",
    "attendees",
)

# Local fields that identify a record when nothing else does
BUSINESS_KEYS: dict[str, tuple[str, ...]] = {
    RecordType.CONTACT.value: ("email", "phone_number"),
    RecordType.CALENDAR_EVENT.value: ("start_time",),
}


class Capability(str, Enum):
    LIST = "list_remote_records"
    FETCH_BATCH = "fetch_remote_record_batch"
    PUSH = "push_record"
    FIND_REMOTE = "find_remote_record"
    IDEMPOTENT_PUSH = "idempotent_push"


@dataclass
class TokenGrant:
    """Result of a code exchange or refresh at a provider's token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    scopes: tuple[str, ...] = ()
    token_type: str = "Bearer"
    extra: dict[str, Any] = field(default_factory=dict)

    def expires_at(self, now: datetime | None = None) -> datetime | None:
        if self.expires_in is None:
            return None
        return (now or utc_now()) + timedelta(seconds=int(self.expires_in))

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> "TokenGrant":
        access_token = data.get("access_token")
        if not access_token:
            raise ProviderError("Token response did not include an access_token")
        raw_scope = data.get("scope") or ""
        scopes = tuple(raw_scope.replace(",", " ").split()) if isinstance(raw_scope, str) else ()
        expires_in = data.get("expires_in")
        return cls(
            access_token=str(access_token),
            refresh_token=data.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scopes=scopes,
            token_type=str(data.get("token_type") or "Bearer"),
            extra={
                k: v
                for k, v in data.items()
                if k not in ("access_token", "refresh_token", "expires_in", "scope", "token_type")
            },
        )


@dataclass
class AccountIdentity:
    account_id: str | None = None
    email: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedRecord:
    """A remote record expressed in local field names."""

    external_id: str
    record_type: str
    fields: dict[str, Any]
    updated_at: datetime | None = None
    deleted: bool = False
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class RemotePage:
    """One page of raw provider records.

    ``next_page_token`` is None on the last page, where ``sync_cursor`` may
    carry the provider's incremental-sync token for the next run.
    """

    records: list[dict[str, Any]]
    next_page_token: str | None = None
    sync_cursor: str | None = None


class ProviderAdapter(ABC):
    """Abstract base class for provider adapters.

    Each provider declares the subset of ``Capability`` it implements;
    calling an undeclared capability raises ``CapabilityNotSupported``.
    Provider-specific config is read from ``Integration.settings``.
    """

    provider: IntegrationProvider
    record_type: RecordType = RecordType.CONTACT
    capabilities: frozenset[Capability] = frozenset()
    default_direction: SyncDirection = SyncDirection.INBOUND
    # external field name -> local field name
    default_field_mapping: dict[str, str] = {}

    authorize_endpoint: str = ""
    token_endpoint: str = ""
    scopes: tuple[str, ...] = ()
    scope_separator: str = " "
    extra_authorize_params: dict[str, str] = {}

    def __init__(
        self,
        integration: Integration | None = None,
        http: ProviderHttpClient | None = None,
    ) -> None:
        self.integration = integration
        self.http = http or ProviderHttpClient()

    # ── capabilities ────────────────────────────────────────────────────

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def require(self, capability: Capability) -> None:
        if capability not in self.capabilities:
            raise CapabilityNotSupported(
                f"{self.provider.value} does not support {capability.value}"
            )

    @property
    def integration_settings(self) -> dict[str, Any]:
        if self.integration is None:
            return {}
        return dict(self.integration.settings or {})

    # ── OAuth ───────────────────────────────────────────────────────────

    @property
    @abstractmethod
    def client_id(self) -> str: ...  # pragma: no cover

    @property
    @abstractmethod
    def client_secret(self) -> str: ...  # pragma: no cover

    @property
    def redirect_uri(self) -> str:
        return settings.oauth_redirect_uri(self.provider.value)

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if self.scopes:
            params["scope"] = self.scope_separator.join(self.scopes)
        params.update(self.extra_authorize_params)
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def token_headers(self) -> dict[str, str]:
        """Extra headers for token endpoint calls, e.g. HTTP basic client auth."""
        return {}

    def exchange_code(self, code: str) -> TokenGrant:
        data = self.http.post_json(
            self.token_endpoint,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers=self.token_headers(),
        )
        return TokenGrant.from_token_response(data)

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        A rejected grant (400/401 from the token endpoint) is terminal and
        raised as ``ReauthRequired``; network failures stay transient.
        """
        try:
            data = self.http.post_json(
                self.token_endpoint,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers=self.token_headers(),
                idempotent=True,
            )
        except TokenRejected as exc:
            raise ReauthRequired(f"{self.provider.value} refresh token rejected") from exc
        except ProviderError as exc:
            if exc.status_code in (400, 401, 403):
                raise ReauthRequired(
                    f"{self.provider.value} refresh token rejected: {exc.message}"
                ) from exc
            raise
        return TokenGrant.from_token_response(data)

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        return AccountIdentity()

    # ── records ─────────────────────────────────────────────────────────

    def list_remote_records(
        self,
        access_token: str,
        page_token: str | None = None,
        resource: Any = None,
        since: datetime | None = None,
        cursor: str | None = None,
    ) -> RemotePage:
        raise CapabilityNotSupported(f"{self.provider.value} cannot list records")

    def fetch_remote_record_batch(
        self,
        access_token: str,
        external_ids: list[str],
        resource: Any = None,
    ) -> list[dict[str, Any]]:
        raise CapabilityNotSupported(f"{self.provider.value} cannot fetch records by id")

    def push_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        external_id: str | None = None,
        resource: Any = None,
        idempotency_key: str | None = None,
    ) -> str:
        raise CapabilityNotSupported(f"{self.provider.value} cannot push records")

    def find_remote_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        resource: Any = None,
    ) -> str | None:
        raise CapabilityNotSupported(f"{self.provider.value} cannot look up records")

    # ── field mapping ───────────────────────────────────────────────────

    @abstractmethod
    def external_id_of(self, raw: dict[str, Any]) -> str | None: ...  # pragma: no cover

    def record_id(self, raw: dict[str, Any], fields: dict[str, Any]) -> str | None:
        """External ID of a mapped record; most providers carry it on the payload."""
        return self.external_id_of(raw)

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Flat view of *raw* keyed by the names a field mapping refers to."""
        return raw

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        return None

    def is_deleted(self, raw: dict[str, Any]) -> bool:
        return False

    def finalize_fields(
        self, fields: dict[str, Any], flat: dict[str, Any], raw: dict[str, Any]
    ) -> None:
        """Hook for fields that need more than a one-to-one rename."""

    @property
    def local_fields(self) -> tuple[str, ...]:
        if self.record_type == RecordType.CALENDAR_EVENT:
            return CALENDAR_EVENT_FIELDS
        return CONTACT_FIELDS

    def map_remote_to_local(
        self,
        raw: dict[str, Any],
        field_mapping: dict[str, str] | None = None,
    ) -> NormalizedRecord:
        """Translate a raw provider record into local field names.

        Missing fields default to None. Mapped targets that are not local
        columns land in ``custom_fields``. Raises ``MalformedRecord`` when
        the record has no ID or none of its business keys survive mapping.
        """
        flat = self.flatten(raw)
        lookup = {str(k).strip().lower(): v for k, v in flat.items()}
        fields: dict[str, Any] = dict.fromkeys(self.local_fields)
        custom: dict[str, Any] = {}
        mapping = {**self.default_field_mapping, **(field_mapping or {})}

        for external_name, local_name in mapping.items():
            value = lookup.get(external_name.strip().lower())
            if isinstance(value, str):
                value = value.strip() or None
            if value is None:
                continue
            if local_name in fields:
                fields[local_name] = value
            else:
                custom[local_name] = value

        self.finalize_fields(fields, flat, raw)
        if custom:
            fields["custom_fields"] = custom

        external_id = self.record_id(raw, fields)
        if not external_id:
            raise MalformedRecord(f"{self.provider.value} record has no id")

        deleted = self.is_deleted(raw)
        keys = BUSINESS_KEYS[self.record_type.value]
        if not deleted and not any(fields.get(key) for key in keys):
            raise MalformedRecord(
                f"{self.provider.value} record {external_id} has none of: {', '.join(keys)}",
                external_id=external_id,
            )

        return NormalizedRecord(
            external_id=str(external_id),
            record_type=self.record_type.value,
            fields=fields,
            updated_at=self.updated_at_of(raw),
            deleted=deleted,
            raw=raw,
        )

    @staticmethod
    def parse_time(value: Any) -> datetime | None:
        return parse_timestamp(value)


def _registry() -> dict[str, type[ProviderAdapter]]:
    from app.services.integrations.providers.google_calendar import GoogleCalendarAdapter
    from app.services.integrations.providers.google_sheets import GoogleSheetsAdapter
    from app.services.integrations.providers.hubspot import HubSpotAdapter
    from app.services.integrations.providers.microsoft_outlook import MicrosoftOutlookAdapter
    from app.services.integrations.providers.pipedrive import PipedriveAdapter
    from app.services.integrations.providers.salesforce import SalesforceAdapter
    from app.services.integrations.providers.slack import SlackAdapter

    return {
        IntegrationProvider.GOOGLE_CALENDAR.value: GoogleCalendarAdapter,
        IntegrationProvider.MICROSOFT_OUTLOOK.value: MicrosoftOutlookAdapter,
        IntegrationProvider.GOOGLE_SHEETS.value: GoogleSheetsAdapter,
        IntegrationProvider.HUBSPOT.value: HubSpotAdapter,
        IntegrationProvider.PIPEDRIVE.value: PipedriveAdapter,
        IntegrationProvider.SALESFORCE.value: SalesforceAdapter,
        IntegrationProvider.SLACK.value: SlackAdapter,
    }


def get_provider_adapter(
    provider: str,
    integration: Integration | None = None,
    http: ProviderHttpClient | None = None,
) -> ProviderAdapter:
    """Factory: return the adapter for *provider*.

    Raises ``ValueError`` if the provider is not supported.
    """
    adapter_cls = _registry().get(str(provider))
    if adapter_cls is None:
        raise ValueError(f"No adapter registered for provider={provider}")
    return adapter_cls(integration, http=http)
