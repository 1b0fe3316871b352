"""Salesforce Contact adapter (REST + SOQL)."""

import logging
from datetime import UTC, datetime
from typing import Any

from app.core.config import settings
from app.models.integration import IntegrationProvider
from app.services.integrations.base import (
    AccountIdentity,
    Capability,
    ProviderAdapter,
    RemotePage,
    TokenGrant,
)
from app.services.integrations.errors import NotConnected
from app.services.integrations.providers.hubspot import split_name

logger = logging.getLogger(__name__)

API_VERSION = "v59.0"
CONTACT_COLUMNS = (
    "Id, FirstName, LastName, Name, Email, Phone, MobilePhone, Title, "
    "Account.Name, LastModifiedDate, IsDeleted"
)


def soql_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class SalesforceAdapter(ProviderAdapter):
    provider = IntegrationProvider.SALESFORCE
    capabilities = frozenset(
        {Capability.LIST, Capability.FETCH_BATCH, Capability.PUSH, Capability.FIND_REMOTE}
    )
    default_field_mapping = {
        "Name": "contact_name",
        "Email": "email",
        "Phone": "phone_number",
        "AccountName": "company_name",
        "Title": "job_title",
    }
    scopes = ("api", "refresh_token", "id")

    @property
    def authorize_endpoint(self) -> str:  # type: ignore[override]
        return f"{settings.salesforce_login_url.rstrip('/')}/services/oauth2/authorize"

    @property
    def token_endpoint(self) -> str:  # type: ignore[override]
        return f"{settings.salesforce_login_url.rstrip('/')}/services/oauth2/token"

    @property
    def client_id(self) -> str:
        return settings.salesforce_client_id

    @property
    def client_secret(self) -> str:
        return settings.salesforce_client_secret

    @property
    def instance_url(self) -> str:
        instance_url = self.integration_settings.get("instance_url")
        if not instance_url:
            raise NotConnected("Salesforce integration has no instance_url")
        return str(instance_url).rstrip("/")

    def _data_url(self, path: str) -> str:
        return f"{self.instance_url}/services/data/{API_VERSION}{path}"

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        instance_url = grant.extra.get("instance_url")
        identity_url = grant.extra.get("id")
        info: dict[str, Any] = {}
        if identity_url:
            info = self.http.get_json(str(identity_url), token=grant.access_token)
        return AccountIdentity(
            account_id=info.get("organization_id"),
            email=info.get("email"),
            settings={"instance_url": instance_url},
        )

    def _query(self, access_token: str, soql: str) -> dict[str, Any]:
        return self.http.get_json(self._data_url("/query"), token=access_token, params={"q": soql})

    # ── records ─────────────────────────────────────────────────────────

    def list_remote_records(
        self,
        access_token: str,
        page_token: str | None = None,
        resource: Any = None,
        since: datetime | None = None,
        cursor: str | None = None,
    ) -> RemotePage:
        if page_token:
            data = self.http.get_json(f"{self.instance_url}{page_token}", token=access_token)
        else:
            soql = f"SELECT {CONTACT_COLUMNS} FROM Contact"
            if since is not None:
                stamp = since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
                soql += f" WHERE LastModifiedDate > {stamp}"
            soql += " ORDER BY LastModifiedDate ASC"
            data = self._query(access_token, soql)
        next_url = None if data.get("done", True) else data.get("nextRecordsUrl")
        return RemotePage(records=data.get("records") or [], next_page_token=next_url)

    def fetch_remote_record_batch(
        self,
        access_token: str,
        external_ids: list[str],
        resource: Any = None,
    ) -> list[dict[str, Any]]:
        if not external_ids:
            return []
        id_list = ", ".join(soql_quote(external_id) for external_id in external_ids)
        data = self._query(
            access_token, f"SELECT {CONTACT_COLUMNS} FROM Contact WHERE Id IN ({id_list})"
        )
        return data.get("records") or []

    def push_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        external_id: str | None = None,
        resource: Any = None,
        idempotency_key: str | None = None,
    ) -> str:
        firstname, lastname = split_name(fields.get("contact_name"))
        body = {
            "FirstName": firstname,
            # LastName is required on Contact
            "LastName": lastname or firstname or fields.get("email") or "Unknown",
            "Email": fields.get("email"),
            "Phone": fields.get("phone_number"),
        }
        body = {k: v for k, v in body.items() if v is not None}
        if external_id:
            self.http.request(
                "PATCH",
                self._data_url(f"/sobjects/Contact/{external_id}"),
                token=access_token,
                json=body,
            )
            return external_id
        data = self.http.post_json(
            self._data_url("/sobjects/Contact"), token=access_token, json=body
        )
        return str(data["id"])

    def find_remote_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        resource: Any = None,
    ) -> str | None:
        if fields.get("email"):
            where = f"Email = {soql_quote(fields['email'])}"
        elif fields.get("phone_number"):
            where = f"Phone = {soql_quote(fields['phone_number'])}"
        else:
            return None
        data = self._query(access_token, f"SELECT Id FROM Contact WHERE {where} LIMIT 1")
        records = data.get("records") or []
        return str(records[0]["Id"]) if records else None

    # ── field mapping ───────────────────────────────────────────────────

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        return raw.get("Id")

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        flat = {k: v for k, v in raw.items() if not isinstance(v, dict)}
        account = raw.get("Account")
        if isinstance(account, dict):
            flat["AccountName"] = account.get("Name")
        return flat

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        value = raw.get("LastModifiedDate")
        # Salesforce emits offsets without a colon, e.g. +0000
        if isinstance(value, str) and value.endswith("+0000"):
            value = value[:-5] + "+00:00"
        return self.parse_time(value)

    def is_deleted(self, raw: dict[str, Any]) -> bool:
        return bool(raw.get("IsDeleted"))

    def finalize_fields(
        self, fields: dict[str, Any], flat: dict[str, Any], raw: dict[str, Any]
    ) -> None:
        if not fields.get("phone_number") and flat.get("MobilePhone"):
            fields["phone_number"] = flat["MobilePhone"]
