"""HubSpot CRM contacts adapter."""

import logging
from datetime import datetime
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

logger = logging.getLogger(__name__)

API_BASE = "https://api.hubapi.com"
PAGE_SIZE = 100

CONTACT_PROPERTIES = [
    "firstname",
    "lastname",
    "email",
    "phone",
    "mobilephone",
    "jobtitle",
    "company",
    "lifecyclestage",
    "hs_lead_status",
    "city",
    "state",
    "country",
    "lastmodifieddate",
]


def split_name(name: str | None) -> tuple[str | None, str | None]:
    if not name:
        return None, None
    parts = name.strip().split(" ", 1)
    return parts[0], (parts[1] if len(parts) > 1 else None)


class HubSpotAdapter(ProviderAdapter):
    provider = IntegrationProvider.HUBSPOT
    capabilities = frozenset(
        {Capability.LIST, Capability.FETCH_BATCH, Capability.PUSH, Capability.FIND_REMOTE}
    )
    default_field_mapping = {
        "email": "email",
        "phone": "phone_number",
        "company": "company_name",
        "jobtitle": "job_title",
        "lifecyclestage": "lifecycle_stage",
        "hs_lead_status": "lead_status",
        "city": "city",
        "state": "state",
        "country": "country",
    }

    authorize_endpoint = "https://app.hubspot.com/oauth/authorize"
    token_endpoint = f"{API_BASE}/oauth/v1/token"
    scopes = (
        "crm.objects.contacts.read",
        "crm.objects.contacts.write",
        "oauth",
    )

    @property
    def client_id(self) -> str:
        return settings.hubspot_client_id

    @property
    def client_secret(self) -> str:
        return settings.hubspot_client_secret

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        info = self.http.get_json(
            f"{API_BASE}/oauth/v1/access-tokens/{grant.access_token}",
            token=grant.access_token,
        )
        return AccountIdentity(
            account_id=str(info["hub_id"]) if info.get("hub_id") is not None else None,
            email=info.get("user"),
            settings={"hub_domain": info.get("hub_domain")},
        )

    # ── records ─────────────────────────────────────────────────────────

    def list_remote_records(
        self,
        access_token: str,
        page_token: str | None = None,
        resource: Any = None,
        since: datetime | None = None,
        cursor: str | None = None,
    ) -> RemotePage:
        if since is not None:
            body: dict[str, Any] = {
                "filterGroups": [
                    {
                        "filters": [
                            {
                                "propertyName": "lastmodifieddate",
                                "operator": "GT",
                                "value": str(int(since.timestamp() * 1000)),
                            }
                        ]
                    }
                ],
                "sorts": [{"propertyName": "lastmodifieddate", "direction": "ASCENDING"}],
                "properties": CONTACT_PROPERTIES,
                "limit": PAGE_SIZE,
            }
            if page_token:
                body["after"] = page_token
            data = self.http.post_json(
                f"{API_BASE}/crm/v3/objects/contacts/search",
                token=access_token,
                json=body,
                idempotent=True,
            )
        else:
            params: dict[str, Any] = {
                "limit": PAGE_SIZE,
                "properties": ",".join(CONTACT_PROPERTIES),
            }
            if page_token:
                params["after"] = page_token
            data = self.http.get_json(
                f"{API_BASE}/crm/v3/objects/contacts", token=access_token, params=params
            )

        next_after = ((data.get("paging") or {}).get("next") or {}).get("after")
        return RemotePage(records=data.get("results") or [], next_page_token=next_after)

    def fetch_remote_record_batch(
        self,
        access_token: str,
        external_ids: list[str],
        resource: Any = None,
    ) -> list[dict[str, Any]]:
        data = self.http.post_json(
            f"{API_BASE}/crm/v3/objects/contacts/batch/read",
            token=access_token,
            json={
                "properties": CONTACT_PROPERTIES,
                "inputs": [{"id": external_id} for external_id in external_ids],
            },
            idempotent=True,
        )
        return data.get("results") or []

    def _properties(self, fields: dict[str, Any]) -> dict[str, Any]:
        firstname, lastname = split_name(fields.get("contact_name"))
        properties = {
            "email": fields.get("email"),
            "phone": fields.get("phone_number"),
            "company": fields.get("company_name"),
            "firstname": firstname,
            "lastname": lastname,
        }
        return {k: v for k, v in properties.items() if v is not None}

    def push_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        external_id: str | None = None,
        resource: Any = None,
        idempotency_key: str | None = None,
    ) -> str:
        body = {"properties": self._properties(fields)}
        if external_id:
            self.http.patch_json(
                f"{API_BASE}/crm/v3/objects/contacts/{external_id}",
                token=access_token,
                json=body,
            )
            return external_id
        data = self.http.post_json(
            f"{API_BASE}/crm/v3/objects/contacts", token=access_token, json=body
        )
        return str(data["id"])

    def find_remote_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        resource: Any = None,
    ) -> str | None:
        if fields.get("email"):
            prop, value = "email", fields["email"]
        elif fields.get("phone_number"):
            prop, value = "phone", fields["phone_number"]
        else:
            return None
        data = self.http.post_json(
            f"{API_BASE}/crm/v3/objects/contacts/search",
            token=access_token,
            json={
                "filterGroups": [
                    {"filters": [{"propertyName": prop, "operator": "EQ", "value": value}]}
                ],
                "properties": ["email"],
                "limit": 1,
            },
            idempotent=True,
        )
        results = data.get("results") or []
        return str(results[0]["id"]) if results else None

    # ── field mapping ───────────────────────────────────────────────────

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        return str(raw["id"]) if raw.get("id") is not None else None

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        return dict(raw.get("properties") or {})

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        props = raw.get("properties") or {}
        return self.parse_time(raw.get("updatedAt") or props.get("lastmodifieddate"))

    def is_deleted(self, raw: dict[str, Any]) -> bool:
        return bool(raw.get("archived"))

    def finalize_fields(
        self, fields: dict[str, Any], flat: dict[str, Any], raw: dict[str, Any]
    ) -> None:
        if not fields.get("phone_number") and flat.get("mobilephone"):
            fields["phone_number"] = flat["mobilephone"]
        name = " ".join(
            part.strip() for part in (flat.get("firstname"), flat.get("lastname")) if part
        ).strip()
        if name and not fields.get("contact_name"):
            fields["contact_name"] = name
