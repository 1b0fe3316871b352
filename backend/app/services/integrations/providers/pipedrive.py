"""Pipedrive persons adapter."""

import base64
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
from app.services.integrations.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_API_DOMAIN = "https://api.pipedrive.com"
PAGE_SIZE = 100


def _primary_value(values: Any) -> str | None:
    """Pick the primary entry of Pipedrive's ``[{value, primary}]`` lists."""
    if isinstance(values, str):
        return values or None
    if not isinstance(values, list):
        return None
    entries = [v for v in values if isinstance(v, dict) and v.get("value")]
    if not entries:
        return None
    primary = next((v for v in entries if v.get("primary")), entries[0])
    return str(primary["value"])


class PipedriveAdapter(ProviderAdapter):
    provider = IntegrationProvider.PIPEDRIVE
    capabilities = frozenset(
        {Capability.LIST, Capability.FETCH_BATCH, Capability.PUSH, Capability.FIND_REMOTE}
    )
    default_field_mapping = {
        "name": "contact_name",
        "email": "email",
        "phone": "phone_number",
        "org_name": "company_name",
        "job_title": "job_title",
    }

    authorize_endpoint = "https://oauth.pipedrive.com/oauth/authorize"
    token_endpoint = "https://oauth.pipedrive.com/oauth/token"

    @property
    def client_id(self) -> str:
        return settings.pipedrive_client_id

    @property
    def client_secret(self) -> str:
        return settings.pipedrive_client_secret

    @property
    def api_domain(self) -> str:
        domain = self.integration_settings.get("api_domain") or DEFAULT_API_DOMAIN
        return str(domain).rstrip("/")

    def token_headers(self) -> dict[str, str]:
        basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        return {"Authorization": f"Basic {basic}"}

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        api_domain = str(grant.extra.get("api_domain") or DEFAULT_API_DOMAIN).rstrip("/")
        data = self.http.get_json(f"{api_domain}/api/v1/users/me", token=grant.access_token)
        user = data.get("data") or {}
        return AccountIdentity(
            account_id=str(user["company_id"]) if user.get("company_id") is not None else None,
            email=user.get("email"),
            settings={"api_domain": api_domain},
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
        # The persons endpoint has no modified-since filter; unchanged
        # records are skipped by the engine using update_time.
        data = self.http.get_json(
            f"{self.api_domain}/api/v1/persons",
            token=access_token,
            params={"start": int(page_token or 0), "limit": PAGE_SIZE},
        )
        pagination = (data.get("additional_data") or {}).get("pagination") or {}
        next_start = pagination.get("next_start")
        has_more = pagination.get("more_items_in_collection") and next_start is not None
        return RemotePage(
            records=data.get("data") or [],
            next_page_token=str(next_start) if has_more else None,
        )

    def fetch_remote_record_batch(
        self,
        access_token: str,
        external_ids: list[str],
        resource: Any = None,
    ) -> list[dict[str, Any]]:
        records = []
        for external_id in external_ids:
            try:
                data = self.http.get_json(
                    f"{self.api_domain}/api/v1/persons/{external_id}", token=access_token
                )
            except ProviderError as exc:
                if exc.status_code == 404:
                    logger.info("Pipedrive person %s no longer exists", external_id)
                    continue
                raise
            if data.get("data"):
                records.append(data["data"])
        return records

    def _body(self, fields: dict[str, Any]) -> dict[str, Any]:
        body: dict[str, Any] = {"name": fields.get("contact_name") or fields.get("email")}
        if fields.get("email"):
            body["email"] = [{"value": fields["email"], "primary": True}]
        if fields.get("phone_number"):
            body["phone"] = [{"value": fields["phone_number"], "primary": True}]
        return body

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
            self.http.put_json(
                f"{self.api_domain}/api/v1/persons/{external_id}", token=access_token, json=body
            )
            return external_id
        data = self.http.post_json(
            f"{self.api_domain}/api/v1/persons", token=access_token, json=body
        )
        return str(data["data"]["id"])

    def find_remote_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        resource: Any = None,
    ) -> str | None:
        if fields.get("email"):
            term, field = fields["email"], "email"
        elif fields.get("phone_number"):
            term, field = fields["phone_number"], "phone"
        else:
            return None
        data = self.http.get_json(
            f"{self.api_domain}/api/v1/persons/search",
            token=access_token,
            params={"term": term, "fields": field, "exact_match": "true", "limit": 1},
        )
        items = (data.get("data") or {}).get("items") or []
        return str(items[0]["item"]["id"]) if items else None

    # ── field mapping ───────────────────────────────────────────────────

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        return str(raw["id"]) if raw.get("id") is not None else None

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        flat = {k: v for k, v in raw.items() if not isinstance(v, dict | list)}
        flat["email"] = _primary_value(raw.get("email"))
        flat["phone"] = _primary_value(raw.get("phone"))
        org = raw.get("org_id")
        if not flat.get("org_name") and isinstance(org, dict):
            flat["org_name"] = org.get("name")
        return flat

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        value = raw.get("update_time")
        if isinstance(value, str) and " " in value and "T" not in value:
            value = value.replace(" ", "T") + "+00:00"
        return self.parse_time(value)

    def is_deleted(self, raw: dict[str, Any]) -> bool:
        return raw.get("active_flag") is False
