"""Google Sheets adapter: rows of a linked spreadsheet tab as contacts.

A linked resource's ``external_resource_id`` is ``<spreadsheet_id>/<tab title>``.
Rows carry no stable provider id, so a row is identified by its business key
(phone digits, else lowercased email) within the tab.
"""

import logging
import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

from app.models.integration import IntegrationProvider
from app.services.integrations.base import Capability, NormalizedRecord, RemotePage
from app.services.integrations.errors import ProviderError
from app.services.integrations.providers.google_oauth import GoogleOAuthAdapter

logger = logging.getLogger(__name__)

API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
DEFAULT_HEADERS = ["Name", "Phone Number", "Email", "Company", "Notes"]

# Header auto-detection, checked in this order; a header is claimed once
HEADER_ALIASES: list[tuple[str, tuple[str, ...]]] = [
    ("phone_number", ("phone", "tel", "mobile", "cell")),
    ("email", ("email", "e-mail", "correo")),
    ("company_name", ("company", "empresa", "organization")),
    ("notes", ("notes", "note", "notas", "comentarios")),
    ("contact_name", ("name", "contact name", "full name", "nombre")),
]


def row_key(fields: dict[str, Any]) -> str | None:
    digits = re.sub(r"\D", "", str(fields.get("phone_number") or ""))
    if digits:
        return f"phone:{digits}"
    email = str(fields.get("email") or "").strip().lower()
    if email:
        return f"email:{email}"
    return None


def detect_columns(
    headers: list[str], field_mapping: dict[str, str] | None = None
) -> dict[str, int]:
    """Map local field names to column indexes.

    Explicit ``field_mapping`` entries (header -> local field) win; the rest
    are detected from common header names.
    """
    lowered = [h.strip().lower() for h in headers]
    columns: dict[str, int] = {}
    claimed: set[int] = set()
    for header, local_name in (field_mapping or {}).items():
        if header.strip().lower() in lowered:
            idx = lowered.index(header.strip().lower())
            columns[local_name] = idx
            claimed.add(idx)
    for local_name, aliases in HEADER_ALIASES:
        if local_name in columns:
            continue
        exact = next(
            (i for i, h in enumerate(lowered) if h in aliases and i not in claimed), None
        )
        idx = exact
        if idx is None:
            idx = next(
                (
                    i
                    for i, h in enumerate(lowered)
                    if i not in claimed and any(alias in h for alias in aliases)
                ),
                None,
            )
        if idx is not None:
            columns[local_name] = idx
            claimed.add(idx)
    return columns


class GoogleSheetsAdapter(GoogleOAuthAdapter):
    provider = IntegrationProvider.GOOGLE_SHEETS
    capabilities = frozenset({Capability.LIST, Capability.PUSH, Capability.FIND_REMOTE})
    scopes = (
        "https://www.googleapis.com/auth/spreadsheets",
        "https://www.googleapis.com/auth/drive.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
    )

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # resource id -> (headers, {row key: 1-based row number})
        self._row_index: dict[str, tuple[list[str], dict[str, int]]] = {}

    @staticmethod
    def split_resource(resource: Any) -> tuple[str, str]:
        if resource is None:
            raise ProviderError("Google Sheets sync needs a linked spreadsheet tab")
        spreadsheet_id, _, tab = str(resource.external_resource_id).partition("/")
        return spreadsheet_id, tab or "Sheet1"

    def _range_url(self, resource: Any, cell_range: str = "") -> str:
        spreadsheet_id, tab = self.split_resource(resource)
        a1 = f"'{tab.replace(chr(39), chr(39) * 2)}'{cell_range}"
        return f"{API_BASE}/{spreadsheet_id}/values/{quote(a1, safe='')}"

    def _read(self, access_token: str, resource: Any) -> list[list[str]]:
        data = self.http.get_json(
            self._range_url(resource),
            token=access_token,
            params={"valueRenderOption": "FORMATTED_VALUE"},
        )
        return data.get("values") or []

    def _load_index(self, access_token: str, resource: Any) -> tuple[list[str], dict[str, int]]:
        key = str(resource.external_resource_id)
        if key in self._row_index:
            return self._row_index[key]
        rows = self._read(access_token, resource)
        headers = [str(h) for h in rows[0]] if rows else []
        columns = detect_columns(headers, resource.field_mapping)
        index: dict[str, int] = {}
        for offset, row in enumerate(rows[1:], start=2):
            fields = {name: row[col] if col < len(row) else None for name, col in columns.items()}
            row_id = row_key(fields)
            if row_id and row_id not in index:
                index[row_id] = offset
        self._row_index[key] = (headers, index)
        return headers, index

    # ── records ─────────────────────────────────────────────────────────

    def list_remote_records(
        self,
        access_token: str,
        page_token: str | None = None,
        resource: Any = None,
        since: datetime | None = None,
        cursor: str | None = None,
    ) -> RemotePage:
        # The values API returns the whole tab in one response
        rows = self._read(access_token, resource)
        if not rows:
            return RemotePage(records=[])
        headers = [str(h) for h in rows[0]]
        records = []
        for offset, row in enumerate(rows[1:], start=2):
            if not any(str(cell).strip() for cell in row):
                continue
            values = {
                header: (row[i] if i < len(row) else None) for i, header in enumerate(headers)
            }
            records.append({"row": offset, "values": values, "headers": headers})
        return RemotePage(records=records)

    def _row_values(self, headers: list[str], fields: dict[str, Any], resource: Any) -> list[str]:
        columns = detect_columns(headers, resource.field_mapping)
        row = [""] * len(headers)
        for local_name, idx in columns.items():
            value = fields.get(local_name)
            if value is None and isinstance(fields.get("custom_fields"), dict):
                value = fields["custom_fields"].get(local_name)
            row[idx] = "" if value is None else str(value)
        return row

    def push_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        external_id: str | None = None,
        resource: Any = None,
        idempotency_key: str | None = None,
    ) -> str:
        key = row_key(fields)
        if key is None:
            raise ProviderError("Contact has neither phone nor email to key a sheet row")
        headers, index = self._load_index(access_token, resource)
        if not headers:
            headers = list(DEFAULT_HEADERS)
            self.http.put_json(
                self._range_url(resource, "!A1"),
                token=access_token,
                params={"valueInputOption": "USER_ENTERED"},
                json={"values": [headers]},
            )
            self._row_index[str(resource.external_resource_id)] = (headers, index)

        values = self._row_values(headers, fields, resource)
        row_number = index.get(external_id or "") or index.get(key)
        if row_number:
            self.http.put_json(
                self._range_url(resource, f"!A{row_number}"),
                token=access_token,
                params={"valueInputOption": "USER_ENTERED"},
                json={"values": [values]},
            )
            index[key] = row_number
            return key

        data = self.http.post_json(
            f"{self._range_url(resource, '!A1')}:append",
            token=access_token,
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        )
        updated_range = str((data.get("updates") or {}).get("updatedRange") or "")
        match = re.search(r"!A(\d+)", updated_range)
        index[key] = int(match.group(1)) if match else len(index) + 2
        return key

    def find_remote_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        resource: Any = None,
    ) -> str | None:
        key = row_key(fields)
        if key is None:
            return None
        # Always re-read: this is the check before retrying an append
        self._row_index.pop(str(resource.external_resource_id), None)
        _, index = self._load_index(access_token, resource)
        return key if key in index else None

    # ── field mapping ───────────────────────────────────────────────────

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        return None

    def record_id(self, raw: dict[str, Any], fields: dict[str, Any]) -> str | None:
        return row_key(fields)

    def flatten(self, raw: dict[str, Any]) -> dict[str, Any]:
        return dict(raw.get("values") or {})

    def map_remote_to_local(
        self,
        raw: dict[str, Any],
        field_mapping: dict[str, str] | None = None,
    ) -> NormalizedRecord:
        headers = raw.get("headers") or list((raw.get("values") or {}).keys())
        columns = detect_columns(headers, field_mapping)
        # Detected columns become explicit header -> field entries
        detected = {headers[idx]: local_name for local_name, idx in columns.items()}
        extra = {k: v for k, v in (field_mapping or {}).items() if k not in detected}
        return super().map_remote_to_local(raw, {**detected, **extra})
