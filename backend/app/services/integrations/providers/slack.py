"""Slack adapter: posts calendar event notifications to a channel.

Push only. The external id of a posted notification is ``<channel>:<ts>``,
which ``chat.update`` needs to edit it in place on later syncs. Slack bot
tokens do not expire and carry no refresh token.
"""

import logging
from datetime import datetime
from typing import Any

from app.core.config import settings
from app.models.integration import IntegrationProvider, SyncDirection
from app.models.record_mapping import RecordType
from app.models.shared import as_utc
from app.services.integrations.base import (
    AccountIdentity,
    Capability,
    ProviderAdapter,
    TokenGrant,
)
from app.services.integrations.errors import (
    ProviderError,
    RateLimited,
    ReauthRequired,
    TokenRejected,
)

logger = logging.getLogger(__name__)

API_BASE = "https://slack.com/api"
AUTH_ERRORS = frozenset({"invalid_auth", "not_authed", "token_revoked", "account_inactive"})

_STATUS_LABELS = {
    "scheduled": ":calendar: New Meeting Scheduled",
    "confirmed": ":white_check_mark: Meeting Confirmed",
    "cancelled": ":x: Meeting Cancelled",
    "completed": ":checkered_flag: Meeting Completed",
    "no_show": ":warning: No-Show Detected",
}


def build_event_blocks(fields: dict[str, Any]) -> tuple[str, list[dict[str, Any]]]:
    """Plain-text fallback and Block Kit blocks for an event notification."""
    label = _STATUS_LABELS.get(str(fields.get("status") or "scheduled"), ":speech_balloon: Event")
    title = fields.get("title") or "Untitled Event"
    start = as_utc(fields.get("start_time"))
    when = (
        f"<!date^{int(start.timestamp())}^{{date_long}} at {{time}}|{start.isoformat()}>"
        if start
        else "TBD"
    )
    detail_fields = [{"type": "mrkdwn", "text": f"*When:*\n{when}"}]
    if fields.get("timezone"):
        detail_fields.append({"type": "mrkdwn", "text": f"*Timezone:*\n{fields['timezone']}"})
    if fields.get("location"):
        detail_fields.append({"type": "mrkdwn", "text": f"*Where:*\n{fields['location']}"})
    blocks = [
        {"type": "header", "text": {"type": "plain_text", "text": label, "emoji": True}},
        {"type": "section", "text": {"type": "mrkdwn", "text": f"*{title}*"}},
        {"type": "section", "fields": detail_fields},
    ]
    return f"{label}: {title}", blocks


class SlackAdapter(ProviderAdapter):
    provider = IntegrationProvider.SLACK
    record_type = RecordType.CALENDAR_EVENT
    capabilities = frozenset({Capability.PUSH})
    default_direction = SyncDirection.OUTBOUND

    authorize_endpoint = "https://slack.com/oauth/v2/authorize"
    token_endpoint = f"{API_BASE}/oauth.v2.access"
    scopes = ("chat:write", "channels:read", "groups:read")
    scope_separator = ","

    @property
    def client_id(self) -> str:
        return settings.slack_client_id

    @property
    def client_secret(self) -> str:
        return settings.slack_client_secret

    def _check(self, data: dict[str, Any], method: str) -> dict[str, Any]:
        """Slack answers 200 with ``ok: false`` for API-level failures."""
        if data.get("ok"):
            return data
        error = str(data.get("error") or "unknown_error")
        if error in AUTH_ERRORS:
            raise TokenRejected(f"Slack {method} failed: {error}")
        if error == "ratelimited":
            raise RateLimited(f"Slack {method} rate limited")
        raise ProviderError(f"Slack {method} failed: {error}")

    def exchange_code(self, code: str) -> TokenGrant:
        data = self.http.post_json(
            self.token_endpoint,
            data={
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        return TokenGrant.from_token_response(self._check(data, "oauth.v2.access"))

    def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        raise ReauthRequired("Slack tokens cannot be refreshed")

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        team = grant.extra.get("team") or {}
        webhook = grant.extra.get("incoming_webhook") or {}
        return AccountIdentity(
            account_id=team.get("id"),
            email=None,
            settings={
                "team_name": team.get("name"),
                "bot_user_id": grant.extra.get("bot_user_id"),
                "default_channel_id": webhook.get("channel_id"),
            },
        )

    def channel_id(self, resource: Any = None) -> str:
        channel = (
            resource.external_resource_id
            if resource is not None
            else self.integration_settings.get("default_channel_id")
        )
        if not channel:
            raise ProviderError("Slack integration has no channel to post to")
        return str(channel)

    def push_record(
        self,
        access_token: str,
        fields: dict[str, Any],
        external_id: str | None = None,
        resource: Any = None,
        idempotency_key: str | None = None,
    ) -> str:
        text, blocks = build_event_blocks(fields)
        if external_id:
            channel, _, ts = external_id.partition(":")
            data = self.http.post_json(
                f"{API_BASE}/chat.update",
                token=access_token,
                json={"channel": channel, "ts": ts, "text": text, "blocks": blocks},
                idempotent=True,
            )
            self._check(data, "chat.update")
            return external_id

        channel = self.channel_id(resource)
        data = self._check(
            self.http.post_json(
                f"{API_BASE}/chat.postMessage",
                token=access_token,
                json={"channel": channel, "text": text, "blocks": blocks},
            ),
            "chat.postMessage",
        )
        return f"{data.get('channel') or channel}:{data['ts']}"

    def external_id_of(self, raw: dict[str, Any]) -> str | None:
        if raw.get("channel") and raw.get("ts"):
            return f"{raw['channel']}:{raw['ts']}"
        return None

    def updated_at_of(self, raw: dict[str, Any]) -> datetime | None:
        return None
