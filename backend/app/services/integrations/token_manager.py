"""Guarantees a usable access token before every provider call."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.integration import Integration
from app.models.shared import utc_now
from app.services.integrations.base import ProviderAdapter, get_provider_adapter
from app.services.integrations.credential_store import Credential, CredentialStore
from app.services.integrations.errors import CredentialNotFound, ReauthRequired, TokenRejected
from app.services.integrations.single_flight import SingleFlight, refresh_flights

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TokenLifecycleManager:
    """Refreshes and persists tokens transparently around adapter calls.

    Refreshes for one integration are single-flighted: concurrent callers
    share the leader's result, and the leader re-reads the stored credential
    first so a token already refreshed by another worker is reused.
    """

    def __init__(
        self,
        db: Session,
        credential_store: Any = None,
        adapter_factory: Callable[..., ProviderAdapter] = get_provider_adapter,
        margin_seconds: int | None = None,
        clock: Callable[[], datetime] = utc_now,
        flights: SingleFlight = refresh_flights,
    ) -> None:
        self.db = db
        self.store = credential_store or CredentialStore(db)
        self.adapter_factory = adapter_factory
        if margin_seconds is None:
            margin_seconds = settings.TOKEN_REFRESH_MARGIN_SECONDS
        self.margin = timedelta(seconds=margin_seconds)
        self.clock = clock
        self.flights = flights

    def with_valid_token(self, integration: Integration, fn: Callable[[str], T]) -> T:
        """Call ``fn(access_token)`` with a token that is valid right now.

        A 401 from the provider forces one refresh and a retry; a second
        rejection means the grant is gone and raises ``ReauthRequired``.
        """
        token = self.get_valid_token(integration)
        try:
            return fn(token)
        except TokenRejected:
            logger.warning(
                "Access token rejected for integration %s, forcing refresh", integration.id
            )

        token = self.get_valid_token(integration, force=True, rejected_token=token)
        try:
            return fn(token)
        except TokenRejected as exc:
            self._deactivate(integration, "Access token rejected after refresh")
            raise ReauthRequired(
                f"{integration.provider} rejected a freshly refreshed token"
            ) from exc

    def get_valid_token(
        self,
        integration: Integration,
        force: bool = False,
        rejected_token: str | None = None,
    ) -> str:
        credential = self._load(integration)
        if not force and not credential.expires_within(self.margin, self.clock()):
            return credential.access_token

        refreshed: Credential = self.flights.do(
            str(integration.id),
            lambda: self._refresh(integration, force, rejected_token),
        )
        return refreshed.access_token

    def _needs_refresh(
        self, credential: Credential, force: bool, rejected_token: str | None
    ) -> bool:
        if credential.expires_within(self.margin, self.clock()):
            return True
        if not force:
            return False
        # Another worker may already have replaced the rejected token
        return rejected_token is None or credential.access_token == rejected_token

    def _refresh(
        self,
        integration: Integration,
        force: bool,
        rejected_token: str | None,
    ) -> Credential:
        current = self._load(integration)
        if not self._needs_refresh(current, force, rejected_token):
            logger.debug("Reusing credential refreshed elsewhere for %s", integration.id)
            return current

        if not current.refresh_token:
            if not force and not current.is_terminally_invalid(self.clock()):
                logger.debug(
                    "Using unexpired non-refreshable token for integration %s", integration.id
                )
                return current
            self._deactivate(integration, "Access token expired and no refresh token is stored")
            raise ReauthRequired(f"{integration.provider} integration must be reconnected")

        adapter = self.adapter_factory(str(integration.provider), integration=integration)
        try:
            grant = adapter.refresh_access_token(current.refresh_token)
        except ReauthRequired as exc:
            self._deactivate(integration, f"Token refresh failed: {exc.message}")
            raise

        refreshed = current.with_grant(
            access_token=grant.access_token,
            expires_at=grant.expires_at(self.clock()),
            refresh_token=grant.refresh_token,
            scopes=grant.scopes or None,
        )
        self.store.put(integration.id, refreshed)
        logger.info("Refreshed access token for integration %s", integration.id)
        return refreshed

    def _load(self, integration: Integration) -> Credential:
        try:
            return self.store.get(integration.id)
        except CredentialNotFound as exc:
            self._deactivate(integration, "No credential stored")
            raise ReauthRequired(f"{integration.provider} integration has no credential") from exc

    def _deactivate(self, integration: Integration, reason: str) -> None:
        logger.warning("Deactivating integration %s: %s", integration.id, reason)
        integration.is_active = False
        integration.error_details = {"reason": reason, "reauth_required": True}
        self.db.commit()
