"""OAuth connect and callback handling.

The ``state`` parameter round-trips through the provider untouched, so it is
treated as untrusted input on the way back.
"""

import base64
import logging
from collections.abc import Callable
from urllib.parse import urlencode
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.integration import Integration, IntegrationProvider
from app.models.shared import utc_now
from app.repositories.integration_repository import IntegrationRepository
from app.schemas.oauth import OAuthState
from app.services.integrations.base import (
    AccountIdentity,
    ProviderAdapter,
    TokenGrant,
    get_provider_adapter,
)
from app.services.integrations.credential_store import Credential, CredentialStore
from app.services.integrations.errors import (
    CredentialNotFound,
    IntegrationNotFound,
    InvalidOAuthState,
    SyncError,
)

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = frozenset(p.value for p in IntegrationProvider)


def encode_state(state: OAuthState) -> str:
    raw = state.model_dump_json().encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_state(value: str) -> OAuthState:
    """Decode and validate a state parameter.

    Raises ``InvalidOAuthState`` for anything that is not exactly the shape
    ``encode_state`` produces.
    """
    try:
        padded = value + "=" * (-len(value) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        return OAuthState.model_validate_json(raw)
    except ValueError as exc:
        raise InvalidOAuthState("OAuth state could not be decoded") from exc


def with_query(path: str, **params: str) -> str:
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(params)}"


class OAuthService:
    def __init__(
        self,
        db: Session,
        adapter_factory: Callable[..., ProviderAdapter] = get_provider_adapter,
    ) -> None:
        self.db = db
        self.adapter_factory = adapter_factory
        self.integrations = IntegrationRepository(db)
        self.credentials = CredentialStore(db)

    def build_authorization_url(
        self,
        provider: str,
        organization_id: UUID,
        user_id: str,
        return_to: str | None = None,
    ) -> str:
        """Authorization URL for *provider*.

        Raises ``ValueError`` for an unsupported provider or a non-local
        ``return_to``.
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {provider}")
        state = OAuthState(
            user_id=user_id,
            company_id=organization_id,
            provider=provider,
            return_to=return_to or settings.OAUTH_DEFAULT_RETURN_TO,
        )
        return self.adapter_factory(provider).authorization_url(encode_state(state))

    def complete(
        self,
        provider: str,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ) -> str:
        """Finish an authorization and return where to redirect the browser.

        Never raises: every failure becomes an ``error`` query parameter on
        the redirect.
        """
        fallback = settings.OAUTH_DEFAULT_RETURN_TO
        if provider not in SUPPORTED_PROVIDERS:
            return with_query(fallback, error="unsupported_provider")

        try:
            decoded = decode_state(state or "")
        except InvalidOAuthState:
            logger.warning("Rejected OAuth callback for %s: undecodable state", provider)
            return with_query(fallback, error=f"{provider}_invalid_state")
        if decoded.provider != provider:
            logger.warning(
                "Rejected OAuth callback for %s: state was issued for %s",
                provider,
                decoded.provider,
            )
            return with_query(fallback, error=f"{provider}_invalid_state")

        return_to = decoded.return_to
        if error:
            reason = "access_denied" if error == "access_denied" else "authorization_failed"
            logger.info("OAuth authorization for %s ended with %s", provider, error)
            return with_query(return_to, error=f"{provider}_{reason}")
        if not code:
            return with_query(return_to, error=f"{provider}_missing_code")

        adapter = self.adapter_factory(provider)
        try:
            grant = adapter.exchange_code(code)
            identity = adapter.fetch_account_identity(grant)
        except SyncError as exc:
            logger.warning("OAuth code exchange failed for %s: %s", provider, exc)
            return with_query(return_to, error=f"{provider}_exchange_failed")

        try:
            integration = self._persist(decoded, adapter, grant, identity)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to store %s integration", provider)
            return with_query(return_to, error=f"{provider}_save_failed")

        logger.info(
            "Connected %s integration %s for organization %s",
            provider,
            integration.id,
            integration.organization_id,
        )
        return with_query(return_to, integration=provider, status="connected")

    def _persist(
        self,
        state: OAuthState,
        adapter: ProviderAdapter,
        grant: TokenGrant,
        identity: AccountIdentity,
    ) -> Integration:
        """Create or reactivate the tenant's integration and store its credential.

        Reconnecting reuses the existing row so mappings and run history stay
        attached.
        """
        provider = adapter.provider.value
        integration = self.integrations.get_by_provider(state.company_id, provider)
        if integration is None:
            integration = Integration(
                organization_id=state.company_id,
                provider=provider,
                settings={},
            )
            self.db.add(integration)
            try:
                self.db.flush()
            except IntegrityError:
                # A concurrent callback created it first
                self.db.rollback()
                integration = self.integrations.get_by_provider(state.company_id, provider)
                if integration is None:
                    raise

        integration.owning_user_id = state.user_id
        integration.is_active = True
        integration.provider_account_id = identity.account_id
        integration.provider_account_email = identity.email
        integration.settings = {
            **(integration.settings or {}),
            **{k: v for k, v in identity.settings.items() if v is not None},
        }
        integration.error_details = None

        expires_at = grant.expires_at(utc_now())
        scopes = grant.scopes or adapter.scopes
        try:
            credential = self.credentials.get(integration.id).with_grant(
                access_token=grant.access_token,
                expires_at=expires_at,
                refresh_token=grant.refresh_token,
                scopes=tuple(scopes),
            )
        except CredentialNotFound:
            credential = Credential(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=expires_at,
                scopes=tuple(scopes),
                token_type=grant.token_type,
            )
        self.credentials.put(integration.id, credential, commit=False)
        self.db.commit()
        self.db.refresh(integration)
        return integration

    def disconnect(self, integration_id: UUID, organization_id: UUID | None = None) -> Integration:
        """Deactivate an integration and drop its credential.

        Mappings and run history are kept for a later reconnect.
        """
        integration = self.integrations.get_by_id(integration_id, organization_id)
        if integration is None:
            raise IntegrationNotFound(f"Integration {integration_id} not found")
        self.credentials.revoke(integration.id, commit=False)
        integration = self.integrations.deactivate(integration)
        logger.info("Disconnected %s integration %s", integration.provider, integration.id)
        return integration
