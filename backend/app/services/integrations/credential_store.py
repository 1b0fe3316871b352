"""Persistence of per-integration OAuth credentials."""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.integration_credential import IntegrationCredential
from app.models.shared import as_utc, utc_now
from app.services.integrations.errors import CredentialNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """Immutable snapshot of an integration's tokens."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: tuple[str, ...] = field(default_factory=tuple)
    token_type: str = "Bearer"

    def expires_within(self, margin: timedelta, now: datetime | None = None) -> bool:
        """True when the access token is expired or will be within *margin*.

        A credential without ``expires_at`` never expires.
        """
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return False
        return expires_at <= (now or utc_now()) + margin

    def is_terminally_invalid(self, now: datetime | None = None) -> bool:
        """Expired with no refresh token to recover it."""
        return not self.refresh_token and self.expires_within(timedelta(0), now)

    def with_grant(
        self,
        access_token: str,
        expires_at: datetime | None,
        refresh_token: str | None = None,
        scopes: tuple[str, ...] | None = None,
    ) -> "Credential":
        """Apply a refresh result, keeping the old refresh token if none was issued."""
        return replace(
            self,
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=refresh_token or self.refresh_token,
            scopes=scopes if scopes is not None else self.scopes,
        )


def _to_credential(row: IntegrationCredential) -> Credential:
    return Credential(
        access_token=str(row.access_token),
        refresh_token=row.refresh_token,
        expires_at=as_utc(row.expires_at),
        scopes=tuple(row.scopes or ()),
        token_type=str(row.token_type or "Bearer"),
    )


class CredentialStore:
    """Database-backed credential store keyed by integration ID.

    ``put`` replaces every field and commits in one transaction, so a reader
    sees either the old credential or the new one.
    """

    def __init__(self, db: Session):
        self.db = db

    def _row(self, integration_id: UUID) -> IntegrationCredential | None:
        return (
            self.db.query(IntegrationCredential)
            .filter(IntegrationCredential.integration_id == integration_id)
            .populate_existing()
            .first()
        )

    def get(self, integration_id: UUID) -> Credential:
        row = self._row(integration_id)
        if row is None:
            raise CredentialNotFound(f"No credential stored for integration {integration_id}")
        return _to_credential(row)

    def put(self, integration_id: UUID, credential: Credential, commit: bool = True) -> Credential:
        row = self._row(integration_id)
        if row is None:
            row = IntegrationCredential(integration_id=integration_id)
            self.db.add(row)
        row.access_token = credential.access_token
        row.refresh_token = credential.refresh_token
        row.expires_at = credential.expires_at
        row.scopes = list(credential.scopes)
        row.token_type = credential.token_type
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return credential

    def revoke(self, integration_id: UUID, commit: bool = True) -> bool:
        row = self._row(integration_id)
        if row is None:
            return False
        self.db.delete(row)
        if commit:
            self.db.commit()
        logger.info("Revoked credential for integration %s", integration_id)
        return True
