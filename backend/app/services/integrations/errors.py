"""Exceptions raised by the sync engine and provider adapters.

Record-level errors (``MalformedRecord``, ``AmbiguousMatch``) are collected on
the run and never abort it. Everything else either rejects a request before a
run starts or finalizes the run as failed.
"""

from typing import Any


class SyncError(Exception):
    """Base class for every sync engine error."""

    code = "sync_error"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        for key in ("external_id", "local_id"):
            if self.context.get(key) is not None:
                data[key] = str(self.context[key])
        return data


class TransientNetworkError(SyncError):
    """Timeout, transport failure or 5xx. Safe to retry."""

    code = "transient_network_error"


class RateLimited(TransientNetworkError):
    code = "rate_limited"

    def __init__(self, message: str = "", retry_after: float | None = None, **context: Any):
        super().__init__(message, **context)
        self.retry_after = retry_after


class TokenRejected(SyncError):
    """The provider answered 401 for an access token we believed valid."""

    code = "token_rejected"


class ReauthRequired(SyncError):
    """The integration can no longer obtain a token and must be reconnected."""

    code = "reauth_required"


class ProviderError(SyncError):
    """Non-retryable provider response."""

    code = "provider_error"

    def __init__(self, message: str = "", status_code: int | None = None, **context: Any):
        super().__init__(message, **context)
        self.status_code = status_code


class MalformedRecord(SyncError):
    code = "malformed_record"


class AmbiguousMatch(SyncError):
    code = "ambiguous_match"


class RunAlreadyInProgress(SyncError):
    code = "run_already_in_progress"


class IntegrationNotFound(SyncError):
    code = "integration_not_found"


class NotConnected(SyncError):
    code = "not_connected"


class CredentialNotFound(SyncError):
    code = "credential_not_found"


class CapabilityNotSupported(SyncError):
    code = "capability_not_supported"


class SyncCancelled(SyncError):
    code = "cancelled"


class InvalidOAuthState(SyncError):
    code = "invalid_state"


class RecordWriteFailed(SyncError):
    """A single record could not be written locally; the rest of its batch was."""

    code = "write_failed"
