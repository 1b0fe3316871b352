from app.services.integrations.base import (
    Capability,
    NormalizedRecord,
    ProviderAdapter,
    RemotePage,
    TokenGrant,
    get_provider_adapter,
)
from app.services.integrations.credential_store import Credential, CredentialStore
from app.services.integrations.ledger import SyncRunLedger
from app.services.integrations.oauth import OAuthService
from app.services.integrations.reconciliation import ReconciliationEngine, SyncSummary
from app.services.integrations.token_manager import TokenLifecycleManager

__all__ = [
    "Capability",
    "Credential",
    "CredentialStore",
    "NormalizedRecord",
    "OAuthService",
    "ProviderAdapter",
    "ReconciliationEngine",
    "RemotePage",
    "SyncRunLedger",
    "SyncSummary",
    "TokenGrant",
    "TokenLifecycleManager",
    "get_provider_adapter",
]
