"""OAuth settings shared by the Google Calendar and Google Sheets adapters."""

from app.core.config import settings
from app.services.integrations.base import AccountIdentity, ProviderAdapter, TokenGrant

GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GoogleOAuthAdapter(ProviderAdapter):
    """Both Google adapters authenticate against the same OAuth client."""

    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    # offline + consent makes Google issue a refresh token on every connect
    extra_authorize_params = {"access_type": "offline", "prompt": "consent"}

    @property
    def client_id(self) -> str:
        return settings.google_client_id

    @property
    def client_secret(self) -> str:
        return settings.google_client_secret

    def fetch_account_identity(self, grant: TokenGrant) -> AccountIdentity:
        info = self.http.get_json(GOOGLE_USERINFO_URL, token=grant.access_token)
        return AccountIdentity(account_id=info.get("id"), email=info.get("email"))
