from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DEBUG: bool = False
    APP_NAME: str = "Sync Engine"
    version: str = "0.1.0"
    APP_URL: str = "http://localhost:3000"
    APP_DATABASE_DSN: str = "sqlite:////tmp/database.db"
    REDIS_URL: str = "redis://localhost:6379"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Sync engine
    SYNC_BATCH_SIZE: int = 500
    SYNC_STALE_RUN_MINUTES: int = 30
    SCHEDULED_SYNC_INTERVAL_MINUTES: int = 15
    TOKEN_REFRESH_MARGIN_SECONDS: int = 60
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 30.0
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_BACKOFF_SECONDS: float = 1.0
    OAUTH_DEFAULT_RETURN_TO: str = "/integrations"

    # Google (Calendar + Sheets share one OAuth client)
    google_client_id: str = ""
    google_client_secret: str = ""

    # Microsoft Outlook
    microsoft_client_id: str = ""
    microsoft_client_secret: str = ""
    microsoft_tenant: str = "common"

    # HubSpot
    hubspot_client_id: str = ""
    hubspot_client_secret: str = ""

    # Pipedrive
    pipedrive_client_id: str = ""
    pipedrive_client_secret: str = ""

    # Salesforce
    salesforce_client_id: str = ""
    salesforce_client_secret: str = ""
    salesforce_login_url: str = "https://login.salesforce.com"

    # Slack
    slack_client_id: str = ""
    slack_client_secret: str = ""

    @property
    def app_url(self) -> str:
        return self.APP_URL.rstrip("/")

    def oauth_redirect_uri(self, provider: str) -> str:
        """Callback URL registered with *provider*'s OAuth app."""
        return f"{self.app_url}/v1/oauth/{provider}/callback"


settings = Settings()
