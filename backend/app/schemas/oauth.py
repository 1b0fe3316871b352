from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OAuthState(BaseModel):
    """Context carried across the provider's authorization redirect.

    Decoded from an untrusted query parameter, so unknown keys are rejected
    and ``return_to`` must stay on this application.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1, max_length=255)
    company_id: UUID
    provider: str = Field(..., min_length=1, max_length=50)
    return_to: str = Field(default="/integrations", max_length=2048)

    @field_validator("return_to")
    @classmethod
    def validate_return_to(cls, v: str) -> str:
        if not v.startswith("/") or v.startswith("//") or "\\" in v:
            raise ValueError("return_to must be a local path")
        return v


class OAuthConnectResponse(BaseModel):
    authorization_url: str
