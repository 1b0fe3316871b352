"""OAuth connect/callback endpoints for provider integrations."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.core.auth import get_current_organization, get_current_user
from app.core.database import get_db
from app.schemas.oauth import OAuthConnectResponse
from app.services.integrations.oauth import SUPPORTED_PROVIDERS, OAuthService

router = APIRouter()


@router.get(
    "/{provider}/connect",
    response_model=OAuthConnectResponse,
    summary="Start connecting a provider",
    responses={
        401: {"description": "Missing X-User-Id header"},
        404: {"description": "Unsupported provider"},
        422: {"description": "Invalid return_to"},
    },
)
async def connect(
    provider: str,
    return_to: str | None = Query(default=None, max_length=2048),
    db: Session = Depends(get_db),
    organization_id: UUID = Depends(get_current_organization),
    user_id: str = Depends(get_current_user),
) -> OAuthConnectResponse:
    """Return the provider's authorization URL to send the browser to."""
    if provider not in SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=404, detail=f"Unsupported provider: {provider}")
    try:
        url = OAuthService(db).build_authorization_url(
            provider, organization_id, user_id, return_to
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    return OAuthConnectResponse(authorization_url=url)


@router.get(
    "/{provider}/callback",
    response_class=RedirectResponse,
    status_code=302,
    summary="Provider authorization callback",
)
def callback(
    provider: str,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> RedirectResponse:
    """Exchange the code, store the connection and redirect back to the app.

    Always redirects; failures are reported as an ``error`` query parameter.
    """
    location = OAuthService(db).complete(provider, code=code, state=state, error=error)
    return RedirectResponse(url=location, status_code=302)

