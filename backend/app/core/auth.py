from uuid import UUID

from fastapi import HTTPException, Request

from app.models.shared import DEFAULT_ORGANIZATION_ID


def get_current_organization(request: Request) -> UUID:
    """Tenant for the request, from the X-Organization-Id header.

    Falls back to the default organization when the header is absent.
    """
    org_id_header = request.headers.get("X-Organization-Id")
    if not org_id_header:
        return DEFAULT_ORGANIZATION_ID
    try:
        return UUID(org_id_header)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Organization-Id header") from None


def get_current_user(request: Request) -> str:
    """Acting user from the X-User-Id header, required to connect a provider."""
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    if len(user_id) > 255:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
    return user_id
