from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from app.core.config import settings
from app.routers import integrations, oauth

OPENAPI_TAGS = [
    {
        "name": "Integrations",
        "description": "Connected providers, linked resources, sync runs and record mappings.",
    },
    {"name": "OAuth", "description": "Connect a provider through its OAuth flow."},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Synchronizes contacts and calendar events between the application and "
        "external providers: Google Calendar, Microsoft Outlook, Google Sheets, "
        "HubSpot, Pipedrive, Salesforce and Slack."
    ),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count"],
)


@app.middleware("http")
async def options_handler(request: Request, call_next):  # type: ignore[no-untyped-def]
    if request.method == "OPTIONS":
        origin = request.headers.get("origin", "*")
        return Response(
            status_code=200,
            headers={
                "Access-Control-Allow-Origin": origin,
                "Access-Control-Allow-Methods": "*",
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Max-Age": "86400",
            },
        )
    return await call_next(request)


app.include_router(
    integrations.router,
    prefix="/v1/integrations",
    tags=["Integrations"],
)
app.include_router(oauth.router, prefix="/v1/oauth", tags=["OAuth"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "status": "running",
    }
