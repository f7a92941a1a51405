import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from facility_portal.core.config import settings
from facility_portal.core.errors import ExternalServiceError, PortalError
from facility_portal.core.observability import (
    http_exception_handler,
    logger,
    portal_error_handler,
    request_logging_middleware,
    setup_observability,
    unhandled_exception_handler,
    validation_exception_handler,
)
from facility_portal.db.session import engine
from facility_portal.routers import auth, contractor, documents, team
from facility_portal.services.storage_service import StorageService, build_s3_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage = StorageService(build_s3_client())
    if settings.storage_ensure_bucket_on_startup:
        try:
            storage.ensure_bucket_exists()
        except ExternalServiceError as exc:
            # Storage calls return 503 until the store is reachable.
            logger.warning(json.dumps({"event": "storage_bucket_unavailable", "error": exc.message}))
    app.state.storage = storage
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Backend API for the facility application portal.\n\n"
        "Swagger quick test flow:\n"
        "1. Call `POST /api/auth/register` with a `companyName` to create a contractor company.\n"
        "2. Click **Authorize** and use your email + password "
        "(OAuth token URL: `/api/auth/token`).\n"
        "3. Invite team members via `POST /api/contractor/invite-team-member`."
    ),
    lifespan=lifespan,
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "auth", "description": "Registration, login and the caller's capabilities."},
        {"name": "contractor", "description": "Contractor team membership, invitations, permissions and join requests."},
        {"name": "team", "description": "Public invitation lookup and acceptance."},
        {"name": "documents", "description": "Attachment upload, download and signed URLs."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(PortalError, portal_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:5173"]
allow_all_origins = "*" in cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(contractor.router)
app.include_router(team.router)
app.include_router(documents.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"ok": False}
    return {"ok": True}
