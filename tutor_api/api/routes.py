"""FastAPI endpoints for the tutor API.

POST /chat - answer a student message using the shared course cache
GET|POST /sync - read/write course profiles and dashboard config
GET /health - component health check
"""

from typing import Literal

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tutor_api.api.schemas import ChatRequest, ChatResponse, ErrorResponse, SyncRequest
from tutor_api.config import ConfigError
from tutor_api.core.kv_store import StoreError

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse)
async def chat(req: Request):
    """Run the chat pipeline; errors come back as {error, status} envelopes.

    The credential is checked before the body is parsed, so a misconfigured
    deployment answers 500 whatever the client sent.
    """
    settings = req.app.state.settings
    try:
        settings.require_api_key()
    except ConfigError as e:
        logger.error("chat.config_error", error=str(e))
        return JSONResponse(status_code=500, content=ErrorResponse(error=str(e)).model_dump())

    try:
        request = ChatRequest.model_validate(await req.json())
    except ValueError as e:
        # pydantic.ValidationError and JSONDecodeError are both ValueErrors.
        logger.warning("chat.malformed_body", error=str(e))
        return JSONResponse(status_code=422, content=ErrorResponse(error=str(e)).model_dump())

    logger.info("chat.request", messages=len(request.messages),
                has_profile=request.current_profile is not None)

    orchestrator = req.app.state.orchestrator
    outcome = await orchestrator.handle(request)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body.model_dump())


@router.api_route("/chat", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def chat_method_not_allowed():
    return JSONResponse(status_code=405, content={"error": "Method Not Allowed"})


@router.get("/sync")
async def sync_read(req: Request, type: Literal["profiles", "config"] = "profiles"):
    """Return the stored profile list or config blob (empty when unavailable)."""
    sync = req.app.state.profile_sync
    empty = {} if type == "config" else []

    if not sync.enabled:
        logger.warning("sync.store_disabled", method="GET")
        return empty

    try:
        if type == "config":
            return await sync.get_config()
        return await sync.get_profiles()
    except StoreError as e:
        # Keep the frontend usable in local mode.
        logger.error("sync.read_failed", error=str(e))
        return empty


@router.post("/sync")
async def sync_write(payload: SyncRequest, req: Request):
    """Save the config blob or upsert a single student profile."""
    sync = req.app.state.profile_sync
    if not sync.enabled:
        return JSONResponse(status_code=500, content={
            "error": "DB_DISABLED", "message": "No database connected",
        })

    if payload.type != "config" and not payload.profile:
        return JSONResponse(status_code=400, content={"error": "MISSING_PROFILE"})

    try:
        if payload.type == "config":
            await sync.save_config(payload.data)
        else:
            await sync.upsert_profile(payload.profile)
    except StoreError as e:
        logger.error("sync.write_failed", error=str(e))
        return JSONResponse(status_code=500, content={"error": "SYNC_ERROR"})

    return {"success": True}


@router.get("/health")
def health(req: Request):
    """Check which backing services are configured."""
    settings = req.app.state.settings
    components = {
        "gemini": "ok" if settings.api_key else "error",
        "kv_store": "ok" if req.app.state.kv_store.is_healthy() else "error",
    }

    errors = [k for k, v in components.items() if v == "error"]
    if not errors:
        status = "healthy"
    elif len(errors) == len(components):
        status = "unhealthy"
    else:
        status = "degraded"

    return {"status": status, "components": components}


@router.get("/")
@router.head("/")
def root_health():
    """Basic root health check for deployment platforms."""
    return {"status": "ok", "service": "tutor-api"}
