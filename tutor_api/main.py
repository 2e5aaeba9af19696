"""FastAPI application entry point.

Startup sequence: settings → course payload → KV store → Gemini clients →
cache coordinator → orchestrator. Every component gets its configuration
explicitly from the Settings built here.
"""

from contextlib import asynccontextmanager

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutor_api.agent.prompts import build_context_payload, load_course_content
from tutor_api.api.routes import router
from tutor_api.config import Settings
from tutor_api.core.cache_coordinator import CacheCoordinator
from tutor_api.core.gemini_backend import GeminiBackend
from tutor_api.core.generation import GenerationInvoker
from tutor_api.core.kv_store import KVStore
from tutor_api.core.orchestrator import ChatOrchestrator
from tutor_api.core.profile_sync import ProfileSync

load_dotenv()

logger = structlog.get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10.0


def create_app(
    settings: Settings | None = None,
    kv_store: KVStore | None = None,
    backend: GeminiBackend | None = None,
    invoker: GenerationInvoker | None = None,
) -> FastAPI:
    """Build the app. Collaborators may be injected (tests); otherwise built from settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("startup.begin")
        cfg = settings or Settings.from_env()
        app.state.settings = cfg

        payload = build_context_payload(load_course_content(cfg.course_content_path))
        logger.info("startup.payload_loaded", chars=len(payload), course_id=cfg.course_id or None)

        store = kv_store or KVStore(cfg.kv_url, cfg.kv_token, timeout=cfg.kv_timeout_seconds)
        app.state.kv_store = store
        if not store.enabled:
            logger.warning("startup.kv_disabled", hint="Set KV_REST_API_URL and KV_REST_API_TOKEN")

        gemini = backend
        chat_invoker = invoker
        if cfg.api_key:
            gemini = gemini or GeminiBackend(cfg.api_key, cfg.cache_model)
            chat_invoker = chat_invoker or GenerationInvoker(cfg.api_key, cfg.chat_model, cfg.cache_model)
        else:
            logger.error("startup.missing_api_key", hint="Set GEMINI_API_KEY in .env")

        coordinator = CacheCoordinator(
            store,
            ttl_seconds=cfg.cache_ttl_seconds,
            safety_margin_ms=cfg.cache_safety_margin_ms,
            single_flight=cfg.single_flight,
        )
        app.state.orchestrator = ChatOrchestrator(cfg, coordinator, gemini, chat_invoker, payload)
        app.state.profile_sync = ProfileSync(store, key_prefix=cfg.key_prefix)

        logger.info("startup.complete")
        yield
        # Abandoned pipelines may still be writing the cache handle.
        await app.state.orchestrator.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
        await store.aclose()
        logger.info("shutdown.complete")

    app = FastAPI(
        title="Tutor API",
        description="Course tutor chat backed by a shared Gemini context cache",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


app = create_app()
