"""Per-request orchestration for POST /chat.

Pipeline: assemble conversation -> resolve shared cache -> invoke Gemini.
The pipeline races a fixed deadline. If the deadline wins the client gets a
200 WARMING_UP envelope; the pipeline task is left to finish on its own (a
cold start usually ends with the cache provisioned for the next request) and
its result is discarded.
"""

import asyncio
import functools
import time
from dataclasses import dataclass

import structlog

from tutor_api.api.schemas import ChatRequest, ChatResponse, ErrorResponse
from tutor_api.config import ConfigError, Settings
from tutor_api.core.cache_coordinator import CacheCoordinator
from tutor_api.core.conversation import (
    ConversationValidationError,
    assemble,
    with_student_context,
)
from tutor_api.core.gemini_backend import GeminiBackend
from tutor_api.core.generation import GenerationInvoker

logger = structlog.get_logger(__name__)


@dataclass
class ChatOutcome:
    """HTTP status plus the envelope to serialize."""
    status_code: int
    body: ChatResponse | ErrorResponse


class ChatOrchestrator:
    """Runs one chat request under the configured deadline."""

    def __init__(
        self,
        settings: Settings,
        coordinator: CacheCoordinator,
        backend: GeminiBackend | None,
        invoker: GenerationInvoker | None,
        context_payload: str,
    ):
        self.settings = settings
        self.coordinator = coordinator
        self.backend = backend
        self.invoker = invoker
        self.context_payload = context_payload
        self._abandoned: set[asyncio.Task] = set()

    async def handle(self, request: ChatRequest) -> ChatOutcome:
        """Process a chat request and map every failure to an envelope."""
        try:
            self.settings.require_api_key()
        except ConfigError as e:
            logger.error("chat.config_error", error=str(e))
            return ChatOutcome(500, ErrorResponse(error=str(e), status="ERROR"))

        start = time.monotonic()
        deadline = self.settings.request_deadline_seconds
        pipeline = asyncio.ensure_future(self._run_pipeline(request))
        done, _ = await asyncio.wait({pipeline}, timeout=deadline)

        if pipeline not in done:
            self._abandon(pipeline)
            logger.warning("chat.deadline_exceeded", deadline_s=deadline)
            return ChatOutcome(200, ErrorResponse(
                error=f"Preventive timeout ({deadline:g}s): the server took too long to warm up.",
                status="WARMING_UP",
            ))

        latency_ms = int((time.monotonic() - start) * 1000)
        try:
            response = pipeline.result()
        except ConversationValidationError as e:
            logger.warning("chat.invalid_request", error=str(e))
            return ChatOutcome(400, ErrorResponse(error=str(e), status="ERROR"))
        except Exception as e:
            logger.error("chat.failed", error=str(e), latency_ms=latency_ms)
            return ChatOutcome(500, ErrorResponse(error=str(e), status="ERROR"))

        logger.info("chat.response", cached=response.cached, latency_ms=latency_ms)
        return ChatOutcome(200, response)

    async def _run_pipeline(self, request: ChatRequest) -> ChatResponse:
        window = assemble(request.messages, self.settings.history_window)
        current_input = with_student_context(window, request.current_profile)

        resolution = await self.coordinator.resolve(self.settings.cache_key, self._provision_fn())

        if resolution.handle is not None:
            text = await self.invoker.invoke_cached(resolution.handle, window.history, current_input)
            return ChatResponse(text=text, cached=True)

        logger.info("chat.fallback", reason=resolution.reason)
        text = await self.invoker.invoke_full(self.context_payload, window.history, current_input)
        return ChatResponse(text=text, cached=False)

    def _provision_fn(self):
        return functools.partial(
            self.backend.create_cached_context,
            self.context_payload,
            self.settings.cache_ttl_seconds,
            display_name=f"cache_{self.settings.key_prefix or 'default'}",
        )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for pipelines abandoned at the deadline (called at shutdown)."""
        pending = set(self._abandoned)
        if not pending:
            return
        logger.info("chat.draining", pending=len(pending), timeout_s=timeout)
        await asyncio.wait(pending, timeout=timeout)

    def _abandon(self, task: asyncio.Task) -> None:
        # Keep a reference so the task is not garbage-collected mid-flight.
        self._abandoned.add(task)
        task.add_done_callback(self._discard)

    def _discard(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("chat.abandoned_pipeline_failed", error=str(error))
