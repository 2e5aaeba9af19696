"""Gemini chat invocation in cached or full-context mode.

Cached mode binds the chat model to a shared cachedContents entry, so only the
conversation travels with each call. Full-context mode (the fallback) sends the
whole instruction + course payload as the system message. No retries here:
any backend error surfaces as GenerationError with the message preserved.
"""

from collections.abc import Callable, Sequence

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from tutor_api.core.cache_coordinator import CacheHandle
from tutor_api.core.conversation import ConversationMessage

logger = structlog.get_logger(__name__)


class GenerationError(Exception):
    """The backend failed to produce a response."""
    pass


ModelFactory = Callable[..., BaseChatModel]


def to_lc_messages(history: Sequence[ConversationMessage], current_input: str) -> list[BaseMessage]:
    """Convert assembled history + current turn into LangChain messages."""
    messages: list[BaseMessage] = []
    for msg in history:
        if msg.role == "model":
            messages.append(AIMessage(content=msg.text))
        else:
            messages.append(HumanMessage(content=msg.text))
    messages.append(HumanMessage(content=current_input))
    return messages


def _response_text(response: BaseMessage) -> str:
    content = response.content
    if isinstance(content, str):
        return content
    # Newer integrations return a list of content blocks.
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type", "text") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class GenerationInvoker:
    """Calls Gemini through LangChain and returns plain text."""

    def __init__(
        self,
        api_key: str,
        chat_model: str,
        cache_model: str,
        temperature: float | None = None,
        model_factory: ModelFactory = ChatGoogleGenerativeAI,
    ):
        self.api_key = api_key
        self.chat_model = chat_model
        self.cache_model = cache_model
        self.temperature = temperature
        self._model_factory = model_factory

    def _build(self, model: str, **kwargs) -> BaseChatModel:
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature
        return self._model_factory(model=model, google_api_key=self.api_key, **kwargs)

    async def invoke_cached(
        self,
        handle: CacheHandle,
        history: Sequence[ConversationMessage],
        current_input: str,
    ) -> str:
        """Generate against the shared cached context."""
        llm = self._build(self.cache_model, cached_content=handle.identifier)
        return await self._invoke(llm, to_lc_messages(history, current_input), mode="cached")

    async def invoke_full(
        self,
        system_context: str,
        history: Sequence[ConversationMessage],
        current_input: str,
    ) -> str:
        """Generate with the full payload supplied for this call only."""
        llm = self._build(self.chat_model)
        messages = [SystemMessage(content=system_context), *to_lc_messages(history, current_input)]
        return await self._invoke(llm, messages, mode="full")

    async def _invoke(self, llm: BaseChatModel, messages: list[BaseMessage], mode: str) -> str:
        logger.debug("llm.invoke", mode=mode, turns=len(messages))
        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            logger.error("llm.failed", mode=mode, error=str(e))
            raise GenerationError(str(e)) from e
        return _response_text(response)
