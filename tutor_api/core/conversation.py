"""Conversation history assembly.

Turns the raw client message log into a bounded, role-normalized window that
Gemini accepts: it must open with a user turn, and the last user message is
sent separately as the current input.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "model"]


class ConversationValidationError(Exception):
    """The request does not contain a usable conversation."""
    pass


class EmptyConversationError(ConversationValidationError):
    """No user message left after filtering and trimming."""
    pass


@dataclass(frozen=True)
class ConversationMessage:
    role: Role
    text: str


@dataclass(frozen=True)
class ConversationWindow:
    """Assembled conversation.

    Attributes:
        history: Prior turns, oldest first, starting with a user turn.
        current_input: Text of the most recent turn, sent as the active input.
    """
    history: list[ConversationMessage] = field(default_factory=list)
    current_input: str = ""

    @property
    def is_first_turn(self) -> bool:
        return not self.history


def _field(message: Any, name: str, default: Any = None) -> Any:
    if isinstance(message, dict):
        return message.get(name, default)
    return getattr(message, name, default)


def _is_usable(message: Any) -> bool:
    if _field(message, "is_error") or _field(message, "isError"):
        return False
    text = _field(message, "text")
    return isinstance(text, str) and text.strip() != ""


def assemble(raw_messages: Iterable[Any] | None, window_size: int) -> ConversationWindow:
    """Build a ConversationWindow from raw client messages.

    Args:
        raw_messages: RawMessage models or plain dicts with role/text/isError.
        window_size: Number of most recent usable messages to keep.

    Returns:
        ConversationWindow whose history excludes the current turn.

    Raises:
        EmptyConversationError: If no message survives filtering.
    """
    usable = [m for m in (raw_messages or []) if _is_usable(m)]
    if window_size <= 0:
        usable = []
    else:
        usable = usable[-window_size:]

    history = [
        ConversationMessage(
            role="model" if _field(m, "role") == "model" else "user",
            text=_field(m, "text"),
        )
        for m in usable
    ]

    while history and history[0].role == "model":
        history.pop(0)

    if not history:
        raise EmptyConversationError("No user message in the conversation.")

    last = history.pop()
    return ConversationWindow(history=history, current_input=last.text)


def student_prefix(profile: Any) -> str:
    """Render the identity line prepended on a session's first turn."""
    if profile is None:
        return ""
    return f"[STUDENT: {_field(profile, 'name', '')} (ID: {_field(profile, 'id', '')})]\n"


def with_student_context(window: ConversationWindow, profile: Any) -> str:
    """Current input, prefixed with the student line only on the first turn."""
    if profile is not None and window.is_first_turn:
        return student_prefix(profile) + window.current_input
    return window.current_input
