"""Pydantic models for the API layer.

Defines request/response schemas for /chat and /sync.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class RawMessage(BaseModel):
    """Single message as submitted by the frontend (not yet sanitized)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: str | None = "user"
    text: str | None = None
    is_error: bool = Field(default=False, alias="isError")


class StudentProfile(BaseModel):
    """Student identity attached to a chat request or synced to the store."""
    model_config = ConfigDict(extra="allow")

    id: str | int = ""
    name: str = ""
    scores: Any = None


class ChatRequest(BaseModel):
    """Incoming chat request: full client-side message log plus optional profile."""
    model_config = ConfigDict(populate_by_name=True)

    messages: list[RawMessage] = Field(default_factory=list)
    current_profile: StudentProfile | None = Field(default=None, alias="currentProfile")


class ChatResponse(BaseModel):
    """Successful generation."""
    text: str
    cached: bool = False


class ErrorResponse(BaseModel):
    """Failure envelope. WARMING_UP is transient and returned with HTTP 200."""
    error: str
    status: Literal["ERROR", "WARMING_UP"] = "ERROR"


class SyncRequest(BaseModel):
    """POST /sync body: either a config blob or a single profile upsert."""
    type: str | None = None
    data: Any = None
    profile: dict[str, Any] | None = None
