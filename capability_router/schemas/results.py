from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """A single prior conversation turn handed to language-model calls."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str
    context_source: Literal["reply", "channel", "thread", "trigger"] | None = None


class CallResult(BaseModel):
    """Normalized outcome of one external call: an opaque payload on success or a message on failure."""

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: str | None = None
    retryable: bool = Field(
        default=False,
        description="Set by the dispatcher when the failure can be fixed by repairing the input.",
    )
    cancelled: bool = False

    @classmethod
    def ok(cls, data: Any = None) -> "CallResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, *, retryable: bool = False, cancelled: bool = False) -> "CallResult":
        return cls(success=False, error=error, retryable=retryable, cancelled=cancelled)

    @property
    def text(self) -> str | None:
        """Textual view of the payload: a plain string, or a ``text`` entry of a mapping payload."""
        if isinstance(self.data, str):
            return self.data
        if isinstance(self.data, dict):
            value = self.data.get("text")
            return value if isinstance(value, str) else None
        value = getattr(self.data, "text", None)
        return value if isinstance(value, str) else None


class StageKind(str, Enum):
    PRIMARY = "primary"
    RETRY_REFINE = "retry_refine"
    RETRY_ATTEMPT = "retry_attempt"
    FINAL_PASS = "final_pass"


class Stage(BaseModel):
    """One attempt of a routed request. Audit trail only."""

    model_config = ConfigDict(frozen=True)

    kind: StageKind
    api: str
    label: str
    result: CallResult
    duration_ms: float = 0.0


class RoutedResult(BaseModel):
    final_api: str
    final_response: CallResult
    stages: list[Stage] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.final_response.success

    @property
    def retry_attempts(self) -> int:
        return sum(1 for stage in self.stages if stage.kind is StageKind.RETRY_ATTEMPT)

    @property
    def final_pass_attempted(self) -> bool:
        return any(stage.kind is StageKind.FINAL_PASS for stage in self.stages)
