from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETRY_PROMPT = (
    "Return a corrected version of the last attempted input that is more likely to succeed. "
    "Output only the corrected input on a single line."
)

DEFAULT_FINAL_PASS_PROMPT = (
    "Answer the user conversationally using the external data provided. "
    "Be concise and natural, and do not invent facts that are not in the data."
)


class ObservabilitySettings(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = Field(True, description="Render log events as JSON instead of console output.")
    slot_verbose: bool = Field(
        False,
        description="Log every execution slot call at info level instead of debug.",
    )


class LanguageModelSettings(BaseModel):
    category: str = Field("ollama", min_length=1, description="API category served by the language model client.")
    timeout_seconds: float = Field(
        60.0,
        gt=0.0,
        description="Timeout budget for refinement, final-pass, inference and context evaluation calls.",
    )
    context_eval_model: str | None = Field(default=None, description="Optional model override for context evaluation.")


class RetrySettings(BaseModel):
    enabled: bool = Field(False, description="Default retry toggle for capabilities without their own policy.")
    max_retries: int = Field(2, ge=0, description="Default refinement retry ceiling.")
    model: str | None = Field(default=None, description="Default model used to repair failed input.")
    prompt: str = Field(DEFAULT_RETRY_PROMPT, min_length=1)


class FinalPassSettings(BaseModel):
    model: str | None = Field(default=None, description="Optional model override for the final pass.")
    prompt: str = Field(DEFAULT_FINAL_PASS_PROMPT, description="Instruction appended to the final-pass system prompt.")


class ContextSettings(BaseModel):
    reply_chain_max_depth: int = Field(10, ge=1, description="Fallback max depth when a capability sets none.")


class ExecutionSettings(BaseModel):
    default_timeout_seconds: float = Field(
        300.0,
        gt=0.0,
        description="Capability call timeout used when a capability sets none.",
    )
    max_concurrent_per_api: dict[str, int] = Field(
        default_factory=dict,
        description="Optional per-category ceiling on in-flight calls (e.g. {'comfyui': 1}).",
    )


class ActivitySettings(BaseModel):
    capacity: int = Field(100, ge=1, description="Maximum events held by the activity ring buffer.")
    max_event_age_seconds: float = Field(4 * 60 * 60, gt=0.0)
    routing_dedupe_seconds: float = Field(5.0, ge=0.0)


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]
    language_model: LanguageModelSettings = Field(default_factory=LanguageModelSettings)  # type: ignore[arg-type]
    retry: RetrySettings = Field(default_factory=RetrySettings)  # type: ignore[arg-type]
    final_pass: FinalPassSettings = Field(default_factory=FinalPassSettings)  # type: ignore[arg-type]
    context: ContextSettings = Field(default_factory=ContextSettings)  # type: ignore[arg-type]
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)  # type: ignore[arg-type]
    activity: ActivitySettings = Field(default_factory=ActivitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="ROUTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
