from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryPolicy(BaseModel):
    """Per-capability refinement retry policy. Unset fields fall back to the global retry settings."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    enabled: bool | None = None
    max_retries: int | None = Field(default=None, ge=0)
    model: str | None = None
    prompt: str | None = None
    retryable_errors: tuple[str, ...] = Field(
        default=(),
        description="Extra regular expressions matched against failure messages to mark them retryable.",
    )


class ContextFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    min_depth: int = Field(1, ge=1)
    max_depth: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_depth_range(self) -> "ContextFilter":
        if self.max_depth is not None and self.max_depth < self.min_depth:
            raise ValueError("max_depth must be greater than or equal to min_depth")
        return self


class AbilityInputs(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: str = "implicit"
    required: tuple[str, ...] = ()
    optional: tuple[str, ...] = ()
    infer_from: tuple[str, ...] = ()
    validation: str | None = None
    examples: tuple[str, ...] = ()


class CapabilityConfig(BaseModel):
    """Routing configuration of one user-triggerable keyword. Read-only for a request's lifetime."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    keyword: str = Field(..., min_length=1)
    api: str = Field(..., min_length=1, description="API category the capability dispatches to.")
    timeout_seconds: float | None = Field(
        default=None,
        gt=0.0,
        description="Per-call timeout; falls back to the execution default when unset.",
    )
    description: str = ""
    final_pass: bool = False
    context_filter: ContextFilter = Field(default_factory=ContextFilter)
    retry: RetryPolicy | None = None
    ability_text: str | None = None
    ability_when: str | None = None
    ability_inputs: AbilityInputs | None = None

    @property
    def bare_keyword(self) -> str:
        keyword = self.keyword.strip().lower()
        return keyword[1:] if keyword.startswith("!") else keyword

    def describe_ability(self) -> str:
        """Render the ability metadata block shared by the refinement and inference prompts."""
        parts = [
            f"Ability keyword: {self.keyword}",
            f"Ability api: {self.api}",
            f"Ability description: {self.ability_text or self.description}",
        ]
        if self.ability_when:
            parts.append(f"When: {self.ability_when}")
        inputs = self.ability_inputs
        if inputs is not None:
            parts.append(f"Inputs mode: {inputs.mode}")
            if inputs.required:
                parts.append(f"Required inputs: {', '.join(inputs.required)}")
            if inputs.optional:
                parts.append(f"Optional inputs: {', '.join(inputs.optional)}")
            if inputs.infer_from:
                parts.append(f"Infer from: {', '.join(inputs.infer_from)}")
            if inputs.validation:
                parts.append(f"Validation: {inputs.validation}")
            if inputs.examples:
                parts.append(f"Examples: {' | '.join(inputs.examples)}")
        return "\n".join(parts)
