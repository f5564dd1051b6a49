"""
Retry classification and loop transitions for input-repair retries.

The refinement loop is an accumulator over ``RetryState``. Every transition is
a pure function returning either ``Continue`` (try again with this input) or
``Stop`` (with the reason), so the loop can be tested without any I/O.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Sequence, Union

from ..core.config import RetrySettings
from ..schemas.capabilities import CapabilityConfig
from ..schemas.results import CallResult
from .prompts import normalize_one_line, strip_wrapping_quotes

_LOCATION_NOT_FOUND = (
    r"could not find location",
    r"location\b.*\bnot found",
)

DEFAULT_RETRYABLE_PATTERNS: dict[str, tuple[str, ...]] = {
    "accuweather": _LOCATION_NOT_FOUND,
    "weather": _LOCATION_NOT_FOUND,
}


class StopReason(str, Enum):
    SUCCEEDED = "succeeded"
    DISABLED = "disabled"
    NOT_RETRYABLE = "not_retryable"
    CEILING_REACHED = "ceiling_reached"
    REFINE_FAILED = "refine_failed"
    EMPTY_REFINEMENT = "empty_refinement"
    NO_PROGRESS = "no_progress"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Continue:
    next_input: str
    attempt: int


@dataclass(frozen=True)
class Stop:
    reason: StopReason


RetryStep = Union[Continue, Stop]


@dataclass(frozen=True)
class EffectiveRetryPolicy:
    enabled: bool
    max_retries: int
    model: str | None
    prompt: str
    retryable_errors: tuple[str, ...] = ()

    @classmethod
    def resolve(cls, capability: CapabilityConfig, defaults: RetrySettings) -> "EffectiveRetryPolicy":
        policy = capability.retry
        if policy is None:
            return cls(
                enabled=defaults.enabled,
                max_retries=defaults.max_retries,
                model=defaults.model,
                prompt=defaults.prompt,
            )
        prompt = policy.prompt if policy.prompt and policy.prompt.strip() else defaults.prompt
        return cls(
            enabled=defaults.enabled if policy.enabled is None else policy.enabled,
            max_retries=defaults.max_retries if policy.max_retries is None else policy.max_retries,
            model=policy.model or defaults.model,
            prompt=prompt,
            retryable_errors=tuple(policy.retryable_errors),
        )


class RetryClassifier:
    """Decides whether a failure is an input-correctable shape worth a refinement retry.

    A structured ``retryable`` flag set by the dispatcher always wins. Otherwise the
    failure message is matched against a per-category allow-list.
    """

    def __init__(self, patterns: Mapping[str, Sequence[str]] | None = None) -> None:
        source = DEFAULT_RETRYABLE_PATTERNS if patterns is None else patterns
        self._patterns: dict[str, tuple[re.Pattern[str], ...]] = {
            api.lower(): _compile(values) for api, values in source.items()
        }

    def is_retryable(self, api: str, result: CallResult, extra_patterns: Iterable[str] = ()) -> bool:
        if result.success or result.cancelled:
            return False
        if result.retryable:
            return True
        message = result.error or ""
        if not message:
            return False
        candidates = self._patterns.get(api.lower(), ()) + _compile(extra_patterns)
        return any(pattern.search(message) for pattern in candidates)


@dataclass(frozen=True)
class RetryState:
    original_text: str
    last_input: str
    attempt: int = 0
    attempted_inputs: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def start(cls, text: str) -> "RetryState":
        return cls(original_text=text, last_input=text, attempted_inputs=frozenset({_fingerprint(text)}))

    def advance(self, step: Continue) -> "RetryState":
        return RetryState(
            original_text=self.original_text,
            last_input=step.next_input,
            attempt=step.attempt,
            attempted_inputs=self.attempted_inputs | {_fingerprint(step.next_input)},
        )


def decide_retry(
    policy: EffectiveRetryPolicy,
    classifier: RetryClassifier,
    api: str,
    result: CallResult,
    state: RetryState,
) -> Stop | None:
    """Return ``None`` when another refinement should be attempted, else why not."""
    if result.success:
        return Stop(StopReason.SUCCEEDED)
    if result.cancelled:
        return Stop(StopReason.CANCELLED)
    if not policy.enabled:
        return Stop(StopReason.DISABLED)
    if not classifier.is_retryable(api, result, policy.retryable_errors):
        return Stop(StopReason.NOT_RETRYABLE)
    if state.attempt >= policy.max_retries:
        return Stop(StopReason.CEILING_REACHED)
    return None


def extract_refined_input(raw: str) -> str:
    return strip_wrapping_quotes(normalize_one_line(raw))


def evaluate_refinement(refine_result: CallResult, state: RetryState) -> RetryStep:
    if refine_result.cancelled:
        return Stop(StopReason.CANCELLED)
    if not refine_result.success:
        return Stop(StopReason.REFINE_FAILED)
    refined = extract_refined_input(refine_result.text or "")
    if not refined:
        return Stop(StopReason.EMPTY_REFINEMENT)
    # The failed input is always in the attempted set.
    if _fingerprint(refined) in state.attempted_inputs:
        return Stop(StopReason.NO_PROGRESS)
    return Continue(next_input=refined, attempt=state.attempt + 1)


def _fingerprint(text: str) -> str:
    return text.strip().lower()


def _compile(patterns: Iterable[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)
