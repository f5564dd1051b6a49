from __future__ import annotations

from capability_router.core.config import DEFAULT_RETRY_PROMPT, RetrySettings
from capability_router.orchestration.retry import (
    Continue,
    EffectiveRetryPolicy,
    RetryClassifier,
    RetryState,
    Stop,
    StopReason,
    decide_retry,
    evaluate_refinement,
    extract_refined_input,
)
from capability_router.schemas.capabilities import RetryPolicy
from capability_router.schemas.results import CallResult

from tests.helpers.stubs import make_capability

LOCATION_FAILURE = CallResult.failure('Could not find location "Dalas"')


def _policy(**overrides) -> EffectiveRetryPolicy:
    values = {"enabled": True, "max_retries": 2, "model": None, "prompt": DEFAULT_RETRY_PROMPT}
    values.update(overrides)
    return EffectiveRetryPolicy(**values)


def test_policy_falls_back_to_settings_defaults() -> None:
    defaults = RetrySettings(enabled=True, max_retries=3, model="small")

    resolved = EffectiveRetryPolicy.resolve(make_capability(), defaults)

    assert resolved.enabled is True
    assert resolved.max_retries == 3
    assert resolved.model == "small"
    assert resolved.prompt == DEFAULT_RETRY_PROMPT


def test_capability_policy_overrides_defaults_and_blank_prompt_is_ignored() -> None:
    capability = make_capability(
        retry=RetryPolicy(enabled=False, max_retries=1, prompt="   ", retryable_errors=("quota",))
    )

    resolved = EffectiveRetryPolicy.resolve(capability, RetrySettings(enabled=True, max_retries=4))

    assert resolved.enabled is False
    assert resolved.max_retries == 1
    assert resolved.prompt == DEFAULT_RETRY_PROMPT
    assert resolved.retryable_errors == ("quota",)


def test_classifier_allow_lists_weather_location_shape_only() -> None:
    classifier = RetryClassifier()

    assert classifier.is_retryable("accuweather", LOCATION_FAILURE) is True
    assert classifier.is_retryable("weather", CallResult.failure("Location 'x' not found")) is True
    assert classifier.is_retryable("accuweather", CallResult.failure("API key rejected")) is False
    assert classifier.is_retryable("comfyui", LOCATION_FAILURE) is False


def test_classifier_prefers_structured_flag_and_ignores_cancellation() -> None:
    classifier = RetryClassifier()

    assert classifier.is_retryable("serpapi", CallResult.failure("bad query", retryable=True)) is True
    cancelled = CallResult.failure("Could not find location", cancelled=True, retryable=True)
    assert classifier.is_retryable("accuweather", cancelled) is False
    assert classifier.is_retryable("accuweather", CallResult.ok("sunny")) is False


def test_classifier_accepts_capability_patterns() -> None:
    classifier = RetryClassifier()
    failure = CallResult.failure("Unknown team abbreviation: DALS")

    assert classifier.is_retryable("nfl", failure) is False
    assert classifier.is_retryable("nfl", failure, [r"unknown team"]) is True


def test_decide_retry_stops_in_order() -> None:
    classifier = RetryClassifier()
    state = RetryState.start("weather in Dalas")

    assert decide_retry(_policy(), classifier, "accuweather", CallResult.ok("x"), state) == Stop(StopReason.SUCCEEDED)
    cancelled = CallResult.failure("cancelled", cancelled=True)
    assert decide_retry(_policy(), classifier, "accuweather", cancelled, state) == Stop(StopReason.CANCELLED)
    assert decide_retry(_policy(enabled=False), classifier, "accuweather", LOCATION_FAILURE, state) == Stop(
        StopReason.DISABLED
    )
    other = CallResult.failure("HTTP 500")
    assert decide_retry(_policy(), classifier, "accuweather", other, state) == Stop(StopReason.NOT_RETRYABLE)
    assert decide_retry(_policy(), classifier, "accuweather", LOCATION_FAILURE, state) is None

    exhausted = RetryState(original_text="a", last_input="b", attempt=2)
    assert decide_retry(_policy(), classifier, "accuweather", LOCATION_FAILURE, exhausted) == Stop(
        StopReason.CEILING_REACHED
    )


def test_zero_ceiling_never_retries() -> None:
    state = RetryState.start("weather in Dalas")

    stop = decide_retry(_policy(max_retries=0), RetryClassifier(), "accuweather", LOCATION_FAILURE, state)

    assert stop == Stop(StopReason.CEILING_REACHED)


def test_extract_refined_input_takes_first_line_without_quotes() -> None:
    assert extract_refined_input('\n  "Dallas, TX"  \nbecause the city was misspelled') == "Dallas, TX"
    assert extract_refined_input("   \n\t") == ""


def test_evaluate_refinement_transitions() -> None:
    state = RetryState.start("weather in Dalas")

    assert evaluate_refinement(CallResult.ok("Dallas, TX"), state) == Continue(next_input="Dallas, TX", attempt=1)
    assert evaluate_refinement(CallResult.ok("   "), state) == Stop(StopReason.EMPTY_REFINEMENT)
    assert evaluate_refinement(CallResult.ok("  WEATHER in dalas "), state) == Stop(StopReason.NO_PROGRESS)
    assert evaluate_refinement(CallResult.failure("model offline"), state) == Stop(StopReason.REFINE_FAILED)
    cancelled = CallResult.failure("cancelled", cancelled=True)
    assert evaluate_refinement(cancelled, state) == Stop(StopReason.CANCELLED)


def test_state_remembers_every_attempted_input() -> None:
    state = RetryState.start("weather in Dalas")
    state = state.advance(Continue(next_input="Dallas", attempt=1))

    assert state.attempt == 1
    assert state.last_input == "Dallas"
    assert state.original_text == "weather in Dalas"
    assert evaluate_refinement(CallResult.ok("weather in dalas"), state) == Stop(StopReason.NO_PROGRESS)
    assert evaluate_refinement(CallResult.ok("dallas"), state) == Stop(StopReason.NO_PROGRESS)
    assert evaluate_refinement(CallResult.ok("Dallas, Texas"), state) == Continue("Dallas, Texas", 2)
