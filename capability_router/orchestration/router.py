"""
Routed Execution Pipeline

Drives one capability request to completion:

    PRIMARY -> RETRY_REFINE -> RETRY_ATTEMPT -> (loop) -> FINAL_PASS -> DONE

Every external call, capability or language model, is submitted through the
execution slot and recorded as a ``Stage``. The pipeline never raises for
expected outcomes; timeouts, failures and cancellation all come back inside
the ``RoutedResult``.
"""

from __future__ import annotations

import time
from typing import Any, Sequence

from ..core.config import Settings, get_settings
from ..core.logging import get_logger, truncate_for_log
from ..core.metrics import (
    record_final_pass,
    record_retry_attempt,
    record_retry_stop,
    record_routed_request,
)
from ..execution.cancellation import CancellationToken
from ..execution.exceptions import RequestCancelledError
from ..execution.slot import ExecutionSlot, Work
from ..schemas.capabilities import CapabilityConfig
from ..schemas.results import CallResult, ChatMessage, RoutedResult, Stage, StageKind
from ..services.activity import ActivityEventType, ActivitySink, api_narrative
from ..services.dispatcher import CapabilityDispatcher, LanguageModelOptions
from .context_window import ContextWindowEvaluator, LanguageModelContextEvaluator
from .formatters import FormatterRegistry
from .prompts import build_final_pass_prompt, build_retry_system_prompt, build_retry_user_prompt
from .retry import (
    EffectiveRetryPolicy,
    RetryClassifier,
    RetryState,
    Stop,
    StopReason,
    decide_retry,
    evaluate_refinement,
)

logger = get_logger(name=__name__)


class RoutedExecutionPipeline:
    """
    Orchestrates primary call, input-repair retries and the optional final pass.

    Example usage:
        pipeline = RoutedExecutionPipeline.from_settings(dispatcher)
        routed = await pipeline.execute(capability, "weather in Dallas", "user-1")
        if routed.succeeded:
            reply = routed.final_response.text
    """

    def __init__(
        self,
        dispatcher: CapabilityDispatcher,
        slot: ExecutionSlot,
        *,
        settings: Settings,
        formatters: FormatterRegistry | None = None,
        context_evaluator: ContextWindowEvaluator | None = None,
        classifier: RetryClassifier | None = None,
        activity: ActivitySink | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.slot = slot
        self.settings = settings
        self.formatters = formatters or FormatterRegistry()
        self.context_evaluator = context_evaluator
        self.classifier = classifier or RetryClassifier()
        self.activity = activity

    @classmethod
    def from_settings(
        cls,
        dispatcher: CapabilityDispatcher,
        settings: Settings | None = None,
        *,
        formatters: FormatterRegistry | None = None,
        activity: ActivitySink | None = None,
    ) -> "RoutedExecutionPipeline":
        """Wire a pipeline with the default slot and language-model context evaluator."""
        settings = settings or get_settings()
        slot = ExecutionSlot.from_settings(settings)
        return cls(
            dispatcher,
            slot,
            settings=settings,
            formatters=formatters,
            context_evaluator=LanguageModelContextEvaluator(dispatcher, slot, settings),
            activity=activity,
        )

    @property
    def language_model_api(self) -> str:
        return self.settings.language_model.category

    async def execute(
        self,
        capability: CapabilityConfig,
        text: str,
        requester: str,
        history: Sequence[ChatMessage] | None = None,
        token: CancellationToken | None = None,
    ) -> RoutedResult:
        stages: list[Stage] = []
        log = logger.bind(keyword=capability.keyword, api=capability.api, requester=requester)
        log.info("routed_request_started", text=truncate_for_log(text, 200), final_pass=capability.final_pass)
        self._emit_activity(
            ActivityEventType.ROUTING_DECISION,
            f"I need to {api_narrative(capability.api)}",
            {"keyword": capability.keyword, "api": capability.api},
        )

        result = await self._submit(
            stages,
            api=capability.api,
            requester=requester,
            label=capability.keyword,
            kind=StageKind.PRIMARY,
            timeout_seconds=self._capability_timeout(capability),
            work=self._capability_work(capability, requester, text),
            token=token,
        )
        if result.cancelled:
            return self._finish(capability, capability.api, result, stages)

        result = await self._run_retry_loop(capability, text, requester, result, stages, token)
        if result.cancelled or not result.success:
            if not result.cancelled:
                self._emit_activity(
                    ActivityEventType.ERROR,
                    f"I couldn't {api_narrative(capability.api)}",
                    {"keyword": capability.keyword, "api": capability.api},
                )
            return self._finish(capability, capability.api, result, stages)

        if not self._final_pass_applies(capability):
            return self._finish(capability, capability.api, result, stages)

        if token is not None and token.cancelled:
            log.info("routed_final_pass_skipped", reason=token.reason)
            record_final_pass(capability=capability.keyword, outcome="skipped")
            return self._finish(capability, capability.api, result, stages)

        return await self._run_final_pass(capability, text, requester, history, result, stages, token)

    async def _run_retry_loop(
        self,
        capability: CapabilityConfig,
        text: str,
        requester: str,
        result: CallResult,
        stages: list[Stage],
        token: CancellationToken | None,
    ) -> CallResult:
        """Repair the input and re-attempt until the result succeeds or a ``Stop`` is reached."""
        policy = EffectiveRetryPolicy.resolve(capability, self.settings.retry)
        state = RetryState.start(text)

        while True:
            stop = decide_retry(policy, self.classifier, capability.api, result, state)
            if stop is not None:
                self._record_stop(capability, stop, state)
                return result

            logger.info(
                "routed_retry_refine_started",
                keyword=capability.keyword,
                attempt=state.attempt + 1,
                max_retries=policy.max_retries,
                error=result.error,
            )
            if state.attempt == 0:
                self._emit_activity(
                    ActivityEventType.WARNING,
                    "That didn't work, let me rephrase and try again",
                    {"keyword": capability.keyword, "api": capability.api},
                )
            refine = await self._submit(
                stages,
                api=self.language_model_api,
                requester=requester,
                label=f"{capability.keyword}:retry",
                kind=StageKind.RETRY_REFINE,
                timeout_seconds=self.settings.language_model.timeout_seconds,
                work=self._refine_work(capability, requester, policy, state, result),
                token=token,
            )
            step = evaluate_refinement(refine, state)
            if isinstance(step, Stop):
                if step.reason is StopReason.REFINE_FAILED:
                    logger.warning("routed_retry_refine_failed", keyword=capability.keyword, error=refine.error)
                self._record_stop(capability, step, state)
                # Cancellation wins; otherwise the last capability failure stands.
                return refine if step.reason is StopReason.CANCELLED else result

            state = state.advance(step)
            logger.info(
                "routed_retry_attempt",
                keyword=capability.keyword,
                attempt=step.attempt,
                refined=truncate_for_log(step.next_input, 200),
            )
            result = await self._submit(
                stages,
                api=capability.api,
                requester=requester,
                label=f"{capability.keyword}:retry:{step.attempt}",
                kind=StageKind.RETRY_ATTEMPT,
                timeout_seconds=self._capability_timeout(capability),
                work=self._capability_work(capability, requester, step.next_input),
                token=token,
            )
            record_retry_attempt(capability=capability.keyword, outcome=_outcome(result))

    async def _run_final_pass(
        self,
        capability: CapabilityConfig,
        text: str,
        requester: str,
        history: Sequence[ChatMessage] | None,
        success: CallResult,
        stages: list[Stage],
        token: CancellationToken | None,
    ) -> RoutedResult:
        log = logger.bind(keyword=capability.keyword, api=capability.api, requester=requester)
        messages = list(history or ())
        if messages and self.context_evaluator is not None:
            try:
                messages = list(
                    await self.context_evaluator.evaluate_context_window(messages, text, capability, requester, token)
                )
            except RequestCancelledError as exc:
                log.info("routed_final_pass_skipped", reason=exc.reason)
                record_final_pass(capability=capability.keyword, outcome="skipped")
                return self._finish(capability, capability.api, success, stages)
            except Exception as exc:
                log.warning("routed_context_eval_error", error=str(exc))
                messages = list(history or ())

        if not messages or messages[-1].context_source != "trigger":
            messages.append(ChatMessage(role="user", content=f"{requester}: {text}", context_source="trigger"))

        self._emit_activity(
            ActivityEventType.ROUTING_DECISION,
            "Let me put that into words",
            {"keyword": capability.keyword, "api": self.language_model_api},
        )
        final = await self._submit(
            stages,
            api=self.language_model_api,
            requester=requester,
            label=f"{capability.keyword}:final",
            kind=StageKind.FINAL_PASS,
            timeout_seconds=self.settings.language_model.timeout_seconds,
            work=self._final_pass_work(capability, requester, text, success, messages),
            token=token,
        )
        if final.success:
            record_final_pass(capability=capability.keyword, outcome="success")
            return self._finish(capability, self.language_model_api, final, stages)

        outcome = "cancelled" if final.cancelled else "failure"
        record_final_pass(capability=capability.keyword, outcome=outcome)
        log.warning("routed_final_pass_fallback", outcome=outcome, error=final.error)
        return self._finish(capability, capability.api, success, stages)

    async def _submit(
        self,
        stages: list[Stage],
        *,
        api: str,
        requester: str,
        label: str,
        kind: StageKind,
        timeout_seconds: float,
        work: Work,
        token: CancellationToken | None,
    ) -> CallResult:
        start = time.perf_counter()
        try:
            result = await self.slot.execute(api, requester, label, timeout_seconds, work, token)
        except RequestCancelledError as exc:
            result = CallResult.failure(str(exc), cancelled=True)
        stages.append(
            Stage(
                kind=kind,
                api=api,
                label=label,
                result=result,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
        )
        return result

    def _capability_work(self, capability: CapabilityConfig, requester: str, text: str) -> Work:
        async def work(call_token: CancellationToken) -> CallResult:
            return await self.dispatcher.execute_request(
                capability.api,
                requester,
                text,
                call_token,
                keyword=capability.keyword,
            )

        return work

    def _refine_work(
        self,
        capability: CapabilityConfig,
        requester: str,
        policy: EffectiveRetryPolicy,
        state: RetryState,
        failure: CallResult,
    ) -> Work:
        prompt = build_retry_user_prompt(
            capability,
            original_text=state.original_text,
            last_attempt_text=state.last_input,
            error=failure.error or "Unknown error",
            instruction=policy.prompt,
        )
        options = LanguageModelOptions(
            model=policy.model,
            system_prompt=build_retry_system_prompt(capability),
            include_system_prompt=False,
        )

        async def work(call_token: CancellationToken) -> CallResult:
            return await self.dispatcher.execute_request(
                self.language_model_api,
                requester,
                prompt,
                call_token,
                options=options,
                keyword=capability.keyword,
            )

        return work

    def _final_pass_work(
        self,
        capability: CapabilityConfig,
        requester: str,
        text: str,
        success: CallResult,
        history: list[ChatMessage],
    ) -> Work:
        options = LanguageModelOptions(
            model=self.settings.final_pass.model,
            history=tuple(history),
            system_prompt=self.settings.final_pass.prompt,
            include_system_prompt=True,
        )

        async def work(call_token: CancellationToken) -> CallResult:
            # Rendering runs inside the slot so a misbehaving formatter becomes a failed final pass.
            external_data = self.formatters.render(capability.api, success, text)
            return await self.dispatcher.execute_request(
                self.language_model_api,
                requester,
                build_final_pass_prompt(text, external_data),
                call_token,
                options=options,
                keyword=capability.keyword,
            )

        return work

    def _capability_timeout(self, capability: CapabilityConfig) -> float:
        return capability.timeout_seconds or self.settings.execution.default_timeout_seconds

    def _final_pass_applies(self, capability: CapabilityConfig) -> bool:
        return capability.final_pass and capability.api.lower() != self.language_model_api.lower()

    def _record_stop(self, capability: CapabilityConfig, stop: Stop, state: RetryState) -> None:
        if stop.reason is StopReason.SUCCEEDED and state.attempt == 0:
            return
        record_retry_stop(capability=capability.keyword, reason=stop.reason.value)
        if stop.reason not in (StopReason.SUCCEEDED, StopReason.DISABLED, StopReason.NOT_RETRYABLE):
            logger.info(
                "routed_retry_stopped",
                keyword=capability.keyword,
                reason=stop.reason.value,
                attempts=state.attempt,
            )

    def _finish(
        self,
        capability: CapabilityConfig,
        final_api: str,
        response: CallResult,
        stages: list[Stage],
    ) -> RoutedResult:
        routed = RoutedResult(final_api=final_api, final_response=response, stages=stages)
        record_routed_request(capability=capability.keyword, outcome=_outcome(response), stages=len(stages))
        logger.info(
            "routed_request_completed",
            keyword=capability.keyword,
            final_api=final_api,
            success=response.success,
            cancelled=response.cancelled,
            stages=len(stages),
            retry_attempts=routed.retry_attempts,
            final_pass_attempted=routed.final_pass_attempted,
        )
        return routed

    def _emit_activity(self, event_type: ActivityEventType, narrative: str, metadata: dict[str, Any]) -> None:
        if self.activity is None:
            return
        try:
            self.activity.emit(event_type, narrative, metadata)
        except Exception as exc:
            logger.warning("activity_emit_failed", event_type=event_type.value, error=str(exc))


def _outcome(result: CallResult) -> str:
    if result.success:
        return "success"
    return "cancelled" if result.cancelled else "failure"
