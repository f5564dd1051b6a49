from __future__ import annotations

import re
from typing import Protocol, Sequence, runtime_checkable

from ..core.config import Settings
from ..core.logging import get_logger
from ..core.metrics import record_context_eval
from ..execution.cancellation import CancellationToken
from ..execution.slot import ExecutionSlot
from ..schemas.capabilities import CapabilityConfig
from ..schemas.results import CallResult, ChatMessage
from ..services.dispatcher import CapabilityDispatcher, LanguageModelOptions
from .prompts import build_context_eval_prompt, format_history_for_eval

logger = get_logger(name=__name__)

_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")


@runtime_checkable
class ContextWindowEvaluator(Protocol):
    async def evaluate_context_window(
        self,
        history: Sequence[ChatMessage],
        text: str,
        capability: CapabilityConfig,
        requester: str,
        token: CancellationToken | None = None,
    ) -> list[ChatMessage]: ...


class LanguageModelContextEvaluator:
    """
    Narrows prior turns to those relevant for the current prompt.

    Depth counts non-system messages from the newest (depth 1). The newest
    ``min_depth`` messages are always kept; the language model decides how many
    more, up to ``max_depth``, stay. System messages are re-attached in front.
    Any evaluation failure keeps the full history.
    """

    def __init__(self, dispatcher: CapabilityDispatcher, slot: ExecutionSlot, settings: Settings) -> None:
        self.dispatcher = dispatcher
        self.slot = slot
        self.settings = settings

    async def evaluate_context_window(
        self,
        history: Sequence[ChatMessage],
        text: str,
        capability: CapabilityConfig,
        requester: str,
        token: CancellationToken | None = None,
    ) -> list[ChatMessage]:
        messages = list(history)
        context_filter = capability.context_filter
        if not context_filter.enabled:
            return messages

        system_messages = [message for message in messages if message.role == "system"]
        conversation = [message for message in messages if message.role != "system"]
        min_depth = context_filter.min_depth
        max_depth = max(min_depth, context_filter.max_depth or self.settings.context.reply_chain_max_depth)
        if len(conversation) <= min_depth:
            return messages

        candidates = conversation[-min(max_depth, len(conversation)):]
        if len(candidates) <= min_depth:
            return [*system_messages, *candidates]

        prompt = (
            f"Conversation messages (most recent first):\n{format_history_for_eval(candidates)}\n\n"
            f"Current user prompt: {text}"
        )
        options = LanguageModelOptions(
            model=self.settings.language_model.context_eval_model,
            system_prompt=build_context_eval_prompt(min_depth, max_depth),
            include_system_prompt=False,
        )
        api = self.settings.language_model.category

        async def work(call_token: CancellationToken) -> CallResult:
            return await self.dispatcher.execute_request(
                api,
                requester,
                prompt,
                call_token,
                options=options,
                keyword=capability.keyword,
            )

        logger.info(
            "context_eval_started",
            keyword=capability.keyword,
            candidates=len(candidates),
            min_depth=min_depth,
            max_depth=max_depth,
        )
        result = await self.slot.execute(
            api,
            requester,
            f"{capability.keyword}:context",
            self.settings.language_model.timeout_seconds,
            work,
            token,
        )
        if not result.success or not result.text:
            logger.warning("context_eval_failed", keyword=capability.keyword, error=result.error)
            record_context_eval(outcome="failed")
            return messages

        match = _LEADING_INT_RE.match(result.text)
        if match is None:
            logger.warning("context_eval_non_numeric", keyword=capability.keyword, reply=result.text[:80])
            record_context_eval(outcome="non_numeric")
            return messages

        include = max(min_depth, min(int(match.group(1)), max_depth, len(candidates)))
        logger.info("context_eval_completed", keyword=capability.keyword, kept=include, total=len(candidates))
        record_context_eval(outcome="filtered")
        return [*system_messages, *candidates[-include:]]
