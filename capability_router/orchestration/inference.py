from __future__ import annotations

import re

from ..core.config import Settings
from ..core.logging import get_logger, truncate_for_log
from ..execution.cancellation import CancellationToken
from ..execution.slot import ExecutionSlot
from ..schemas.capabilities import CapabilityConfig
from ..schemas.results import CallResult
from ..services.dispatcher import CapabilityDispatcher, LanguageModelOptions
from .prompts import (
    build_inference_system_prompt,
    build_inference_user_prompt,
    normalize_one_line,
    strip_wrapping_quotes,
)

logger = get_logger(name=__name__)

_SEPARATOR_RE = re.compile(r"^[:|;,=\-–—>]+\s*")
_NONE_RE = re.compile(r"^none$", re.IGNORECASE)


def extract_inference_line(raw: str, capability: CapabilityConfig) -> str:
    """Pick the parameter value out of a model reply.

    A line invoking the keyword (``weather: Dallas``) wins; a bare ``NONE`` line
    means nothing could be inferred; otherwise the first line is used.
    """
    lines = [line.strip() for line in raw.splitlines()]
    lines = [line for line in lines if line and not line.startswith("```")]
    if not lines:
        return ""

    invocation_re = re.compile(rf"^!?{re.escape(capability.bare_keyword)}\b(.+)$", re.IGNORECASE)
    for line in lines:
        stripped = strip_wrapping_quotes(line)
        if _NONE_RE.match(stripped):
            return "NONE"
        invocation = invocation_re.match(stripped)
        if invocation is None:
            continue
        remainder = _SEPARATOR_RE.sub("", invocation.group(1).strip()).strip()
        if remainder:
            return remainder

    return strip_wrapping_quotes(normalize_one_line(raw))


class ParameterInference:
    """Asks the language model to extract a capability's input from free-form user text."""

    def __init__(self, dispatcher: CapabilityDispatcher, slot: ExecutionSlot, settings: Settings) -> None:
        self.dispatcher = dispatcher
        self.slot = slot
        self.settings = settings

    async def infer(
        self,
        capability: CapabilityConfig,
        text: str,
        requester: str,
        token: CancellationToken | None = None,
    ) -> str | None:
        retry = capability.retry
        options = LanguageModelOptions(
            model=(retry.model if retry is not None else None) or self.settings.retry.model,
            system_prompt=build_inference_system_prompt(capability),
            include_system_prompt=False,
        )
        prompt = build_inference_user_prompt(capability, text)
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

        result = await self.slot.execute(
            api,
            requester,
            f"{capability.keyword}:infer-params",
            self.settings.language_model.timeout_seconds,
            work,
            token,
        )
        if not result.success or not result.text:
            logger.warning("infer_params_failed", keyword=capability.keyword, error=result.error or "no response")
            return None

        inferred = extract_inference_line(result.text.strip(), capability)
        if not inferred or inferred.lower() == "none":
            logger.info("infer_params_none", keyword=capability.keyword)
            return None

        logger.info("infer_params_completed", keyword=capability.keyword, inferred=truncate_for_log(inferred, 200))
        return inferred
