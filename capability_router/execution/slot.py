from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Mapping

from ..core.config import Settings
from ..core.logging import get_logger
from ..core.metrics import observe_slot_call
from ..schemas.results import CallResult
from .cancellation import CancellationToken
from .exceptions import CollaboratorContractError, RequestCancelledError

__all__ = ["ExecutionSlot", "Work"]

logger = get_logger(name=__name__)

Work = Callable[[CancellationToken], Awaitable[CallResult]]

_MIN_TIMEOUT_SECONDS = 0.01


class ExecutionSlot:
    """
    Bounded wrapper every external call is submitted through.

    Each call runs ``work`` with its own cancellation token linked to the
    caller's, races it against ``timeout_seconds`` and normalizes the outcome
    into a ``CallResult``. Timeouts and ordinary errors come back as failures;
    caller cancellation is raised as ``RequestCancelledError`` so it is never
    mistaken for something worth retrying.

    No state is shared between calls unless ``max_concurrent_per_api`` is set,
    in which case calls for a capped category wait for a free seat. The wait
    counts against the call's timeout and is interrupted by cancellation.
    """

    def __init__(
        self,
        *,
        verbose: bool = False,
        max_concurrent_per_api: Mapping[str, int] | None = None,
    ) -> None:
        self.verbose = verbose
        self._limits: dict[str, asyncio.Semaphore] = {
            api: asyncio.Semaphore(limit)
            for api, limit in (max_concurrent_per_api or {}).items()
            if limit > 0
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutionSlot":
        return cls(
            verbose=settings.observability.slot_verbose,
            max_concurrent_per_api=settings.execution.max_concurrent_per_api,
        )

    async def execute(
        self,
        api: str,
        requester: str,
        label: str,
        timeout_seconds: float,
        work: Work,
        token: CancellationToken | None = None,
    ) -> CallResult:
        log = logger.bind(api=api, requester=requester, label=label)

        if token is not None and token.cancelled:
            log.info("slot_call_skipped", reason=token.reason)
            observe_slot_call(api=api, outcome="cancelled", latency=0.0)
            return CallResult.failure(f"Request cancelled before {label} started", cancelled=True)

        budget = max(_MIN_TIMEOUT_SECONDS, float(timeout_seconds))
        call_token = token.child() if token is not None else CancellationToken()
        start = time.perf_counter()
        self._emit(log, "slot_call_started", timeout_seconds=budget)

        try:
            result = await asyncio.wait_for(self._run(api, work, call_token), timeout=budget)
        except asyncio.TimeoutError:
            call_token.cancel("timeout")
            latency = time.perf_counter() - start
            log.warning("slot_call_timeout", timeout_seconds=budget, duration_ms=round(latency * 1000, 2))
            observe_slot_call(api=api, outcome="timeout", latency=latency)
            return CallResult.failure(f"Request timed out after {budget:g}s")
        except RequestCancelledError:
            self._record_cancelled(log, api, start, token)
            raise
        except asyncio.CancelledError:
            if token is None or not token.cancelled:
                raise
            self._record_cancelled(log, api, start, token)
            raise RequestCancelledError(f"Request cancelled during {label}", reason=token.reason) from None
        except Exception as exc:
            latency = time.perf_counter() - start
            log.exception("slot_call_failed", error=str(exc), duration_ms=round(latency * 1000, 2))
            observe_slot_call(api=api, outcome="error", latency=latency)
            return CallResult.failure(str(exc) or exc.__class__.__name__)
        finally:
            call_token.close()

        latency = time.perf_counter() - start
        if not isinstance(result, CallResult):
            observe_slot_call(api=api, outcome="contract_violation", latency=latency)
            raise CollaboratorContractError(
                f"Work for '{label}' returned {type(result).__name__}, expected CallResult"
            )

        outcome = "success" if result.success else "failure"
        observe_slot_call(api=api, outcome=outcome, latency=latency)
        self._emit(
            log,
            "slot_call_completed",
            success=result.success,
            error=result.error,
            duration_ms=round(latency * 1000, 2),
        )
        return result

    async def _run(self, api: str, work: Work, call_token: CancellationToken) -> Any:
        # Seat acquisition runs inside the task so cancellation also stops a queued call.
        task = asyncio.ensure_future(self._run_work(self._limits.get(api), work, call_token))
        remove = call_token.add_callback(lambda _reason: task.cancel())
        try:
            return await task
        finally:
            remove()

    @staticmethod
    async def _run_work(
        semaphore: asyncio.Semaphore | None,
        work: Work,
        call_token: CancellationToken,
    ) -> Any:
        if semaphore is None:
            return await _call_work(work, call_token)
        async with semaphore:
            return await _call_work(work, call_token)

    def _emit(self, log: Any, event: str, **fields: Any) -> None:
        if self.verbose:
            log.info(event, **fields)
        else:
            log.debug(event, **fields)

    @staticmethod
    def _record_cancelled(log: Any, api: str, start: float, token: CancellationToken | None) -> None:
        latency = time.perf_counter() - start
        log.info(
            "slot_call_cancelled",
            reason=token.reason if token is not None else None,
            duration_ms=round(latency * 1000, 2),
        )
        observe_slot_call(api=api, outcome="cancelled", latency=latency)


class _WorkTimeoutError(Exception):
    """A timeout raised by the work itself, kept apart from the slot's own budget expiry."""


async def _call_work(work: Work, call_token: CancellationToken) -> Any:
    call_token.raise_if_cancelled()
    try:
        return await work(call_token)
    except (asyncio.TimeoutError, TimeoutError) as exc:
        raise _WorkTimeoutError(str(exc) or "Upstream call timed out") from exc
