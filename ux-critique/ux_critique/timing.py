"""
Timing Utilities

Stage timers, the overall wall-clock budget, and a timeout helper
that also observes caller cancellation while a call is in flight.

Usage:
    deadline = Deadline(120)
    with Timer("model_dispatch") as t:
        result = await run_with_timeout(
            provider.analyze(images, prompt),
            timeout=deadline.stage_timeout(0.6),
            cancel_event=cancel_event,
        )
    print(t.elapsed_s)
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from .errors import AnalysisCancelled, PipelineTimeoutError
from .log import get_logger

logger = get_logger("ux_critique.timing")


class Timer:
    """Context-manager timer, sync and async."""

    def __init__(self, label: str = ""):
        self.label = label
        self._start = 0.0
        self.elapsed_s = 0.0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_s * 1000

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: Any) -> None:
        self.elapsed_s = time.perf_counter() - self._start
        if self.label:
            logger.debug("%s completed in %.1fms", self.label, self.elapsed_ms)

    async def __aenter__(self) -> "Timer":
        return self.__enter__()

    async def __aexit__(self, *exc: Any) -> None:
        self.__exit__(*exc)


class Deadline:
    """
    Overall wall-clock budget for one pipeline run.

    Each stage asks for a sub-budget proportional to the total, never
    more than what is left, so a slow stage cannot starve the rest.
    """

    def __init__(self, total_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.total_seconds = total_seconds
        self._clock = clock
        self._start = clock()

    def elapsed(self) -> float:
        return self._clock() - self._start

    def remaining(self) -> float:
        return max(0.0, self.total_seconds - self.elapsed())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def stage_timeout(self, fraction: float) -> float:
        """
        Sub-budget for a stage.

        Raises:
            PipelineTimeoutError: If the overall budget is already spent
        """
        remaining = self.remaining()
        if remaining <= 0:
            raise PipelineTimeoutError(
                f"Pipeline budget of {self.total_seconds:.0f}s exhausted"
            )
        return min(remaining, self.total_seconds * fraction)


def check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    """Raise AnalysisCancelled if the caller has requested cancellation."""
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled("Analysis cancelled by caller")


async def run_with_timeout(
    awaitable: Awaitable,
    timeout: Optional[float],
    cancel_event: Optional[asyncio.Event] = None,
) -> Any:
    """
    Await a call with a timeout, aborting early on cancellation.

    Raises:
        asyncio.TimeoutError: If the call did not finish in time
        AnalysisCancelled: If cancel_event was set while waiting
    """
    task = asyncio.ensure_future(awaitable)
    if cancel_event is not None and cancel_event.is_set():
        task.cancel()
        raise AnalysisCancelled("Analysis cancelled by caller")

    waiters = {task}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    check_cancelled(cancel_event)
    raise asyncio.TimeoutError(f"Timed out after {timeout:.1f}s")
