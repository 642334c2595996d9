# src/s3ferry/scheduler.py
"""
Bounded-concurrency dispatch of object transfers.

The scheduler pulls descriptors from the lister one at a time, acquires a
slot from a fixed-size semaphore for each, and spawns the transfer as an
asyncio task without waiting for it. Listing therefore only advances once
the current page has been dispatched, while transfers run concurrently up
to the limit. When the sequence ends (or listing fails, or a shutdown is
requested) no further tasks are spawned, the descriptor generator is
closed, and every in-flight transfer is awaited before the summary is
produced. A transfer that raises instead of returning an outcome is still
recorded, as a failure of its object.
"""

import asyncio
import logging
from contextlib import aclosing
from enum import Enum
from typing import AsyncGenerator, Awaitable, Callable, List, Optional, Set

from s3ferry.exceptions import ConfigError, ListError, TransferError
from s3ferry.lister import ObjectDescriptor
from s3ferry.results import ResultSink, RunSummary
from s3ferry.transfer import TransferFailure, TransferOutcome, TransferStage

logger: logging.Logger = logging.getLogger(__name__)

TransferFn = Callable[[ObjectDescriptor], Awaitable[TransferOutcome]]
OutcomeCallback = Callable[[TransferOutcome], None]


class SchedulerState(Enum):
    """Lifecycle of a scheduler run."""

    IDLE = "idle"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    DONE = "done"


class TransferScheduler:
    """
    Runs one transfer per listed object with at most `concurrency_limit`
    transfers in flight.

    Slots are handed out by an `asyncio.Semaphore`, whose waiters are served
    in arrival order. Completion order is not guaranteed.
    """

    def __init__(
        self,
        sink: ResultSink,
        concurrency_limit: int,
        shutdown_event: Optional[asyncio.Event] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> None:
        """
        Args:
            sink (ResultSink): Receives every transfer outcome.
            concurrency_limit (int): Maximum number of simultaneous transfers.
            shutdown_event (asyncio.Event, optional): When set, dispatching stops
                and in-flight transfers are drained.
            on_outcome (Callable, optional): Called with each outcome once it
                has been recorded.
        """
        if concurrency_limit < 1:
            raise ConfigError(
                f"concurrency_limit must be at least 1, got {concurrency_limit}."
            )
        self._sink: ResultSink = sink
        self._limit: int = concurrency_limit
        self._shutdown_event: Optional[asyncio.Event] = shutdown_event
        self._on_outcome: Optional[OutcomeCallback] = on_outcome
        self._state: SchedulerState = SchedulerState.IDLE
        self._in_flight: int = 0
        self._peak_in_flight: int = 0
        self._dispatched: int = 0
        self._interrupted: bool = False

    @property
    def state(self) -> SchedulerState:
        """The current lifecycle state."""
        return self._state

    @property
    def in_flight(self) -> int:
        """The number of transfers currently running."""
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        """The highest number of transfers that ran at the same time."""
        return self._peak_in_flight

    @property
    def dispatched(self) -> int:
        """The number of transfers spawned so far."""
        return self._dispatched

    @property
    def interrupted(self) -> bool:
        """Whether a shutdown request stopped dispatch before the listing ended."""
        return self._interrupted

    async def run(
        self,
        descriptors: AsyncGenerator[ObjectDescriptor, None],
        transfer: TransferFn,
    ) -> RunSummary:
        """
        Dispatches a transfer for every descriptor and waits for all of them.

        Args:
            descriptors (AsyncGenerator[ObjectDescriptor, None]): The listed
                objects. The generator is closed when dispatching stops.
            transfer (TransferFn): Copies one object and returns its outcome.
                A transfer that raises is recorded as a failure of its object.

        Returns:
            RunSummary: The finalized summary of the run.

        Raises:
            ListError: If listing failed. Transfers dispatched before the
                failure are drained first and their summary is attached to
                the error as `summary`.
        """
        if self._state is not SchedulerState.IDLE:
            raise RuntimeError("A TransferScheduler can only be run once.")

        semaphore: asyncio.Semaphore = asyncio.Semaphore(self._limit)
        tasks: Set["asyncio.Task[None]"] = set()
        fatal_error: Optional[Exception] = None

        self._state = SchedulerState.DISPATCHING
        try:
            async with aclosing(descriptors):
                async for descriptor in descriptors:
                    if self._shutdown_requested():
                        break
                    await semaphore.acquire()
                    if self._shutdown_requested():
                        semaphore.release()
                        break
                    task: "asyncio.Task[None]" = asyncio.create_task(
                        self._run_one(descriptor, transfer, semaphore)
                    )
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)
                    self._dispatched += 1
        except Exception as e:
            fatal_error = e
            logger.warning(
                f"Stopped dispatching after {self._dispatched} objects: {e}"
            )

        self._state = SchedulerState.DRAINING
        if tasks:
            logger.debug(f"Waiting for {len(tasks)} in-flight transfers to finish.")
            results: List[Optional[BaseException]] = await asyncio.gather(
                *tasks, return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(
                        "Recording a transfer outcome failed.",
                        exc_info=(type(result), result, result.__traceback__),
                    )

        summary: RunSummary = self._sink.finalize()
        self._state = SchedulerState.DONE

        if fatal_error is not None:
            if isinstance(fatal_error, ListError):
                fatal_error.summary = summary
            raise fatal_error
        return summary

    async def _run_one(
        self,
        descriptor: ObjectDescriptor,
        transfer: TransferFn,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Runs one transfer in an acquired slot and records its outcome."""
        self._in_flight += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        try:
            outcome: TransferOutcome = await transfer(descriptor)
        except Exception as e:
            outcome = _unexpected_failure(descriptor, e)
        finally:
            self._in_flight -= 1
            semaphore.release()

        await self._sink.record(outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome)

    def _shutdown_requested(self) -> bool:
        if self._shutdown_event is not None and self._shutdown_event.is_set():
            logger.warning(
                f"Shutdown requested. Stopping dispatch after {self._dispatched} objects."
            )
            self._interrupted = True
            return True
        return False


def _unexpected_failure(descriptor: ObjectDescriptor, error: Exception) -> TransferFailure:
    """Turns an exception raised by a transfer into a failure of its object."""
    cause: TransferError = TransferError(
        f"Transfer of '{descriptor.key}' raised {type(error).__name__}: {error}"
    )
    cause.__cause__ = error
    return TransferFailure(
        relative_key=descriptor.key,
        stage=TransferStage.GET,
        cause=cause,
        source_key=descriptor.key,
    )
