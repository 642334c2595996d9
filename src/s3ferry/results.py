# src/s3ferry/results.py
"""
Aggregation of per-object transfer outcomes into a run summary.

Outcomes arrive from many concurrent transfer tasks; the `ResultSink`
serializes them into a single `RunSummary` behind an `asyncio.Lock`.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List

from s3ferry.exceptions import S3FerryError
from s3ferry.transfer import TransferFailure, TransferOutcome, TransferSuccess

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """
    Totals for one copy run.

    Attributes:
        total_attempted (int): Objects for which a transfer was run.
        total_succeeded (int): Objects copied successfully.
        failures (List[TransferFailure]): Failed transfers, in completion order.
        skipped (List[str]): Source keys that were listed but not copied.
        bytes_transferred (int): Sum of the sizes of the copied objects.
    """

    total_attempted: int = 0
    total_succeeded: int = 0
    failures: List[TransferFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    bytes_transferred: int = 0

    @property
    def total_failed(self) -> int:
        """The number of failed transfers."""
        return len(self.failures)

    @property
    def ok(self) -> bool:
        """True if every attempted transfer succeeded."""
        return not self.failures


class ResultSink:
    """Records transfer outcomes and produces the final `RunSummary`."""

    def __init__(self) -> None:
        self._summary: RunSummary = RunSummary()
        self._lock: asyncio.Lock = asyncio.Lock()
        self._finalized: bool = False

    async def record(self, outcome: TransferOutcome) -> None:
        """
        Adds one outcome to the summary and logs it.

        Args:
            outcome (TransferOutcome): The result of one transfer.

        Raises:
            S3FerryError: If the sink has already been finalized.
        """
        async with self._lock:
            self._ensure_open()
            self._summary.total_attempted += 1
            if isinstance(outcome, TransferSuccess):
                self._summary.total_succeeded += 1
                self._summary.bytes_transferred += outcome.bytes_transferred
                logger.info(
                    f"Copied '{outcome.relative_key}' "
                    f"({outcome.bytes_transferred} bytes)"
                )
            else:
                self._summary.failures.append(outcome)
                logger.error(
                    f"Failed to copy '{outcome.source_key}' "
                    f"[{outcome.stage.value}]: {outcome.cause}"
                )

    async def skip(self, key: str, reason: str) -> None:
        """
        Records a listed object that is deliberately not copied.

        Args:
            key (str): The source key.
            reason (str): Why the object was skipped.
        """
        async with self._lock:
            self._ensure_open()
            self._summary.skipped.append(key)
            logger.info(f"Skipping '{key}': {reason}")

    def finalize(self) -> RunSummary:
        """
        Closes the sink and returns the summary.

        Must only be called once every transfer has reported its outcome.

        Returns:
            RunSummary: The final totals.
        """
        self._ensure_open()
        self._finalized = True
        return self._summary

    def _ensure_open(self) -> None:
        if self._finalized:
            raise S3FerryError("The result sink has already been finalized.")
