# src/s3ferry/signals.py
"""
Interrupt handling for a running copy.

SIGINT and SIGTERM are translated into an `asyncio.Event` that the
scheduler checks before each dispatch: on the first signal no new
transfers are started and the ones in flight are allowed to finish.
A second signal exits the process at once, leaving in-flight transfers
unfinished.
"""

import asyncio
import logging
import os
import signal
from types import FrameType
from typing import Any, Callable, Dict, Optional, Tuple

logger: logging.Logger = logging.getLogger(__name__)

_SignalHandler = Callable[[int, Optional[FrameType]], Any]

HANDLED_SIGNALS: Tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)
FORCED_EXIT_CODE: int = 130


class GracefulShutdown:
    """
    An async context manager yielding the event set on the first interrupt.

    The previous handlers are restored on exit.
    """

    def __init__(self) -> None:
        self._event: asyncio.Event = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous: Dict[signal.Signals, _SignalHandler] = {}

    def _on_signal(self, signum: int, _: Optional[FrameType]) -> None:
        if self._event.is_set():
            logger.critical("Second interrupt received. Abandoning in-flight transfers.")
            os._exit(FORCED_EXIT_CODE)
        logger.warning(
            f"Received {signal.strsignal(signum)}. No new transfers will be started; "
            "waiting for in-flight transfers. Interrupt again to exit immediately."
        )
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._event.set)
        else:
            self._event.set()

    async def __aenter__(self) -> asyncio.Event:
        """
        Installs the handlers.

        Returns:
            asyncio.Event: Set once a handled signal has been received.
        """
        self._loop = asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                self._previous[sig] = signal.signal(sig, self._on_signal)
            except (ValueError, OSError) as e:
                # Only the main thread may install handlers.
                logger.warning(f"Could not set handler for {sig.name}: {e}")
        return self._event

    async def __aexit__(self, *args: Any) -> None:
        """Restores the handlers that were installed before entry."""
        while self._previous:
            sig, handler = self._previous.popitem()
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError) as e:
                logger.warning(f"Could not restore handler for {sig.name}: {e}")
