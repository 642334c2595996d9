# src/s3ferry/pipeline.py
"""Core orchestration logic for a prefix copy between two buckets."""

import asyncio
import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, AsyncGenerator, Optional

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from rich.console import Console
from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from s3ferry.config import Config
from s3ferry.keys import KeyMapping, map_key
from s3ferry.lister import ObjectDescriptor, list_objects
from s3ferry.paths import ObjectLocator
from s3ferry.results import ResultSink, RunSummary
from s3ferry.scheduler import TransferScheduler
from s3ferry.transfer import TransferFailure, TransferOutcome, TransferTask

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)


def is_directory_marker(descriptor: ObjectDescriptor, mapping: KeyMapping) -> bool:
    """
    Tells whether a listed object is an empty "directory" placeholder.

    Args:
        descriptor (ObjectDescriptor): The listed object.
        mapping (KeyMapping): Its mapped keys.

    Returns:
        bool: True for the prefix object itself, or a zero-byte key ending in "/".
    """
    if mapping.is_directory_marker:
        return True
    return descriptor.key.endswith("/") and descriptor.size == 0


class CopyPipeline:
    """Copies every object under a source prefix to a destination prefix."""

    def __init__(
        self,
        config: Config,
        source: ObjectLocator,
        destination: ObjectLocator,
        shutdown_event: Optional[asyncio.Event] = None,
        console: Optional[Console] = None,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (Config): The application configuration.
            source (ObjectLocator): The bucket and prefix to copy from.
            destination (ObjectLocator): The bucket and prefix to copy to.
            shutdown_event (asyncio.Event, optional): Event to signal graceful shutdown.
            console (Console, optional): Console for the progress display.
        """
        self._config: Config = config
        self._source: ObjectLocator = source
        self._destination: ObjectLocator = destination
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self._console: Optional[Console] = console
        self._session: AioSession = get_session()
        self._interrupted: bool = False

    @property
    def interrupted(self) -> bool:
        """Whether the last run stopped dispatching early on a shutdown request."""
        return self._interrupted

    def _boto_config(self) -> BotoConfig:
        # Retries are disabled: a failed call is reported, never repeated.
        return BotoConfig(
            signature_version="s3v4",
            max_pool_connections=self._config.app.max_concurrency + 10,
            connect_timeout=self._config.app.connect_timeout_s,
            read_timeout=self._config.app.read_timeout_s,
            retries={"total_max_attempts": 1, "mode": "standard"},
            s3={"payload_signing_enabled": False},
        )

    async def run(self) -> RunSummary:
        """
        Lists the source prefix and copies every object found.

        Returns:
            RunSummary: Totals and failures of the run.

        Raises:
            ListError: If listing the source failed. Transfers already in
                flight are completed first.
        """
        logger.info(
            f"Copying '{self._source}' -> '{self._destination}' "
            f"with up to {self._config.app.max_concurrency} concurrent transfers."
        )
        boto_config: BotoConfig = self._boto_config()
        async with (
            self._session.create_client(
                "s3", **self._config.source.as_client_kwargs(), config=boto_config
            ) as source_client,
            self._session.create_client(
                "s3", **self._config.destination.as_client_kwargs(), config=boto_config
            ) as dest_client,
        ):
            summary: RunSummary = await self.copy(source_client, dest_client)

        logger.info(
            f"Copied {summary.total_succeeded} of {summary.total_attempted} objects "
            f"({summary.bytes_transferred} bytes); {summary.total_failed} failed, "
            f"{len(summary.skipped)} skipped."
        )
        return summary

    async def copy(
        self, source_client: "S3Client", dest_client: "S3Client"
    ) -> RunSummary:
        """
        Runs the copy with already constructed clients.

        Args:
            source_client (S3Client): Client bound to the source credentials.
            dest_client (S3Client): Client bound to the destination credentials.

        Returns:
            RunSummary: Totals and failures of the run.
        """
        task: TransferTask = TransferTask(
            source_client,
            dest_client,
            self._source.bucket,
            self._destination.bucket,
            multipart_threshold=self._config.app.multipart_threshold,
            part_size=self._config.app.part_size,
        )
        sink: ResultSink = ResultSink()

        progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("{task.completed:.0f} objects"),
            TextColumn("([bold red]{task.fields[failed]} failed)"),
            TimeElapsedColumn(),
            console=self._console,
            transient=True,
            disable=not self._config.app.show_progress,
        )

        with progress:
            task_id: TaskID = progress.add_task("Copying...", total=None, failed=0)
            failed: int = 0

            def on_outcome(outcome: TransferOutcome) -> None:
                nonlocal failed
                if isinstance(outcome, TransferFailure):
                    failed += 1
                progress.update(task_id, advance=1, failed=failed)

            async def transfer(descriptor: ObjectDescriptor) -> TransferOutcome:
                return await task.execute(descriptor.key, self._map(descriptor.key))

            scheduler: TransferScheduler = TransferScheduler(
                sink,
                self._config.app.max_concurrency,
                shutdown_event=self._shutdown_event,
                on_outcome=on_outcome,
            )
            descriptors: AsyncGenerator[ObjectDescriptor, None] = list_objects(
                source_client,
                self._source.bucket,
                self._source.prefix,
                page_size=self._config.app.page_size,
            )
            try:
                return await scheduler.run(
                    self._without_markers(descriptors, sink), transfer
                )
            finally:
                self._interrupted = scheduler.interrupted

    def _map(self, source_key: str) -> KeyMapping:
        return map_key(self._source.prefix, self._destination.prefix, source_key)

    async def _without_markers(
        self,
        descriptors: AsyncGenerator[ObjectDescriptor, None],
        sink: ResultSink,
    ) -> AsyncGenerator[ObjectDescriptor, None]:
        """Passes descriptors through, recording directory markers as skipped."""
        async with aclosing(descriptors):
            async for descriptor in descriptors:
                if is_directory_marker(descriptor, self._map(descriptor.key)):
                    await sink.skip(descriptor.key, "directory marker")
                    continue
                yield descriptor
