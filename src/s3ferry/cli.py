# src/s3ferry/cli.py
"""Command-line interface for the s3ferry tool."""

import asyncio
import logging
import sys
from typing import Any, Optional, Tuple

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from s3ferry.config import (
    DESTINATION_ENV_PREFIX,
    SOURCE_ENV_PREFIX,
    AppConfig,
    Config,
    S3Config,
)
from s3ferry.exceptions import ListError, S3FerryError
from s3ferry.paths import ObjectLocator, parse_locator
from s3ferry.results import RunSummary
from s3ferry.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)

EXIT_OK: int = 0
EXIT_FATAL: int = 1
EXIT_PARTIAL: int = 3
EXIT_INTERRUPTED: int = 130

# Logs, progress and failure reports all go to stderr.
console: Console = Console(stderr=True)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


async def main_async(
    config: Config, source: ObjectLocator, destination: ObjectLocator
) -> Tuple[RunSummary, bool]:
    """
    Asynchronously execute the copy pipeline.

    Args:
        config (Config): The application configuration.
        source (ObjectLocator): The bucket and prefix to copy from.
        destination (ObjectLocator): The bucket and prefix to copy to.

    Returns:
        Tuple[RunSummary, bool]: The run summary, and whether the run was
            interrupted before every listed object was dispatched.
    """
    # Lazily import to keep CLI startup fast
    from s3ferry.pipeline import CopyPipeline

    async with GracefulShutdown() as shutdown_event:
        pipeline: CopyPipeline = CopyPipeline(
            config, source, destination, shutdown_event, console=console
        )
        summary: RunSummary = await pipeline.run()
        return summary, pipeline.interrupted


def report_failures(summary: RunSummary) -> None:
    """Logs every failed transfer of a run."""
    logger.error(
        f"{summary.total_failed} of {summary.total_attempted} objects failed to copy:"
    )
    for failure in summary.failures:
        logger.error(
            f"  {failure.source_key} -> {failure.destination_key} "
            f"[{failure.stage.value}]: {failure.cause}"
        )


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(log_level: str) -> None:
    """
    Copy objects between S3 buckets, possibly across accounts.

    Source credentials are read from AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY,
    AWS_SESSION_TOKEN, AWS_REGION and AWS_ENDPOINT_URL. Destination credentials
    are read from the same variables prefixed with DST_ (DST_AWS_ACCESS_KEY_ID,
    ...). Variables may also be placed in a .env file.
    """
    load_dotenv()
    setup_logging(log_level)


@cli.command("cp")
@click.argument("source")
@click.argument("destination")
@click.option(
    "--max-concurrency",
    type=click.IntRange(min=1),
    default=64,
    help="Maximum number of concurrent transfers.",
    show_default=True,
)
@click.option(
    "--page-size",
    type=click.IntRange(min=1, max=1000),
    default=None,
    help="Number of keys requested per list call (service default if unset).",
)
@click.option(
    "--source-region",
    default=None,
    help="Region of the source bucket. Overrides AWS_REGION.",
)
@click.option(
    "--destination-region",
    default=None,
    help="Region of the destination bucket. Overrides DST_AWS_REGION.",
)
@click.option(
    "--no-progress",
    is_flag=True,
    default=False,
    help="Do not display the progress bar.",
)
def cp(**kwargs: Any) -> None:
    """
    Copy every object under SOURCE to DESTINATION.

    Both paths have the form s3://bucket[/prefix]. Each object is written
    under the destination prefix at its key relative to the source prefix,
    keeping its content type, encoding, disposition, language and user
    metadata.

    Exits with 0 when every listed object was copied, 3 when some objects
    failed, and 1 when the run could not start or listing failed.
    """
    summary: Optional[RunSummary] = None
    interrupted: bool = False
    try:
        source: ObjectLocator = parse_locator(kwargs["source"])
        destination: ObjectLocator = parse_locator(kwargs["destination"])
        config: Config = Config(
            source=S3Config.from_env(SOURCE_ENV_PREFIX, kwargs["source_region"]),
            destination=S3Config.from_env(
                DESTINATION_ENV_PREFIX, kwargs["destination_region"]
            ),
            app=AppConfig(
                max_concurrency=kwargs["max_concurrency"],
                page_size=kwargs["page_size"],
                show_progress=not kwargs["no_progress"],
            ),
        )
        summary, interrupted = asyncio.run(main_async(config, source, destination))
    except ListError as e:
        logger.critical(f"Listing the source failed; copy aborted: {e}")
        if e.summary is not None:
            logger.critical(
                f"{e.summary.total_succeeded} objects were copied before the failure."
            )
            if e.summary.failures:
                report_failures(e.summary)
        sys.exit(EXIT_FATAL)
    except S3FerryError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(EXIT_FATAL)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(EXIT_FATAL)

    if summary.failures:
        report_failures(summary)
        sys.exit(EXIT_PARTIAL)
    if interrupted:
        logger.warning("Copy interrupted before every object was dispatched.")
        sys.exit(EXIT_INTERRUPTED)
    logger.info("✅ Copy completed successfully.")


if __name__ == "__main__":
    cli()
