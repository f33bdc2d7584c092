from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get("EMMC_INSTALLER_LOG_DIR", "/var/log/emmc-installer")
)


def _should_log_command_output(record) -> bool:
    """Keep raw stdout/stderr dumps of external tools out of the console."""
    tags = record["extra"].get("tags", [])
    if "command-output" in tags:
        return record["level"].no <= logger.level("DEBUG").no or (
            record["level"].no >= logger.level("WARNING").no
        )
    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console and file logging for an install run.

    Logging Tiers:
    - CRITICAL/ERROR: Aborted install, device left partially provisioned
    - SUCCESS/INFO: Stage progress (partitioning, copying, formatting)
    - DEBUG: Every external command with its output
    - TRACE: Ultra-verbose

    Log Files:
    - install.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug or --trace is enabled

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to /var/log/emmc-installer)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "INSTALL"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - operator facing, colored
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_command_output,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "<blue>{extra[job_id]: <20}</blue> | "
            "<level>{message}</level>"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        logger.warning("File logging disabled, cannot create {}: {}", log_dir, error)
        return logger

    # SINK 2: Install log - stage progress (INFO+)
    logger.add(
        log_dir / "install.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[job_id]: <20} | "
            "{message}"
        ),
    )

    # SINK 3: Debug log - every command (DEBUG+ when debug or trace)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <20} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking a stage
        tags: Tags for filtering (e.g., ["partition", "storage"])
        source: Source component (e.g., "boot", "rootfs")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking a pipeline stage with automatic timing.

    Logs stage start, completion and failure with duration. Failures are
    re-raised unchanged.

    Example:
        with operation_context("partition", device="/dev/mmcblk2") as log:
            log.debug("Deleting old partitions")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])

        log.info(f"{operation.capitalize()} started")

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed in {duration:.1f}s",
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed after {duration:.1f}s: {e}",
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_install() -> Logger:
        """Logger for the top-level install driver."""
        return logger.bind(source="install", tags=["install"])

    @staticmethod
    def for_partition() -> Logger:
        """Logger for partition table and bootloader operations."""
        return logger.bind(source="partition", tags=["partition", "storage"])

    @staticmethod
    def for_boot() -> Logger:
        """Logger for boot partition population."""
        return logger.bind(source="boot", tags=["boot", "storage"])

    @staticmethod
    def for_rootfs() -> Logger:
        """Logger for root partition population."""
        return logger.bind(source="rootfs", tags=["rootfs", "storage"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system probing and command execution."""
        return logger.bind(source="system", tags=["system"])

    @staticmethod
    def for_command_output() -> Logger:
        """Logger for raw stdout/stderr of external tools."""
        return logger.bind(source="system", tags=["system", "command-output"])
