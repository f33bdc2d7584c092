"""Command execution helpers for external storage tools."""

from __future__ import annotations

import contextlib
import shutil
import subprocess
import tempfile
from typing import Iterable, Optional, Sequence

from emmc_installer.logging import LoggerFactory
from emmc_installer.storage.exceptions import CommandError, MissingDependencyError


log = LoggerFactory.for_system()
output_log = LoggerFactory.for_command_output()


def run_command(command, check=True, log_output=True, log_command=True):
    if log_command:
        log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(command, check=check, text=True, capture_output=True)
    except subprocess.CalledProcessError as error:
        log.debug(f"Command failed: {' '.join(command)}")
        if error.stdout:
            output_log.debug(f"stdout: {error.stdout.strip()}")
        if error.stderr:
            output_log.debug(f"stderr: {error.stderr.strip()}")
        raise
    if result.stdout and (log_output or result.returncode != 0):
        output_log.debug(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        output_log.debug(f"stderr: {result.stderr.strip()}")
    if log_command:
        log.debug(f"Command completed with return code {result.returncode}")
    return result


def run_checked_command(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise CommandError if it fails."""
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            list(command),
            input=input_text,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as error:
        raise CommandError(command, None, str(error)) from error
    if result.returncode != 0:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        raise CommandError(command, result.returncode, stderr or stdout)
    if result.stdout:
        output_log.debug(f"stdout: {result.stdout.strip()}")
    return result.stdout


def run_pipeline(producer: Sequence[str], consumer: Sequence[str]) -> None:
    """Run ``producer | consumer`` and raise CommandError if either side fails."""
    log.debug(f"Running pipeline: {' '.join(producer)} | {' '.join(consumer)}")
    # Producer stderr is never a pipe; nothing reads it until the consumer exits
    with tempfile.TemporaryFile() as source_errors:
        try:
            source = subprocess.Popen(
                list(producer), stdout=subprocess.PIPE, stderr=source_errors
            )
        except FileNotFoundError as error:
            raise CommandError(producer, None, str(error)) from error
        try:
            sink = subprocess.Popen(
                list(consumer),
                stdin=source.stdout,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as error:
            source.kill()
            source.wait()
            raise CommandError(consumer, None, str(error)) from error

        # Let the producer receive SIGPIPE if the consumer exits early
        if source.stdout is not None:
            source.stdout.close()
        _, sink_stderr = sink.communicate()
        source.wait()
        source_errors.seek(0)
        source_stderr = source_errors.read()

    if source.returncode != 0:
        raise CommandError(
            producer, source.returncode, source_stderr.decode(errors="replace")
        )
    if sink.returncode != 0:
        raise CommandError(
            consumer, sink.returncode, sink_stderr.decode(errors="replace")
        )


def best_effort(command: Sequence[str]) -> None:
    """Run a kernel notification command such as ``udevadm settle`` if present."""
    if not shutil.which(command[0]):
        log.debug("Skipping {}: command not found", command[0])
        return
    with contextlib.suppress(subprocess.CalledProcessError, OSError):
        run_command(list(command), log_command=False)


def missing_tools(tools: Iterable[str]) -> list[str]:
    return [tool for tool in tools if shutil.which(tool) is None]


def require_tools(tools: Iterable[str]) -> None:
    """Raise MissingDependencyError listing every tool not found on PATH."""
    missing = missing_tools(tools)
    if missing:
        raise MissingDependencyError(missing)
