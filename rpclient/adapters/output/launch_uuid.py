"""Launch id output sinks.

Once a launch finishes, its remote id is surfaced to the surrounding
tooling through one of these sinks so CI scripts can link or post-process
the launch.
"""

import logging
import os
import sys
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from rpclient.core.ports import LaunchIdSink

logger = logging.getLogger(__name__)

LAUNCH_UUID_ENV = "RP_LAUNCH_UUID"


class OutputType(str, Enum):
    """Built-in destinations for the launch id."""

    STDOUT = "STDOUT"
    STDERR = "STDERR"
    ENVIRONMENT = "ENVIRONMENT"
    FILE = "FILE"


def _message(launch_uuid: str) -> str:
    return f"Report Portal Launch UUID: {launch_uuid}"


def print_to_stdout(launch_uuid: str) -> None:
    print(_message(launch_uuid), file=sys.stdout)


def print_to_stderr(launch_uuid: str) -> None:
    print(_message(launch_uuid), file=sys.stderr)


def export_to_environment(launch_uuid: str) -> None:
    """Expose the id to child processes as RP_LAUNCH_UUID."""
    os.environ[LAUNCH_UUID_ENV] = launch_uuid


def save_to_file(launch_uuid: str, directory: Path | None = None) -> Path:
    """Touch ``rp-launch-uuid-<id>.tmp`` in the working directory."""
    path = (directory or Path.cwd()) / f"rp-launch-uuid-{launch_uuid}.tmp"
    path.touch()
    logger.debug(f"Launch UUID written to {path}")
    return path


OUTPUT_HANDLERS: dict[OutputType, LaunchIdSink] = {
    OutputType.STDOUT: print_to_stdout,
    OutputType.STDERR: print_to_stderr,
    OutputType.ENVIRONMENT: export_to_environment,
    OutputType.FILE: save_to_file,
}


def resolve_output(output: "OutputType | str | Callable[[str], None] | None") -> LaunchIdSink:
    """Map a configured output to a sink.

    Names are case-insensitive; an unknown name falls back to STDOUT and
    a callable is used as given.
    """
    if callable(output):
        return output
    if output is None:
        return print_to_stdout
    if isinstance(output, OutputType):
        return OUTPUT_HANDLERS[output]
    try:
        return OUTPUT_HANDLERS[OutputType(str(output).upper())]
    except ValueError:
        logger.warning(f"Unknown launch UUID output {output!r}, using STDOUT")
        return print_to_stdout
