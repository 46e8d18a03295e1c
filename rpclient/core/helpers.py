"""Small helpers shared by the reporting service.

Timestamps, test-case id derivation, system attributes and the
launch-id files used to merge launches across processes.
"""

import logging
import platform
import re
import time
from collections.abc import Iterable, Mapping
from importlib import metadata
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CLIENT_NAME = "rpclient"
LAUNCH_FILE_PATTERN = "rplaunch-*.tmp"
_LAUNCH_FILE_RE = re.compile(r"rplaunch-(.*)\.tmp")


def now() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def client_version() -> str:
    try:
        return metadata.version(CLIENT_NAME)
    except metadata.PackageNotFoundError:
        return "unknown"


def get_system_attributes() -> list[dict[str, Any]]:
    """Describe the reporting host as system attributes of a launch."""
    return [
        {
            "key": "client",
            "value": f"{CLIENT_NAME}|{client_version()}",
            "system": True,
        },
        {
            "key": "os",
            "value": f"{platform.system()}|{platform.machine()}",
            "system": True,
        },
        {
            "key": "python",
            "value": platform.python_version(),
            "system": True,
        },
    ]


def generate_test_case_id(
    code_ref: str | None, parameters: Iterable[Mapping[str, Any]] | None = None
) -> str | None:
    """Derive a test case id from a code reference and parameter values.

    Returns None without a code reference, the bare reference without
    parameters, and ``codeRef[v1,v2]`` over the parameter values that
    are set otherwise.
    """
    if not code_ref:
        return None
    if parameters is None:
        return code_ref
    values = [str(param["value"]) for param in parameters if param.get("value")]
    return f"{code_ref}[{','.join(values)}]"


def save_launch_id_to_file(launch_id: str, directory: Path | None = None) -> Path:
    """Touch ``rplaunch-<id>.tmp`` so a later merge can find the launch."""
    path = (directory or Path.cwd()) / f"rplaunch-{launch_id}.tmp"
    path.touch()
    logger.debug(f"Saved launch id to {path}")
    return path


def read_launches_from_file(directory: Path | None = None) -> list[str]:
    """Collect launch ids written by save_launch_id_to_file."""
    ids = []
    for path in sorted((directory or Path.cwd()).glob(LAUNCH_FILE_PATTERN)):
        match = _LAUNCH_FILE_RE.fullmatch(path.name)
        if match:
            ids.append(match.group(1))
    return ids
