"""External filter hook for release items.

`renote generate --filter-issue-hook ./scripts/skip-issues.sh` runs the
script once before the build. Every non-empty line it prints is an issue
number to leave out of the note:

    7024
    #7031
"""

from __future__ import annotations

import shlex
import subprocess

from renote.errors import ConfigError
from renote.logging_config import get_logger

logger = get_logger(__name__)

HOOK_TIMEOUT = 120


def parse_hook_output(output: str) -> list[int]:
    """Issue numbers printed by a hook, one per line."""
    ids = []
    for line in output.splitlines():
        value = line.strip().lstrip("#")
        if not value:
            continue
        if not value.isdigit():
            raise ConfigError(f"Filter hook printed '{line.strip()}', expected an issue number")
        ids.append(int(value))
    return ids


def run_filter_hook(command: str, timeout: float = HOOK_TIMEOUT) -> list[int]:
    """Run a filter hook and return the issue numbers it prints.

    Raises:
        ConfigError: The hook cannot be started, fails, times out or prints
                     something other than issue numbers.
    """
    args = shlex.split(command)
    if not args:
        raise ConfigError("Filter hook command is empty")

    logger.info("filter_hook_started", command=command)
    try:
        proc = subprocess.run(
            args, capture_output=True, text=True, check=False, timeout=timeout
        )
    except subprocess.TimeoutExpired as exc:
        raise ConfigError(f"Filter hook '{command}' timed out after {timeout}s") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot run filter hook '{command}': {exc}") from exc

    if proc.returncode != 0:
        raise ConfigError(
            f"Filter hook '{command}' exited with {proc.returncode}: {proc.stderr.strip()}"
        )

    ids = parse_hook_output(proc.stdout)
    logger.info("filter_hook_complete", command=command, filtered=len(ids))
    return ids
