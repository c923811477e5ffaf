"""Execution of external tools (zfs, zpool, pg_ctl, docker)."""

import logging
import subprocess
from typing import Callable, List, Optional

from zvpg.core.errors import BackendError, BackendUnavailableError

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


def run_command(
    args: List[str],
    runner: Optional[Runner] = None,
    check: bool = True,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess:
    """Run an external command and capture its output.

    Args:
        args: Command and arguments
        runner: Replacement for ``subprocess.run`` (used by tests)
        check: Raise BackendError on a non-zero exit status
        timeout: Seconds before the command is abandoned

    Returns:
        The completed process with text stdout/stderr

    Raises:
        BackendUnavailableError: If the executable cannot be found
        BackendError: If the command fails and ``check`` is set
    """
    runner = runner or subprocess.run
    logger.debug(f"Running: {' '.join(args)}")

    try:
        result = runner(args, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise BackendUnavailableError(
            f"Command not found: {args[0]}", command=args, stderr=str(e)
        ) from e
    except subprocess.TimeoutExpired as e:
        raise BackendError(
            f"Command timed out after {timeout}s: {' '.join(args)}", command=args
        ) from e

    if check and result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise BackendError(
            f"Command failed: {' '.join(args)}: {stderr}", command=args, stderr=stderr
        )

    return result
