"""Subprocess execution for external build tools.

Each tool runs as a blocking subprocess with timeout enforcement and
full stdout/stderr capture so failures can be surfaced verbatim.
"""

import logging
import shlex
import subprocess
import time
from pathlib import Path
from typing import Optional

from deployer.bundling.types import StepResult

logger = logging.getLogger(__name__)

# Default timeout per step (seconds)
DEFAULT_TIMEOUT = 300


def run_step(
    name: str,
    args: list[str],
    cwd: Path,
    timeout: int = DEFAULT_TIMEOUT,
    env: Optional[dict] = None,
) -> StepResult:
    """Execute a single tool invocation as a subprocess.

    Captures stdout, stderr, exit code, and duration.
    Raises no exceptions; always returns a StepResult.
    Timeouts report exit code -1, a failure to start the process -2.
    """
    command = shlex.join(args)
    logger.info("Running step '%s': %s (cwd=%s)", name, command, cwd)
    start = time.monotonic()

    try:
        result = subprocess.run(
            args,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
        duration = time.monotonic() - start

        step_result = StepResult(
            name=name,
            command=command,
            exit_code=result.returncode,
            duration_seconds=duration,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    except subprocess.TimeoutExpired:
        duration = time.monotonic() - start
        step_result = StepResult(
            name=name,
            command=command,
            exit_code=-1,
            duration_seconds=duration,
            stderr=f"Timed out after {timeout} seconds",
        )

    except OSError as exc:
        duration = time.monotonic() - start
        step_result = StepResult(
            name=name,
            command=command,
            exit_code=-2,
            duration_seconds=duration,
            stderr=str(exc),
        )

    status = "OK" if step_result.is_success else "FAILED"
    logger.info(
        "Step '%s' %s (exit=%d, %.1fs)",
        name, status, step_result.exit_code, step_result.duration_seconds,
    )
    if not step_result.is_success and step_result.stderr:
        logger.warning(
            "Step '%s' stderr (tail):\n%s",
            name,
            _truncate_output(step_result.stderr),
        )

    return step_result


def _truncate_output(text: str, max_lines: int = 60, max_chars: int = 4000) -> str:
    """Return a concise tail of command output for logs."""
    if not text:
        return ""
    lines = text.splitlines()
    tail = lines[-max_lines:]
    joined = "\n".join(tail)
    if len(joined) > max_chars:
        joined = joined[-max_chars:]
    return joined
