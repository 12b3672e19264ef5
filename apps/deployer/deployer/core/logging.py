"""Structured logging via structlog.

Configures structlog once at CLI startup. All subsequent calls to
`structlog.get_logger()` (or `logging.getLogger()` via the stdlib bridge)
use this configuration.

Renderer selection:
  debug=True: `ConsoleRenderer` with colours for interactive runs.
  debug=False: `JSONRenderer` for machine-parseable logs in CI.

Logs go to stderr so stdout stays reserved for command output
(URLs, synthesized plans) that callers may pipe into other tools.

ContextVar injection:
  The `stack` field is injected into every log line from a ContextVar
  set by the CLI, so modules do not have to pass it around.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog

_stack_name_var: ContextVar[str] = ContextVar("stack_name", default="")


def bind_stack_name(name: str) -> None:
    """Set the stack name attached to every subsequent log line."""
    _stack_name_var.set(name)


def get_stack_name() -> str:
    """Return the current stack name, or empty string if not set."""
    return _stack_name_var.get()


def _inject_context_vars(
    logger: logging.Logger,
    method: str,
    event_dict: dict,
) -> dict:
    """Structlog processor: inject the stack name from its ContextVar."""
    stack_name = get_stack_name()
    if stack_name:
        event_dict["stack"] = stack_name
    return event_dict


def configure_structlog(debug: bool = True) -> None:
    """Configure structlog for the process lifetime.

    Calling multiple times is safe; structlog is idempotent.
    """
    shared_processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_context_vars,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Bridge stdlib logging so the deployer modules and third-party libraries
    # (boto3, httpx) write to the same stream.
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        level=logging.DEBUG if debug else logging.INFO,
    )

    # botocore is very chatty at DEBUG
    for noisy in ("boto3", "botocore", "urllib3", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
