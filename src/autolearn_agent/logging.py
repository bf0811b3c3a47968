"""
Process logging using structlog.

These are operator logs (stderr and an optional JSON file). The mission's own
console lives in Mission.logs and is never routed through here.
"""

import re
import sys
import logging
from contextlib import contextmanager
from typing import Any, Iterator
from pathlib import Path

import structlog
from structlog.types import Processor


# Keys whose values are never written out
SECRET_KEY_MARKERS = ("api_key", "apikey", "secret", "password", "token")

# Gemini keys leaking inside free-form values (error strings, prompts)
GEMINI_KEY_RE = re.compile(r"AIza[0-9A-Za-z_\-]{30,}")

# Prompts and raw oracle replies can be long
MAX_VALUE_CHARS = 1000

# Chatty client libraries, silenced unless running at DEBUG
QUIET_LOGGERS = ("google", "urllib3", "grpc", "filelock")


def redact_secrets(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask secret-looking keys and any Gemini key embedded in a value."""
    for key, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        if any(marker in key.lower() for marker in SECRET_KEY_MARKERS):
            event_dict[key] = "[REDACTED]"
        elif GEMINI_KEY_RE.search(value):
            event_dict[key] = GEMINI_KEY_RE.sub("[REDACTED]", value)
    return event_dict


def truncate_long_values(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_CHARS:
            event_dict[key] = f"{value[:MAX_VALUE_CHARS]}... ({len(value)} chars)"
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        truncate_long_values,
        redact_secrets,
    ]


def _handler(handler: logging.Handler, renderer: Processor, chain: list[Processor]) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=chain)
    )
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
) -> None:
    """
    Route structlog through stdlib logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional JSON-lines log file, created with its parent dirs
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    chain = _shared_processors()

    structlog.configure(
        processors=chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = [
        _handler(logging.StreamHandler(sys.stderr), structlog.dev.ConsoleRenderer(colors=True), chain),
    ]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            _handler(logging.FileHandler(log_file), structlog.processors.JSONRenderer(), chain)
        )

    root_logger = logging.getLogger()
    root_logger.handlers = handlers
    root_logger.setLevel(numeric_level)

    quiet_level = numeric_level if numeric_level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


@contextmanager
def mission_context(mission_id: str, generation: int) -> Iterator[None]:
    """Tag every log line emitted inside the block with the run it belongs to."""
    with structlog.contextvars.bound_contextvars(mission_id=mission_id, generation=generation):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)
