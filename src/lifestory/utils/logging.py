"""Logging configuration for lifestory.

Provides centralized logging setup with Rich console formatting,
optional file logging and a filter that keeps API keys out of log output.

Example:
    >>> from lifestory.utils.logging import setup_logging, LogContext
    >>> setup_logging(level="DEBUG")
    >>> with LogContext("Constructing timeline"):
    ...     # do work
    ... # Logs: "Constructing timeline completed in 0.42s"
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


# =============================================================================
# Constants
# =============================================================================

PACKAGE_NAME = "lifestory"

# Noisy third-party loggers to filter
NOISY_LOGGERS = [
    "google",
    "google.auth",
    "google.genai",
    "urllib3",
    "httpx",
    "httpcore",
    "keyring",
    "asyncio",
]

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console = Console(stderr=True)


# =============================================================================
# Redaction
# =============================================================================


class RedactingFilter(logging.Filter):
    """Logging filter that redacts API keys and tokens.

    Example:
        >>> logger = logging.getLogger("lifestory.ai")
        >>> logger.addFilter(RedactingFilter())
        >>> logger.info("Using api_key=AIzaSy123456789...")
        # Output: "Using api_key=[REDACTED]"
    """

    KEY_VALUE_PATTERNS = [
        re.compile(r'((?:api_key|key|token|secret)\s*[=:]\s*)["\']?([a-zA-Z0-9_\-]{20,})["\']?', re.IGNORECASE),
        re.compile(r"(bearer\s+)([a-zA-Z0-9_\-]{20,})", re.IGNORECASE),
    ]
    STANDALONE_PATTERNS = [
        # Gemini keys start with AIza
        re.compile(r"\bAIza[a-zA-Z0-9_\-]{30,}\b"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        """Replace secret-looking substrings in ``text`` with ``[REDACTED]``."""
        for pattern in cls.KEY_VALUE_PATTERNS:
            text = pattern.sub(r"\1[REDACTED]", text)
        for pattern in cls.STANDALONE_PATTERNS:
            text = pattern.sub("[REDACTED]", text)
        return text


# =============================================================================
# Setup Functions
# =============================================================================


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> logging.Logger:
    """Route the ``lifestory`` logger to stderr and, optionally, a file.

    Handlers installed by an earlier call are closed and replaced, so each
    CLI invocation starts from a clean logger. Every handler shares one
    :class:`RedactingFilter`. Loggers in :data:`NOISY_LOGGERS` are held at
    WARNING.

    Args:
        level: Level name; unknown names fall back to INFO.
        log_file: Plain-text log destination, created with its parent
            directories.

    Returns:
        The configured package logger.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handlers: list[logging.Handler] = [
        RichHandler(
            console=_console,
            show_time=False,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=numeric_level == logging.DEBUG,
            markup=False,
        )
    ]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
        handlers.append(file_handler)

    package_logger = logging.getLogger(PACKAGE_NAME)
    for previous in package_logger.handlers:
        previous.close()
    package_logger.handlers = []

    redactor = RedactingFilter()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.addFilter(redactor)
        package_logger.addHandler(handler)
    package_logger.setLevel(numeric_level)
    package_logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    package_logger.debug(f"Logging configured: level={logging.getLevelName(numeric_level)}, file={log_file}")
    return package_logger


# =============================================================================
# Log Context Manager
# =============================================================================


class LogContext:
    """Context manager for timing and logging operations.

    Logs the start and completion of an operation with elapsed time.
    Exceptions are logged and re-raised.

    Attributes:
        message: Description of the operation.
        level: Log level for messages.
        logger: Logger instance to use.
        elapsed: Elapsed time in seconds (after exit).

    Example:
        >>> with LogContext("Generating chapters") as ctx:
        ...     chapters = segmenter.generate_chapters(timeline)
        >>> print(f"Took {ctx.elapsed_ms}ms")
    """

    def __init__(
        self,
        message: str,
        level: int = logging.INFO,
        logger: logging.Logger | None = None,
    ) -> None:
        self.message = message
        self.level = level
        self.logger = logger or logging.getLogger(PACKAGE_NAME)
        self.elapsed: float = 0.0
        self._start_time: float = 0.0

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed * 1000)

    def __enter__(self) -> "LogContext":
        self._start_time = time.perf_counter()
        self.logger.log(self.level, f"{self.message}...")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.elapsed = time.perf_counter() - self._start_time

        if exc_type is not None:
            self.logger.error(f"{self.message} failed after {self.elapsed:.2f}s: {exc_val}")
        else:
            self.logger.log(self.level, f"{self.message} completed in {self.elapsed:.2f}s")
