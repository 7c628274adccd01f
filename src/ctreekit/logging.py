"""Logging for ctreekit: the FIT level and stderr handlers.

Public entry points (`fit_ctree`, `predict`, `export_rules`, ...) log at the
FIT level. Split decisions inside the tree builder log at DEBUG, rejected
candidate features at TRACE. Nothing is written until `enable_logging` is
called.

Note:
    Importing this module removes loguru's default handler (ID 0). Handlers
    added before ctreekit is imported are left alone.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

FIT_LEVEL: Final[str] = "FIT"
FIT_LEVEL_NUMBER: Final[int] = 25  # Between INFO (20) and WARNING (30)


def _register_fit_level() -> None:
    """Register FIT at 25, or warn if another package already took the name at a different number."""
    try:
        existing_level = logger.level(FIT_LEVEL)
    except ValueError:
        logger.level(FIT_LEVEL, no=FIT_LEVEL_NUMBER, icon="🌳")
    else:
        if existing_level.no != FIT_LEVEL_NUMBER:
            msg = f"FIT level already registered with numeric value {existing_level.no}, expected {FIT_LEVEL_NUMBER}"
            warnings.warn(msg, stacklevel=2)


_register_fit_level()

LogLevel: TypeAlias = Literal[
    "TRACE",
    "DEBUG",
    "INFO",
    "FIT",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

LogFormat: TypeAlias = Literal["short", "full"]


class LoggingHandle:
    """One stderr handler added by `enable_logging`.

    ctreekit records stay enabled while at least one handle is active; the
    last `disable` switches the package off again.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     tree = fit_ctree(matrix, labels)
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove this handler; safe to call more than once."""
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.disable()

    @classmethod
    def get_active_handle_count(cls) -> int:
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = FIT_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Write ctreekit records to stderr.

    Args:
        level (LogLevel): Minimum level. "FIT" (default) shows calls to the
            public fitting, prediction and export functions, "DEBUG" adds
            split decisions node by node, and "TRACE" adds every rejected
            candidate feature.
        log_format (LogFormat): "short" (default) shows only the function
            name; "full" adds module and line number.

    Returns:
        LoggingHandle: Handle that removes the handler on `disable()` or on
            leaving a `with` block.
    """
    logger.enable(PACKAGE_NAME)

    if log_format == "short":
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{function}</cyan> - "
            "<level>{message}</level>"
        )
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )

    handler_id = logger.add(
        sys.stderr,
        level=level,
        filter=_is_ctreekit_record,
        format=format_str,
    )

    return LoggingHandle(handler_id)


def _is_ctreekit_record(record: Record) -> bool:
    name = record["name"]
    return name is not None and (name == PACKAGE_NAME or name.startswith(f"{PACKAGE_NAME}."))
