"""
Structured logging for the research pipeline.

Every log line carries the run it belongs to, the stage that emitted it and,
once the review loop has fired, the revision pass. These come from
contextvars set by the orchestrator, so stage code never passes them around.

Two sinks are configured by setup_logging():
- a rich console handler prefixing each line with run / stage / revision
- an optional JSON Lines file handler (one object per line, orjson encoded)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
_stage_var: ContextVar[str | None] = ContextVar("stage", default=None)
_revision_var: ContextVar[int] = ContextVar("revision", default=0)


def get_run_id() -> str | None:
    """Get the current run ID from context."""
    return _run_id_var.get()


def get_stage() -> str | None:
    """Get the current stage name from context."""
    return _stage_var.get()


def get_revision() -> int:
    """Get the current revision pass (0 before any revision)."""
    return _revision_var.get()


def current_context() -> dict[str, Any]:
    """The non-empty logging context fields for the current task."""
    context: dict[str, Any] = {}
    run_id = _run_id_var.get()
    stage = _stage_var.get()
    revision = _revision_var.get()
    if run_id:
        context["run_id"] = run_id
    if stage:
        context["stage"] = stage
    if revision:
        context["revision"] = revision
    return context


@contextmanager
def log_context(
    run_id: str | None = None,
    stage: str | None = None,
    revision: int | None = None,
) -> Generator[None, None, None]:
    """Scope run / stage / revision for every log call inside the block.

    Arguments left as None keep the enclosing value. Previous values are
    restored on exit; the block may span yields of an async generator, so
    they are set back rather than reset by token.
    """
    scoped: list[tuple[ContextVar[Any], Any]] = [
        (var, value)
        for var, value in ((_run_id_var, run_id), (_stage_var, stage), (_revision_var, revision))
        if value is not None
    ]
    previous = [(var, var.get()) for var, _ in scoped]
    try:
        for var, value in scoped:
            var.set(value)
        yield
    finally:
        for var, value in previous:
            var.set(value)


class JSONFormatter(logging.Formatter):
    """JSON Lines formatter with run/stage context."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_context(),
        }

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log_obj, default=str).decode()


class ContextRichHandler(RichHandler):
    """Rich handler that prefixes console lines with run, stage and revision."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)
        context = current_context()

        parts: list[str] = []
        if "run_id" in context:
            run_id = context["run_id"]
            short_id = run_id.split("_")[-1][-8:] if "_" in run_id else run_id[:8]
            parts.append(f"[dim]{short_id}[/dim]")
        if "stage" in context:
            parts.append(f"[cyan]{context['stage']}[/cyan]")
        if "revision" in context:
            parts.append(f"[magenta]r{context['revision']}[/magenta]")

        if parts:
            return Text.from_markup(f"{level_text} {' '.join(parts)}")

        return level_text


class ContextLogger:
    """Logger wrapper that attaches context variables and keyword fields.

    Keyword arguments other than the stdlib ones become structured fields:
    ``logger.info("Probe executed", rows=12)``.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra = {**current_context(), **kwargs.pop("extra", {})}

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log an error with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the shared stderr console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with a JSON file handler and a rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger("rp")
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=True,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for noisy_logger in ["httpx", "httpcore", "openai", "asyncio", "aiosqlite"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith("rp"):
        name = f"rp.{name}"

    return ContextLogger(logging.getLogger(name))
