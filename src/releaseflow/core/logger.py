import logging
import sys
import contextvars
from typing import Optional

# Context variable to carry the current run id across the call chain
_RUN_ID: contextvars.ContextVar[str] = contextvars.ContextVar("run_id", default="-")


class _RunIdFilter(logging.Filter):
    """Logging filter that injects the run_id from contextvars into the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.run_id = _RUN_ID.get()
        return True


def _build_formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | run=%(run_id)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _has_releaseflow_handler(root: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and any(isinstance(f, _RunIdFilter) for f in h.filters)
        for h in root.handlers
    )


def configure_root_logger(level: str = "INFO") -> None:
    """
    Configure the root logger and the releaseflow logger.

    Root logger stays at INFO so adapter libraries stay quiet.
    Only the releaseflow namespace is set to the requested level.

    Args:
        level: Log level for releaseflow logs (DEBUG, INFO, WARNING, ERROR).

    Safe to call multiple times; it will not duplicate handlers.
    """
    root = logging.getLogger()
    if not _has_releaseflow_handler(root):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_build_formatter())
        handler.addFilter(_RunIdFilter())
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    logging.getLogger("releaseflow").setLevel(getattr(logging, level.upper(), logging.INFO))


def get_logger(name: str = "releaseflow") -> logging.Logger:
    """
    Get a module-specific logger writing to stdout with the run id attached.

    Does not change the releaseflow level once it has been configured.
    """
    releaseflow_logger = logging.getLogger("releaseflow")
    if not _has_releaseflow_handler(logging.getLogger()) or releaseflow_logger.level == logging.NOTSET:
        configure_root_logger(logging.getLevelName(releaseflow_logger.level or logging.INFO))
    return logging.getLogger(name)


def push_run_id(run_id: Optional[str]) -> Optional[contextvars.Token]:
    """Set the current run id in context and return a token for later reset."""
    if not run_id:
        return None
    return _RUN_ID.set(run_id)


def reset_run_id(token: Optional[contextvars.Token]) -> None:
    """Reset the run id context using the provided token (if any)."""
    if token is None:
        return
    try:
        _RUN_ID.reset(token)
    except ValueError:
        # Token was created in a different context (e.g. a worker thread)
        pass
