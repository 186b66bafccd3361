"""Log routing for the Shelfwise server and its catalog sync runs.

Every event reaches ``server.log`` as ``key=value`` text.  Loggers under
``shelfwise.sync`` are also copied to ``sync.log`` as one JSON object per
line so a sync run can be replayed after the fact: ``sync_started`` and
``sync_finished`` bracket each dataset run, ``sync_batch_done`` marks
progress, ``catalog_still_preparing`` records each 202 backoff delay and
``catalog_retries_exhausted`` the batch given up on.  Authorization outcomes
(``catalog_unauthorized``, ``expansions_unauthorized_fallback``) and parser
skips (``skip_malformed_item``) land there too.

Both files rotate at 10 MB and keep 5 backups.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5
_SYNC_LOGGER = "shelfwise.sync"

# held at WARNING or above whatever the configured level
_QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpx", "httpcore")

_pre_chain: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_pre_chain)


def _rotating_handler(
    path: Path,
    formatter: logging.Formatter,
    only: str | None = None,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(formatter)
    if only is not None:
        handler.addFilter(logging.Filter(only))
    return handler


def _log_uncaught(exc_type: type[BaseException], exc_value: BaseException, exc_tb: object) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
        return
    logging.getLogger("shelfwise").critical("uncaught_exception", exc_info=(exc_type, exc_value, exc_tb))


def setup_logging(log_level: str = "info", log_dir: Path | None = None, *, console: bool = False) -> None:
    """Route structlog events to stderr and the two rotating files.

    *log_dir* of None writes no files; tests rely on that.  *console* mirrors
    the text stream to stderr for ``shelfwise serve`` in the foreground.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[*_pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    text = _formatter(structlog.dev.ConsoleRenderer(colors=False))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if console:
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(text)
        root.addHandler(stderr)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(_rotating_handler(log_dir / "server.log", text))
        root.addHandler(
            _rotating_handler(
                log_dir / "sync.log",
                _formatter(structlog.processors.JSONRenderer()),
                only=_SYNC_LOGGER,
            )
        )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    sys.excepthook = _log_uncaught  # type: ignore[assignment]
