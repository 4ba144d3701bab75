import logging
import os
from logging import Logger
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

import structlog

from pathfinder.core.config import CoreSettings
from pathfinder.core.utils import ifnone

ROOT_LOGGER = "pathfinder"
LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"

# Queue and job identifiers lead structured records so lines from one job line up when grepped.
STRUCTURED_KEY_ORDER = ("timestamp", "level", "queue", "job_id", "event", "duration_ms", "logger")


def log_file_path(name: str, log_dir: Optional[Path | str], structured: bool) -> str:
    """Where ``name`` writes: ``pathfinder.log`` for the root logger, ``modules/<name>.log`` for everything else."""
    relative = f"{name}.log" if name == ROOT_LOGGER else os.path.join("modules", f"{name}.log")
    if log_dir is None:
        paths = CoreSettings().PATHFINDER_DIR_PATHS
        log_dir = paths.STRUCT_LOGGER_DIR if structured else paths.LOGGER_DIR
    return os.path.join(log_dir, relative)


def setup_logger(
    name: str = ROOT_LOGGER,
    *,
    log_dir: Optional[Path] = None,
    logger_level: int = logging.DEBUG,
    stream_level: int = logging.ERROR,
    add_stream_handler: bool = True,
    file_level: int = logging.DEBUG,
    file_mode: str = "a",
    add_file_handler: bool = True,
    propagate: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    use_structlog: Optional[bool] = None,
    render_json: bool = True,
    context: Optional[dict[str, Any]] = None,
) -> Logger | structlog.stdlib.BoundLogger:
    """Attach a console handler and a rotating file handler to the named logger.

    Workers log every job transition at DEBUG, so the file handler keeps everything while the console only shows
    errors unless ``stream_level`` says otherwise.

    Args:
        name: Logger name.
        log_dir: Directory for the log file. Defaults to the configured logger directory.
        logger_level: Level of the logger itself.
        stream_level: Level of the console handler.
        add_stream_handler: Whether to add the console handler.
        file_level: Level of the file handler.
        file_mode: File open mode.
        add_file_handler: Whether to add the file handler.
        propagate: Whether records also reach ancestor loggers.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files to keep.
        use_structlog: Return a structlog logger rendering key/value records. Defaults to
            ``PATHFINDER_LOGGER.USE_STRUCTLOG``.
        render_json: Render structured records as JSON rather than for the console.
        context: Fields bound onto every record of a structured logger, e.g. ``{"queue": "route:optimization"}``.
    """
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.setLevel(logger_level)
    logger.propagate = propagate

    structured = bool(ifnone(use_structlog, default=CoreSettings().PATHFINDER_LOGGER.USE_STRUCTLOG))
    formatter = logging.Formatter("%(message)s" if structured else LOG_FORMAT)

    if add_stream_handler:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(stream_level)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    if add_file_handler:
        path = log_file_path(name, log_dir, structured)
        os.makedirs(Path(path).parent, exist_ok=True)
        file_handler = RotatingFileHandler(filename=path, maxBytes=max_bytes, backupCount=backup_count, mode=file_mode)
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if not structured:
        return logger

    _configure_structlog(render_json)
    bound = structlog.get_logger(name)
    return bound.bind(**context) if context else bound


def _configure_structlog(render_json: bool) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _order_keys,
            structlog.processors.JSONRenderer() if render_json else structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _order_keys(_logger, _method_name, event_dict: dict) -> dict:
    ordered = {key: event_dict.pop(key) for key in STRUCTURED_KEY_ORDER if key in event_dict}
    ordered.update(sorted(event_dict.items()))
    return ordered


def get_logger(
    name: str | None = ROOT_LOGGER, use_structlog: bool | None = None, **kwargs
) -> logging.Logger | structlog.stdlib.BoundLogger:
    """Return a logger under the ``pathfinder`` hierarchy.

    ``get_logger("jobs.local")`` returns ``pathfinder.jobs.local``. These loggers propagate to ``pathfinder`` and skip
    their own console handler, so console output comes from the root handler only.

    Example:
        .. code-block:: python

            from pathfinder.core.logging.logger import get_logger

            logger = get_logger("routing.cache")
            logger.info("Route cache ready.")
    """
    name = name or ROOT_LOGGER
    full_name = name if name.startswith(ROOT_LOGGER) else f"{ROOT_LOGGER}.{name}"
    kwargs.setdefault("propagate", True)
    if kwargs["propagate"]:
        kwargs.setdefault("add_stream_handler", False)
    return setup_logger(full_name, use_structlog=use_structlog, **kwargs)
