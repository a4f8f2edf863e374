from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DETAILED_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d]: %(message)s"


def _file_handler(path: Path, level: int, formatter: logging.Formatter, rotating: bool) -> logging.Handler:
    if rotating:
        # max 10MB, keep 5 files
        handler: logging.Handler = RotatingFileHandler(str(path), maxBytes=10 * 1024 * 1024, backupCount=5)
    else:
        handler = logging.FileHandler(str(path))
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    return any(
        getattr(h, "baseFilename", None) == os.path.abspath(path)
        for h in logger.handlers
        if isinstance(h, logging.FileHandler)
    )


def configure_logging(log_dir: Path, production: bool = False) -> None:
    """Configure application logging (file + console) and attach to uvicorn loggers.

    Idempotent: safe to call multiple times. In production the file handlers
    rotate and only warnings reach the console.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    server_log_path = log_dir / "server.log"
    auth_log_path = log_dir / "auth.log"
    scheduler_log_path = log_dir / "scheduler.log"

    formatter = logging.Formatter(FORMAT)
    detailed_formatter = logging.Formatter(DETAILED_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    server_handler = None
    if not _has_file_handler(root_logger, server_log_path):
        server_handler = _file_handler(server_log_path, logging.INFO, formatter, production)
        root_logger.addHandler(server_handler)

    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(logging.WARNING if production else logging.INFO)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    auth_logger = logging.getLogger("finboard.auth")
    auth_logger.setLevel(logging.DEBUG)
    if not _has_file_handler(auth_logger, auth_log_path):
        auth_logger.addHandler(_file_handler(auth_log_path, logging.DEBUG, detailed_formatter, production))

    scheduler_logger = logging.getLogger("finboard.scheduler")
    scheduler_logger.setLevel(logging.DEBUG)
    if not _has_file_handler(scheduler_logger, scheduler_log_path):
        scheduler_logger.addHandler(_file_handler(scheduler_log_path, logging.DEBUG, detailed_formatter, production))

    # Uvicorn loggers
    if server_handler is not None:
        for uv_logger_name in ("uvicorn.error", "uvicorn.access"):
            lg = logging.getLogger(uv_logger_name)
            lg.setLevel(logging.INFO)
            lg.addHandler(server_handler)

    logging.getLogger("finboard.startup").info("Logging configured; log files in %s", log_dir)
