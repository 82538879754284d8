"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Iterable

import structlog

ROOT_LOGGER = "sentiment_aggregator"

_LOGGING_INITIALISED = False


def default_log_dir() -> Path:
    env_root = os.environ.get("SENTIMENT_AGGREGATOR_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = log_dir or default_log_dir()
    pipeline_log = log_dir / "pipeline.log"
    error_log = log_dir / "error.log"
    (log_dir / "runs").mkdir(parents=True, exist_ok=True)
    pipeline_log.touch(exist_ok=True)
    error_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "json": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": "DEBUG" if verbose else "WARNING",
                        "formatter": "json",
                    },
                    "pipeline_file": {
                        "class": "logging.FileHandler",
                        "level": level,
                        "filename": str(pipeline_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "json",
                        "encoding": "utf-8",
                    },
                },
                "loggers": {
                    ROOT_LOGGER: {
                        "handlers": ["console", "pipeline_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger(ROOT_LOGGER)


def run_logger(run_id: str, verbose: bool = False, log_dir: Path | None = None) -> structlog.BoundLogger:
    """Return a logger bound to one pipeline run, also writing to ``logs/runs/<run_id>.log``."""

    configure_logging(verbose, log_dir)
    run_log_path = (log_dir or default_log_dir()) / "runs" / f"{run_id}.log"
    run_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"{ROOT_LOGGER}.run.{run_id}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(run_log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(run_log_path, encoding="utf-8")
        root_handlers = logging.getLogger(ROOT_LOGGER).handlers
        if root_handlers:
            file_handler.setFormatter(root_handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(run_id=run_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def available_run_logs(log_dir: Path | None = None) -> Iterable[Path]:
    runs_dir = (log_dir or default_log_dir()) / "runs"
    if not runs_dir.exists():
        return []
    return sorted(runs_dir.glob("*.log"))


__all__ = [
    "available_run_logs",
    "configure_logging",
    "default_log_dir",
    "run_logger",
    "tail_log",
]
