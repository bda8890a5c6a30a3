"""Logging setup shared by the TranscodeOps services"""

import os
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional

LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB

# Task transitions and scheduler decisions, kept apart from request noise
TRANSCODE_LOGGERS = (
    'transcodeops.worker.transcode',
    'transcodeops.worker.stream',
)

QUIET_LOGGERS = {
    'transcodeops.worker.ffmpeg.command': logging.INFO,
    'aiosqlite': logging.WARNING,
    'uvicorn.access': logging.WARNING,
    'nats': logging.WARNING,
}


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter,
                      backups: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=LOG_MAX_BYTES,
        backupCount=backups,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(service_name: str = "transcodeops", log_dir: Optional[str] = None) -> Dict[str, Path]:
    """
    Configure console and rotating file logging for a service.

    LOG_LEVEL sets the console threshold, LOG_DIR the file location. Files:
    `<service>.log` gets everything, `<service>_errors.log` errors only and
    `transcodes.log` the task and segment lifecycle.

    Args:
        service_name: Name of the service (api, worker, etc.)
        log_dir: Overrides LOG_DIR

    Returns:
        The log file paths by kind
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_path = Path(log_dir or os.getenv("LOG_DIR", "/data/logs"))
    log_path.mkdir(parents=True, exist_ok=True)

    detailed = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    console = logging.Formatter(
        f'%(asctime)s - {service_name} - %(name)s - %(levelname)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(console)
    root_logger.addHandler(console_handler)

    paths = {
        "main": log_path / f"{service_name}.log",
        "errors": log_path / f"{service_name}_errors.log",
        "transcodes": log_path / "transcodes.log",
    }
    root_logger.addHandler(_rotating_handler(paths["main"], logging.DEBUG, detailed, 5))
    root_logger.addHandler(_rotating_handler(paths["errors"], logging.ERROR, detailed, 3))

    transcode_handler = _rotating_handler(paths["transcodes"], logging.INFO, detailed, 5)
    for logger_name in TRANSCODE_LOGGERS:
        named = logging.getLogger(logger_name)
        for handler in [h for h in named.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]:
            named.removeHandler(handler)
            handler.close()
        named.addHandler(transcode_handler)

    for logger_name, level in QUIET_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured for {service_name} (level {log_level}, dir {log_path})")
    return paths
