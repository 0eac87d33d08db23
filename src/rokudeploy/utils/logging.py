"""Logger setup for packaging and deploy runs."""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


def setup_logger(
    name: str = "rokudeploy",
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    level: Union[int, str] = logging.INFO,
) -> logging.Logger:
    """Setup console logger, optionally mirrored to a rotating file.

    Args:
        name: Logger name; service loggers are children of "rokudeploy"
        log_file: Path to log file (parent created if missing); console only when None
        max_bytes: Max size before rotation
        backup_count: Number of rotated files to keep
        level: Logging level, as int or name ("DEBUG", "INFO", ...)

    Returns:
        Configured logger instance
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers if already configured
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
