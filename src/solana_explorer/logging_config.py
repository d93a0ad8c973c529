"""
Production logging configuration for the Solana explorer service.

Keeps application logs visible while quieting the HTTP client and server
libraries that would otherwise log every RPC poll (several per second while
stream clients are connected).
"""
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "asyncio",
    "uvicorn.access",
    "urllib3",
)


def configure_production_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    enable_file_logging: bool = False,
    enable_console_logging: bool = True,
) -> None:
    """
    Configure console and optional file logging.

    Args:
        log_level: Level for application loggers (DEBUG, INFO, WARNING, ...)
        log_file: Optional path to log file. If None and enable_file_logging=True,
                 creates logs/explorer_YYYYMMDD.log
        enable_file_logging: Whether to log to file
        enable_console_logging: Whether to log to console

    Example:
        >>> from solana_explorer.logging_config import configure_production_logging
        >>> configure_production_logging(log_level="INFO")
    """
    handlers = []

    if enable_console_logging:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        handlers.append(console_handler)

    if enable_file_logging:
        if log_file is None:
            log_dir = Path("logs")
            log_dir.mkdir(exist_ok=True)
            log_file = log_dir / f"explorer_{datetime.now().strftime('%Y%m%d')}.log"

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)  # File captures everything
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        handlers.append(file_handler)

    # Root goes to DEBUG only when a file handler wants everything
    root_level = logging.DEBUG if enable_file_logging else getattr(logging, log_level.upper())
    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app_level = logging.DEBUG if enable_file_logging else getattr(logging, log_level.upper())
    logging.getLogger('solana_explorer').setLevel(app_level)
    logging.getLogger('__main__').setLevel(app_level)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured (level=%s)", log_level.upper())
    if enable_file_logging and log_file:
        logger.info("Log file: %s", log_file)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)
