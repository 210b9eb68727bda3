"""Logging utilities"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Set on handlers installed by setup_logging so later calls only replace their own
_HANDLER_FLAG = "_sd_retarget_handler"


def _parse_level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown logging level: {level}")
    return value


def setup_logging(
    config: Optional[Dict[str, Any]] = None,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    name: Optional[str] = None
) -> logging.Logger:
    """
    Configure the package logger from the ``logging`` config block.

    Explicit ``level`` / ``log_file`` arguments take precedence over the
    config. Calling this again replaces the handlers installed by a previous
    call and leaves handlers added by anyone else in place.

    Args:
        config: Loaded configuration (see ``load_config``)
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        name: Logger name

    Returns:
        Configured logger
    """
    log_config = (config or {}).get("logging") or {}
    level = level or log_config.get("level") or "INFO"
    log_file = log_file or log_config.get("file")
    numeric_level = _parse_level(level)

    logger = logging.getLogger(name or "sd_retarget")
    logger.setLevel(numeric_level)

    for handler in [h for h in logger.handlers if getattr(h, _HANDLER_FLAG, False)]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_FLAG, True)
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the package namespace."""
    if name.startswith("sd_retarget"):
        return logging.getLogger(name)
    return logging.getLogger(f"sd_retarget.{name}")
