"""Utility functions for the sd_retarget project"""

from .config import (
    load_config,
    ensure_directory,
    get_cache_dir,
    get_resources_dir,
    set_config_value,
)
from .logging import setup_logging, get_logger

__all__ = [
    "load_config",
    "ensure_directory",
    "get_cache_dir",
    "get_resources_dir",
    "set_config_value",
    "setup_logging",
    "get_logger",
]
