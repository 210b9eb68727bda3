"""Configuration management utilities"""

import tempfile
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union

PACKAGE_ROOT = Path(__file__).parent.parent
DEFAULT_RESOURCES_DIR = PACKAGE_ROOT / "resources"


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.
    
    Args:
        config_path: Path to config file. If None, uses default config.yaml
        
    Returns:
        Configuration dictionary
    """
    if config_path is None:
        # Use default config in project root
        project_root = PACKAGE_ROOT.parent
        config_path = project_root / "configs" / "config.yaml"
    
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)
    
    return config or {}


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure directory exists, create if needed.
    
    Args:
        path: Directory path
        
    Returns:
        Path object
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def get_cache_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the directory holding retargeted bundles.
    
    A missing or null ``cache.dir`` falls back to ``sd_retarget`` under the
    system temporary directory.
    
    Args:
        config: Configuration dictionary
        
    Returns:
        Cache directory path (not created)
    """
    cache_dir = ((config or {}).get("cache") or {}).get("dir")
    if cache_dir is None:
        return Path(tempfile.gettempdir()) / "sd_retarget"
    return Path(cache_dir).expanduser()


def get_resources_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the directory holding the precompiled VAE metadata blobs.
    
    Args:
        config: Configuration dictionary
        
    Returns:
        Resources directory path
    """
    resources_dir = ((config or {}).get("resources") or {}).get("dir")
    if resources_dir is None:
        return DEFAULT_RESOURCES_DIR
    return Path(resources_dir).expanduser()


def set_config_value(config: Dict[str, Any], section: str, key: str, value: Any) -> Dict[str, Any]:
    """
    Set ``config[section][key]``, creating the section if it is missing or null.
    
    Args:
        config: Configuration dictionary (modified in place)
        section: Top-level block name, e.g. ``cache``
        key: Key inside the block
        value: New value
        
    Returns:
        The updated configuration
    """
    block = config.get(section) or {}
    block[key] = value
    config[section] = block
    return config
