"""Shape catalog, resize cache and retargeting engine"""

from .catalog import SHAPE_CATALOG, NATIVE_RESOLUTION, ShapeEntry, get_table, apply_catalog
from .cache import ResizeCache, cache_key
from .engine import RetargetEngine, duplicate_bundle, patch_sidecar_shape

__all__ = [
    "SHAPE_CATALOG",
    "NATIVE_RESOLUTION",
    "ShapeEntry",
    "get_table",
    "apply_catalog",
    "ResizeCache",
    "cache_key",
    "RetargetEngine",
    "duplicate_bundle",
    "patch_sidecar_shape",
]
