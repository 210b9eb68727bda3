"""Bundle inspection utilities"""

from .metadata import (
    AttentionLayout,
    ArchitectureFamily,
    ConditioningType,
    ReadStatus,
    ReadResult,
    read_attention_layout,
    read_architecture_family,
    read_native_resolution,
    read_conditioning_type,
    read_variable_shape_support,
)
from .descriptor import ModelDescriptor, ConditioningAsset, Resolution, build_descriptor

__all__ = [
    "AttentionLayout",
    "ArchitectureFamily",
    "ConditioningType",
    "ReadStatus",
    "ReadResult",
    "read_attention_layout",
    "read_architecture_family",
    "read_native_resolution",
    "read_conditioning_type",
    "read_variable_shape_support",
    "ModelDescriptor",
    "ConditioningAsset",
    "Resolution",
    "build_descriptor",
]
