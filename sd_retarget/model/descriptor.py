"""Model descriptor construction"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from sd_retarget.utils.logging import get_logger
from .metadata import (
    AttentionLayout,
    ArchitectureFamily,
    ConditioningType,
    Resolution,
    read_attention_layout,
    read_architecture_family,
    read_conditioning_type,
    read_native_resolution,
    read_variable_shape_support,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConditioningAsset:
    """An auxiliary conditioning model (ControlNet / T2I-Adapter) available to the pipeline."""

    name: str
    size: Resolution
    attention_layout: AttentionLayout
    conditioning_type: Optional[ConditioningType] = None

    def is_compatible(
        self,
        size: Resolution,
        attention_layout: AttentionLayout,
        conditioning_type: Optional[ConditioningType],
    ) -> bool:
        """
        Check whether this asset can drive a model with the given properties.

        An unset model conditioning type is matched as ALL, and an asset
        without a conditioning type of its own matches every type.
        """
        if self.size != size or self.attention_layout != attention_layout:
            return False
        if self.conditioning_type is None:
            return True
        return self.conditioning_type == (conditioning_type or ConditioningType.ALL)


@dataclass(frozen=True, eq=False)
class ModelDescriptor:
    """Identity and capabilities of a compiled model bundle. Two descriptors are equal when they share a location."""

    location: Path
    display_name: str
    attention_layout: AttentionLayout
    architecture_family: ArchitectureFamily = ArchitectureFamily.STANDARD
    native_resolution: Optional[Resolution] = None
    conditioning_type: Optional[ConditioningType] = None
    supports_variable_shape: bool = False
    compatible_conditioning_sets: Tuple[str, ...] = field(default_factory=tuple)
    source_location: Optional[Path] = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModelDescriptor):
            return NotImplemented
        return self.location == other.location

    def __hash__(self) -> int:
        return hash(self.location)

    @property
    def is_xl(self) -> bool:
        return self.architecture_family is ArchitectureFamily.XL

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation."""
        resolution = self.native_resolution
        return {
            "location": str(self.location),
            "name": self.display_name,
            "attention": self.attention_layout.value,
            "architecture": self.architecture_family.value,
            "native_resolution": (
                {"width": resolution.width, "height": resolution.height}
                if resolution is not None else None
            ),
            "conditioning_type": self.conditioning_type.value if self.conditioning_type else None,
            "supports_variable_shape": self.supports_variable_shape,
            "compatible_conditioning_sets": list(self.compatible_conditioning_sets),
            "source_location": str(self.source_location) if self.source_location else None,
        }


def build_descriptor(
    location: Union[str, Path],
    display_name: str,
    conditioning_assets: Iterable[ConditioningAsset] = (),
    source_location: Optional[Path] = None,
) -> Optional[ModelDescriptor]:
    """
    Inspect a bundle and build its descriptor.

    Args:
        location: Bundle root directory
        display_name: Human-readable model name
        conditioning_assets: Available auxiliary conditioning assets
        source_location: Bundle this one was retargeted from, if any

    Returns:
        ModelDescriptor, or None when the attention layout cannot be detected
    """
    location = Path(location)

    attention = read_attention_layout(location)
    if not attention.ok:
        logger.warning(f"Unsupported model '{display_name}': {attention.reason}")
        return None

    family = read_architecture_family(location).value_or(ArchitectureFamily.STANDARD)
    resolution = read_native_resolution(location).value
    conditioning_type = read_conditioning_type(location).value
    variable_shape = read_variable_shape_support(location).value_or(False)

    if resolution is not None:
        compatible = tuple(
            asset.name for asset in conditioning_assets
            if asset.is_compatible(resolution, attention.value, conditioning_type)
        )
    else:
        compatible = ()

    descriptor = ModelDescriptor(
        location=location,
        display_name=display_name,
        attention_layout=attention.value,
        architecture_family=family,
        native_resolution=resolution,
        conditioning_type=conditioning_type,
        supports_variable_shape=variable_shape,
        compatible_conditioning_sets=compatible,
        source_location=source_location,
    )

    logger.info(
        f"Loaded model '{display_name}': attention={attention.value.value}, "
        f"architecture={family.value}, resolution={resolution}"
    )
    return descriptor
