"""Bundle metadata reading.

Every fact about a compiled bundle is derived from the JSON sidecars
(``metadata.json``) of its submodules. Reads never raise: each returns a
``ReadResult`` that tells "not found / not applicable" apart from
"malformed", and failures are logged at WARNING.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generic, NamedTuple, Optional, TypeVar, Union

from sd_retarget.utils.logging import get_logger
from .bundle import (
    UNET_CANDIDATES,
    VAE_DECODER_DIR,
    load_sidecar,
    parse_shape,
    schema_names,
    sidecar_path,
    single_entry,
    unet_sidecar_path,
)

logger = get_logger(__name__)

T = TypeVar("T")

EINSUM_OP = "Ios16.einsum"
XL_INPUTS = ("time_ids", "text_embeds")
ADAPTER_INPUT = "adapter_res_samples_00"
CONTROLNET_INPUT = "down_block_res_samples_00"
SHAPE_FLEXIBILITY_KEY = "hasShapeFlexibility"


class AttentionLayout(str, Enum):
    ORIGINAL = "original"
    SPLIT_EINSUM = "split_einsum"


class ArchitectureFamily(str, Enum):
    STANDARD = "standard"
    XL = "xl"


class ConditioningType(str, Enum):
    """Auxiliary conditioning a core network accepts."""

    ALL = "all"
    ADAPTER_ONLY = "adapter_only"
    NETWORK_ONLY = "network_only"


class Resolution(NamedTuple):
    width: int
    height: int


class ReadStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    """Outcome of a single metadata read."""

    status: ReadStatus
    value: Optional[T] = None
    reason: str = ""

    @classmethod
    def found(cls, value: T) -> "ReadResult[T]":
        return cls(ReadStatus.FOUND, value)

    @classmethod
    def not_found(cls, reason: str) -> "ReadResult[T]":
        return cls(ReadStatus.NOT_FOUND, None, reason)

    @classmethod
    def malformed(cls, reason: str) -> "ReadResult[T]":
        return cls(ReadStatus.MALFORMED, None, reason)

    @property
    def ok(self) -> bool:
        return self.status is ReadStatus.FOUND

    def value_or(self, default: T) -> T:
        return self.value if self.ok else default


def _read_entry(path: Optional[Path], what: str) -> ReadResult[Dict[str, Any]]:
    """Load the single object of a sidecar, logging why it is unusable."""
    if path is None or not path.is_file():
        result = ReadResult.not_found(f"no {what} metadata at '{path}'")
        logger.warning(result.reason)
        return result

    try:
        entry = single_entry(load_sidecar(path))
    except (OSError, ValueError) as e:
        result = ReadResult.malformed(f"failed to parse {what} metadata at '{path}': {e}")
        logger.warning(result.reason)
        return result

    return ReadResult.found(entry)


def _read_unet_entry(bundle: Union[str, Path]) -> ReadResult[Dict[str, Any]]:
    path = unet_sidecar_path(Path(bundle))
    if path is None:
        result = ReadResult.not_found(
            f"no model metadata found at '{bundle}' (tried {', '.join(UNET_CANDIDATES)})"
        )
        logger.warning(result.reason)
        return result
    return _read_entry(path, "unet")


def _input_schema(entry: Dict[str, Any]) -> Optional[list]:
    schema = entry.get("inputSchema")
    return schema if isinstance(schema, list) else None


def read_attention_layout(bundle: Union[str, Path]) -> ReadResult[AttentionLayout]:
    """
    Detect the attention implementation the core network was compiled with.

    The presence of an ``Ios16.einsum`` operation in the program's operation
    histogram means split-einsum attention; anything else (including an
    empty or missing histogram) means the original attention.

    Args:
        bundle: Bundle root directory

    Returns:
        ReadResult holding the AttentionLayout
    """
    entry = _read_unet_entry(bundle)
    if not entry.ok:
        return ReadResult(entry.status, None, entry.reason)

    histogram = entry.value.get("mlProgramOperationTypeHistogram") or {}
    if not isinstance(histogram, dict):
        result = ReadResult.malformed(f"operation histogram in '{bundle}' is not an object")
        logger.warning(result.reason)
        return result

    if EINSUM_OP in histogram:
        return ReadResult.found(AttentionLayout.SPLIT_EINSUM)
    return ReadResult.found(AttentionLayout.ORIGINAL)


def read_architecture_family(bundle: Union[str, Path]) -> ReadResult[ArchitectureFamily]:
    """
    Detect whether the bundle is an SDXL model.

    XL core networks take two extra inputs, ``time_ids`` and ``text_embeds``.
    Callers are expected to fall back to STANDARD when the read fails.

    Args:
        bundle: Bundle root directory

    Returns:
        ReadResult holding the ArchitectureFamily
    """
    entry = _read_unet_entry(bundle)
    if not entry.ok:
        return ReadResult(entry.status, None, entry.reason)

    schema = _input_schema(entry.value)
    if schema is None:
        result = ReadResult.malformed(f"missing 'inputSchema' in unet metadata of '{bundle}'")
        logger.warning(result.reason)
        return result

    names = schema_names(schema)
    if all(name in names for name in XL_INPUTS):
        return ReadResult.found(ArchitectureFamily.XL)
    return ReadResult.found(ArchitectureFamily.STANDARD)


def read_native_resolution(bundle: Union[str, Path]) -> ReadResult[Resolution]:
    """
    Read the image size the VAE decoder was compiled for.

    The first declared output of the decoder is an NCHW image tensor, so
    index 2 of its shape is the height and index 3 the width.

    Args:
        bundle: Bundle root directory

    Returns:
        ReadResult holding the Resolution
    """
    entry = _read_entry(sidecar_path(Path(bundle), VAE_DECODER_DIR), "VAE decoder")
    if not entry.ok:
        return ReadResult(entry.status, None, entry.reason)

    outputs = entry.value.get("outputSchema")
    if not isinstance(outputs, list) or not outputs or not isinstance(outputs[0], dict):
        result = ReadResult.malformed(f"no declared outputs in VAE decoder metadata of '{bundle}'")
        logger.warning(result.reason)
        return result

    shape = outputs[0].get("shape")
    try:
        if not isinstance(shape, str):
            raise ValueError(f"shape is not a string: {shape!r}")
        dims = parse_shape(shape)
        if len(dims) < 4:
            raise ValueError(f"expected at least 4 dimensions, got {len(dims)}")
    except ValueError as e:
        result = ReadResult.malformed(f"unusable VAE decoder output shape in '{bundle}': {e}")
        logger.warning(result.reason)
        return result

    return ReadResult.found(Resolution(width=dims[3], height=dims[2]))


def read_conditioning_type(bundle: Union[str, Path]) -> ReadResult[ConditioningType]:
    """
    Detect which auxiliary conditioning the core network accepts.

    A network declaring both the adapter and the ControlNet residual inputs
    accepts ALL; one declaring only the adapter input is ADAPTER_ONLY; any
    other readable schema is NETWORK_ONLY.

    Args:
        bundle: Bundle root directory

    Returns:
        ReadResult holding the ConditioningType
    """
    entry = _read_unet_entry(bundle)
    if not entry.ok:
        return ReadResult(entry.status, None, entry.reason)

    schema = _input_schema(entry.value)
    if schema is None:
        result = ReadResult.malformed(f"missing 'inputSchema' in unet metadata of '{bundle}'")
        logger.warning(result.reason)
        return result

    names = schema_names(schema)
    has_adapter = any(name == ADAPTER_INPUT for name in names)
    has_controlnet = any(name == CONTROLNET_INPUT for name in names)

    if has_adapter and has_controlnet:
        return ReadResult.found(ConditioningType.ALL)
    if has_adapter:
        return ReadResult.found(ConditioningType.ADAPTER_ONLY)
    return ReadResult.found(ConditioningType.NETWORK_ONLY)


def _is_flexible(marker: Any) -> bool:
    if isinstance(marker, str):
        return marker.strip().lower() in ("1", "true", "yes")
    return bool(marker)


def read_variable_shape_support(bundle: Union[str, Path]) -> ReadResult[bool]:
    """Whether any core network input is declared with a flexible shape."""
    entry = _read_unet_entry(bundle)
    if not entry.ok:
        return ReadResult(entry.status, None, entry.reason)

    schema = _input_schema(entry.value)
    if schema is None:
        result = ReadResult.malformed(f"missing 'inputSchema' in unet metadata of '{bundle}'")
        logger.warning(result.reason)
        return result

    flexible = any(
        isinstance(item, dict) and _is_flexible(item.get(SHAPE_FLEXIBILITY_KEY))
        for item in schema
    )
    return ReadResult.found(flexible)
