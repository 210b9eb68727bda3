"""Bundle layout constants and sidecar helpers"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

UNET_DIR = "Unet.mlmodelc"
UNET_CHUNK1_DIR = "UnetChunk1.mlmodelc"
VAE_ENCODER_DIR = "VAEEncoder.mlmodelc"
VAE_DECODER_DIR = "VAEDecoder.mlmodelc"

METADATA_FILE = "metadata.json"
PROGRAM_FILE = "model.mil"
PROGRAM_BACKUP_FILE = "model.mil.bak"
COMPILED_METADATA_FILE = "coremldata.bin"

# Candidate core submodules, first existing sidecar wins
UNET_CANDIDATES = (UNET_DIR, UNET_CHUNK1_DIR)


class SubmoduleRole(str, Enum):
    """VAE stages whose fixed shapes are rewritten during retargeting."""
    
    ENCODER = "encoder"
    DECODER = "decoder"
    
    @property
    def directory(self) -> str:
        return VAE_ENCODER_DIR if self is SubmoduleRole.ENCODER else VAE_DECODER_DIR


def sidecar_path(bundle: Path, name: str) -> Path:
    return Path(bundle) / name / METADATA_FILE


def unet_sidecar_path(bundle: Path) -> Optional[Path]:
    """
    Locate the core submodule sidecar.
    
    Args:
        bundle: Bundle root directory
        
    Returns:
        First existing sidecar among the candidates, or None
    """
    for name in UNET_CANDIDATES:
        candidate = sidecar_path(bundle, name)
        if candidate.is_file():
            return candidate
    return None


def load_sidecar(path: Path) -> List[Any]:
    """
    Load a sidecar file, which must hold a JSON array.
    
    Raises:
        OSError: If the file cannot be read
        ValueError: If the content is not valid JSON or not an array
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    return data


def single_entry(data: List[Any]) -> Dict[str, Any]:
    """Return the only object of a sidecar array."""
    if len(data) != 1:
        raise ValueError(f"expected exactly one entry, found {len(data)}")
    entry = data[0]
    if not isinstance(entry, dict):
        raise ValueError(f"expected an object entry, got {type(entry).__name__}")
    return entry


def schema_names(schema: Sequence[Any]) -> List[str]:
    """Names declared in an input/output schema, skipping unnamed entries."""
    return [
        item["name"] for item in schema
        if isinstance(item, dict) and isinstance(item.get("name"), str)
    ]


def parse_shape(shape: str) -> List[int]:
    """
    Parse a bracketed shape string such as ``"[1, 3, 512, 512]"``.
    
    Raises:
        ValueError: If the string is not a bracketed list of integers
    """
    text = shape.strip()
    if not (text.startswith("[") and text.endswith("]")):
        raise ValueError(f"shape is not bracketed: {shape!r}")
    body = text[1:-1].strip()
    if not body:
        return []
    return [int(part.strip()) for part in body.split(",")]


def format_shape(dims: Sequence[int]) -> str:
    """Serialize dimensions the way compiled sidecars and program text do."""
    return "[" + ", ".join(str(d) for d in dims) + "]"
