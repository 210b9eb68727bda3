"""Shape catalog for VAE program-text retargeting.

Each table lists the fixed tensor shapes that appear in a compiled VAE
``model.mil`` at the architecture's native resolution (512x512 for SD 1.x/2.x,
1024x1024 for SDXL), together with a template that rebuilds the shape for
an arbitrary height/width. Templates are plain data so the catalog can be
checked independently of the file rewriting.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, NamedTuple, Sequence, Tuple, Union

from sd_retarget.errors import CatalogError
from sd_retarget.model.bundle import SubmoduleRole, format_shape
from sd_retarget.model.metadata import ArchitectureFamily, Resolution
from sd_retarget.utils.logging import get_logger

logger = get_logger(__name__)


class Dim(NamedTuple):
    """A resolution-dependent dimension: ``h // factor``, ``w // factor`` or their product."""

    axis: str  # "h", "w" or "hw"
    factor: int
    pad: int = 0

    def evaluate(self, height: int, width: int) -> int:
        if self.axis == "h":
            return height // self.factor + self.pad
        if self.axis == "w":
            return width // self.factor + self.pad
        if self.axis == "hw":
            return (height // self.factor) * (width // self.factor) + self.pad
        raise ValueError(f"Unknown axis: {self.axis}")


def H(factor: int, pad: int = 0) -> Dim:
    return Dim("h", factor, pad)


def W(factor: int, pad: int = 0) -> Dim:
    return Dim("w", factor, pad)


def HW(factor: int) -> Dim:
    return Dim("hw", factor)


TemplateDim = Union[int, Dim]


@dataclass(frozen=True)
class ShapeEntry:
    source: Tuple[int, ...]
    template: Tuple[TemplateDim, ...]

    @property
    def pattern(self) -> str:
        return format_shape(self.source)

    def render(self, height: int, width: int) -> Tuple[int, ...]:
        return tuple(
            d.evaluate(height, width) if isinstance(d, Dim) else d
            for d in self.template
        )

    def replacement(self, height: int, width: int) -> str:
        return format_shape(self.render(height, width))


def _entry(source: Sequence[int], *template: TemplateDim) -> ShapeEntry:
    return ShapeEntry(tuple(source), tuple(template))


NATIVE_RESOLUTION: Dict[ArchitectureFamily, Resolution] = {
    ArchitectureFamily.STANDARD: Resolution(width=512, height=512),
    ArchitectureFamily.XL: Resolution(width=1024, height=1024),
}


SD_DECODER: Tuple[ShapeEntry, ...] = (
    _entry([1, 4, 64, 64], 1, 4, H(8), W(8)),
    _entry([1, 512, 64, 64], 1, 512, H(8), W(8)),
    _entry([1, 32, 16, 64, 64], 1, 32, 16, H(8), W(8)),
    _entry([1, 32, 16, 4096], 1, 32, 16, HW(8)),
    _entry([1, 512, 4096], 1, 512, HW(8)),
    _entry([1, 4096, 512], 1, HW(8), 512),
    _entry([1, 4096, 1, 512], 1, HW(8), 1, 512),
    _entry([1, 1, 4096, 512], 1, 1, HW(8), 512),
    _entry([1, 1, 4096, 4096], 1, 1, HW(8), HW(8)),
    _entry([1, 512, 128, 128], 1, 512, H(4), W(4)),
    _entry([1, 32, 16, 128, 128], 1, 32, 16, H(4), W(4)),
    _entry([1, 512, 256, 256], 1, 512, H(2), W(2)),
    _entry([1, 32, 16, 256, 256], 1, 32, 16, H(2), W(2)),
    _entry([1, 256, 256, 256], 1, 256, H(2), W(2)),
    _entry([1, 32, 8, 256, 256], 1, 32, 8, H(2), W(2)),
    _entry([1, 256, 512, 512], 1, 256, H(1), W(1)),
    _entry([1, 32, 8, 512, 512], 1, 32, 8, H(1), W(1)),
    _entry([1, 128, 512, 512], 1, 128, H(1), W(1)),
    _entry([1, 32, 4, 512, 512], 1, 32, 4, H(1), W(1)),
    _entry([1, 3, 512, 512], 1, 3, H(1), W(1)),
)

# Downsampling convolutions pad the bottom/right edge by one pixel, hence
# the "+1" spatial entries.
SD_ENCODER: Tuple[ShapeEntry, ...] = (
    _entry([1, 8, 64, 64], 1, 8, H(8), W(8)),
    _entry([1, 4, 64, 64], 1, 4, H(8), W(8)),
    _entry([1, 1, 4096, 512], 1, 1, HW(8), 512),
    _entry([1, 1, 4096, 4096], 1, 1, HW(8), HW(8)),
    _entry([1, 4096, 1, 512], 1, HW(8), 1, 512),
    _entry([1, 4096, 512], 1, HW(8), 512),
    _entry([1, 512, 4096], 1, 512, HW(8)),
    _entry([1, 32, 16, 4096], 1, 32, 16, HW(8)),
    _entry([1, 32, 16, 64, 64], 1, 32, 16, H(8), W(8)),
    _entry([1, 512, 64, 64], 1, 512, H(8), W(8)),
    _entry([1, 512, 129, 129], 1, 512, H(4, 1), W(4, 1)),
    _entry([1, 32, 16, 128, 128], 1, 32, 16, H(4), W(4)),
    _entry([1, 512, 128, 128], 1, 512, H(4), W(4)),
    _entry([1, 32, 8, 128, 128], 1, 32, 8, H(4), W(4)),
    _entry([1, 256, 128, 128], 1, 256, H(4), W(4)),
    _entry([1, 256, 257, 257], 1, 256, H(2, 1), W(2, 1)),
    _entry([1, 32, 8, 256, 256], 1, 32, 8, H(2), W(2)),
    _entry([1, 256, 256, 256], 1, 256, H(2), W(2)),
    _entry([1, 32, 4, 256, 256], 1, 32, 4, H(2), W(2)),
    _entry([1, 128, 256, 256], 1, 128, H(2), W(2)),
    _entry([1, 128, 513, 513], 1, 128, H(1, 1), W(1, 1)),
    _entry([1, 128, 512, 512], 1, 128, H(1), W(1)),
    _entry([1, 32, 4, 512, 512], 1, 32, 4, H(1), W(1)),
    _entry([1, 3, 512, 512], 1, 3, H(1), W(1)),
)

SDXL_DECODER: Tuple[ShapeEntry, ...] = (
    _entry([1, 4, 128, 128], 1, 4, H(8), W(8)),
    _entry([1, 512, 128, 128], 1, 512, H(8), W(8)),
    _entry([1, 32, 16, 128, 128], 1, 32, 16, H(8), W(8)),
    _entry([1, 32, 16, 16384], 1, 32, 16, HW(8)),
    _entry([1, 512, 16384], 1, 512, HW(8)),
    _entry([1, 16384, 512], 1, HW(8), 512),
    _entry([1, 16384, 1, 512], 1, HW(8), 1, 512),
    _entry([1, 1, 16384, 512], 1, 1, HW(8), 512),
    _entry([1, 1, 16384, 16384], 1, 1, HW(8), HW(8)),
    _entry([1, 512, 256, 256], 1, 512, H(4), W(4)),
    _entry([1, 32, 16, 256, 256], 1, 32, 16, H(4), W(4)),
    _entry([1, 512, 512, 512], 1, 512, H(2), W(2)),
    _entry([1, 32, 16, 512, 512], 1, 32, 16, H(2), W(2)),
    _entry([1, 256, 512, 512], 1, 256, H(2), W(2)),
    _entry([1, 32, 8, 512, 512], 1, 32, 8, H(2), W(2)),
    _entry([1, 256, 1024, 1024], 1, 256, H(1), W(1)),
    _entry([1, 32, 8, 1024, 1024], 1, 32, 8, H(1), W(1)),
    _entry([1, 128, 1024, 1024], 1, 128, H(1), W(1)),
    _entry([1, 32, 4, 1024, 1024], 1, 32, 4, H(1), W(1)),
    _entry([1, 3, 1024, 1024], 1, 3, H(1), W(1)),
)

SDXL_ENCODER: Tuple[ShapeEntry, ...] = (
    _entry([1, 8, 128, 128], 1, 8, H(8), W(8)),
    _entry([1, 4, 128, 128], 1, 4, H(8), W(8)),
    _entry([1, 1, 16384, 512], 1, 1, HW(8), 512),
    _entry([1, 1, 16384, 16384], 1, 1, HW(8), HW(8)),
    _entry([1, 16384, 1, 512], 1, HW(8), 1, 512),
    _entry([1, 16384, 512], 1, HW(8), 512),
    _entry([1, 512, 16384], 1, 512, HW(8)),
    _entry([1, 32, 16, 16384], 1, 32, 16, HW(8)),
    _entry([1, 32, 16, 128, 128], 1, 32, 16, H(8), W(8)),
    _entry([1, 512, 128, 128], 1, 512, H(8), W(8)),
    _entry([1, 512, 257, 257], 1, 512, H(4, 1), W(4, 1)),
    _entry([1, 32, 16, 256, 256], 1, 32, 16, H(4), W(4)),
    _entry([1, 512, 256, 256], 1, 512, H(4), W(4)),
    _entry([1, 32, 8, 256, 256], 1, 32, 8, H(4), W(4)),
    _entry([1, 256, 256, 256], 1, 256, H(4), W(4)),
    _entry([1, 256, 513, 513], 1, 256, H(2, 1), W(2, 1)),
    _entry([1, 32, 8, 512, 512], 1, 32, 8, H(2), W(2)),
    _entry([1, 256, 512, 512], 1, 256, H(2), W(2)),
    _entry([1, 32, 4, 512, 512], 1, 32, 4, H(2), W(2)),
    _entry([1, 128, 512, 512], 1, 128, H(2), W(2)),
    _entry([1, 128, 1025, 1025], 1, 128, H(1, 1), W(1, 1)),
    _entry([1, 128, 1024, 1024], 1, 128, H(1), W(1)),
    _entry([1, 32, 4, 1024, 1024], 1, 32, 4, H(1), W(1)),
    _entry([1, 3, 1024, 1024], 1, 3, H(1), W(1)),
)

SHAPE_CATALOG: Dict[Tuple[ArchitectureFamily, SubmoduleRole], Tuple[ShapeEntry, ...]] = {
    (ArchitectureFamily.STANDARD, SubmoduleRole.ENCODER): SD_ENCODER,
    (ArchitectureFamily.STANDARD, SubmoduleRole.DECODER): SD_DECODER,
    (ArchitectureFamily.XL, SubmoduleRole.ENCODER): SDXL_ENCODER,
    (ArchitectureFamily.XL, SubmoduleRole.DECODER): SDXL_DECODER,
}


def get_table(family: ArchitectureFamily, role: SubmoduleRole) -> Tuple[ShapeEntry, ...]:
    """
    Look up the shape table for an architecture family and VAE stage.

    Raises:
        CatalogError: If no table is registered for the pair
    """
    try:
        return SHAPE_CATALOG[(family, role)]
    except KeyError:
        raise CatalogError(f"No shape table for family={family!r}, role={role!r}") from None


def apply_catalog(
    text: str,
    table: Iterable[ShapeEntry],
    height: int,
    width: int,
) -> Tuple[str, Dict[str, int]]:
    """
    Replace every literal occurrence of the table's shapes in program text.

    All entries are substituted in a single pass, so a shape produced by one
    entry is never matched again by another. Patterns are matched as exact
    literal text (each is passed through ``re.escape``), so brackets and
    commas in a shape string carry no regex meaning.

    Args:
        text: Program text (``model.mil`` contents)
        table: Catalog entries to apply
        height: Target image height in pixels
        width: Target image width in pixels

    Returns:
        Tuple of (rewritten text, number of replacements per source pattern)
    """
    replacements = {entry.pattern: entry.replacement(height, width) for entry in table}
    if not replacements:
        return text, {}

    counts = {pattern: 0 for pattern in replacements}
    # Longest first so alternation never settles on a shorter literal
    alternation = "|".join(
        re.escape(pattern) for pattern in sorted(replacements, key=len, reverse=True)
    )

    def substitute(match: "re.Match[str]") -> str:
        pattern = match.group(0)
        counts[pattern] += 1
        return replacements[pattern]

    rewritten = re.sub(alternation, substitute, text)

    for pattern, count in counts.items():
        if count:
            logger.debug(f"  {pattern} -> {replacements[pattern]} ({count}x)")

    return rewritten, counts
