"""Resolution retargeting for compiled Stable Diffusion bundles"""

import asyncio
import json
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterable, Union

from tqdm import tqdm

from sd_retarget.errors import BundleLayoutError, MetadataError, ResourceError, RetargetError
from sd_retarget.model.bundle import (
    COMPILED_METADATA_FILE,
    PROGRAM_BACKUP_FILE,
    PROGRAM_FILE,
    SubmoduleRole,
    format_shape,
    load_sidecar,
    parse_shape,
    sidecar_path,
    single_entry,
)
from sd_retarget.model.descriptor import ConditioningAsset, ModelDescriptor, build_descriptor
from sd_retarget.model.metadata import ArchitectureFamily, Resolution, read_attention_layout
from sd_retarget.utils.config import get_cache_dir, get_resources_dir
from sd_retarget.utils.logging import get_logger
from .cache import ResizeCache, cache_key
from .catalog import apply_catalog, get_table

logger = get_logger(__name__)

DEFAULT_ENCODER_BLOB = "en-coremldata.bin"
DEFAULT_DECODER_BLOB = "de-coremldata.bin"


def duplicate_bundle(source: Path, destination: Path, show_progress: bool = False) -> Path:
    """
    Copy a whole bundle directory.

    Args:
        source: Bundle to copy
        destination: New bundle path (must not exist)
        show_progress: Display a per-file progress bar

    Returns:
        Destination path
    """
    files = [p for p in source.rglob("*") if p.is_file()]

    with tqdm(
        total=len(files),
        unit="file",
        desc=f"Copying {source.name}",
        disable=not show_progress,
    ) as progress:
        def copy(src, dst):
            result = shutil.copy2(src, dst)
            progress.update(1)
            return result

        shutil.copytree(source, destination, copy_function=copy)

    return destination


def patch_sidecar_shape(path: Path, schema_key: str, height: int, width: int) -> str:
    """
    Set height/width (indices 2 and 3) of the first shape declared under a schema.

    Args:
        path: Sidecar file
        schema_key: ``inputSchema`` or ``outputSchema``
        height: Target image height in pixels
        width: Target image width in pixels

    Returns:
        The new shape string

    Raises:
        MetadataError: If the sidecar does not have the expected structure
    """
    try:
        data = load_sidecar(path)
        entry = single_entry(data)
        schema = entry[schema_key]
        first = schema[0]
        dims = parse_shape(first["shape"])
        if len(dims) < 4:
            raise ValueError(f"expected at least 4 dimensions, got {len(dims)}")
    except (OSError, ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
        raise MetadataError(f"Cannot patch {schema_key} shape in '{path}': {e}") from e

    dims[2] = height
    dims[3] = width
    first["shape"] = format_shape(dims)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        raise MetadataError(f"Cannot write '{path}': {e}") from e

    return first["shape"]


class RetargetEngine:
    """
    Produces bundles whose fixed VAE shapes are rewritten for a new image size.
    """

    def __init__(
        self,
        cache_dir: Union[str, Path],
        resources_dir: Union[str, Path],
        encoder_blob: str = DEFAULT_ENCODER_BLOB,
        decoder_blob: str = DEFAULT_DECODER_BLOB,
        show_progress: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            cache_dir: Directory holding retargeted bundles
            resources_dir: Directory holding the precompiled VAE metadata blobs
            encoder_blob: File name of the VAE encoder blob
            decoder_blob: File name of the VAE decoder blob
            show_progress: Display progress while copying bundles
        """
        self.cache = ResizeCache(cache_dir)
        self.resources_dir = Path(resources_dir)
        self.blobs = {
            SubmoduleRole.ENCODER: self.resources_dir / encoder_blob,
            SubmoduleRole.DECODER: self.resources_dir / decoder_blob,
        }
        self.show_progress = show_progress

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "RetargetEngine":
        resources = config.get("resources") or {}
        return cls(
            cache_dir=get_cache_dir(config),
            resources_dir=get_resources_dir(config),
            encoder_blob=resources.get("encoder_blob") or DEFAULT_ENCODER_BLOB,
            decoder_blob=resources.get("decoder_blob") or DEFAULT_DECODER_BLOB,
            **kwargs,
        )

    def retarget(
        self,
        descriptor: ModelDescriptor,
        width: int,
        height: int,
        conditioning_assets: Iterable[ConditioningAsset] = (),
    ) -> ModelDescriptor:
        """
        Get a descriptor for the model compiled at ``width`` x ``height``.

        Returns the descriptor itself when the model already has that size,
        a descriptor over the cached bundle when one exists, and otherwise
        builds the retargeted bundle first.

        Args:
            descriptor: Source model
            width: Target image width in pixels
            height: Target image height in pixels
            conditioning_assets: Assets to match against the retargeted model

        Returns:
            Descriptor of the retargeted model

        Raises:
            ValueError: If the target size is not positive
            RetargetError: If the bundle could not be prepared
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Target size must be positive, got {width}x{height}")

        if descriptor.native_resolution == Resolution(width=width, height=height):
            logger.info(f"'{descriptor.display_name}' already targets {width}x{height}")
            return descriptor

        key = cache_key(descriptor.display_name, width, height)
        assets = tuple(conditioning_assets)

        with self.cache.lock(key):
            cached = self.cache.lookup(key)
            if cached is not None:
                logger.info(f"Using cached bundle for {key}: {cached}")
                return self._load(cached, descriptor, assets)

            self._check_source(descriptor.location)
            self._check_resources()

            logger.info(f"Retargeting '{descriptor.display_name}' to {width}x{height}...")
            with self.cache.staging(key) as staged:
                self._build(descriptor, staged, width, height)
                final = self.cache.commit(staged, key, {
                    "name": descriptor.display_name,
                    "width": width,
                    "height": height,
                    "source": str(descriptor.location),
                    "architecture": descriptor.architecture_family.value,
                })

        result = self._load(final, descriptor, assets)
        logger.info(f"✓ Retargeted '{descriptor.display_name}' to {width}x{height}: {final}")
        return result

    async def aretarget(
        self,
        descriptor: ModelDescriptor,
        width: int,
        height: int,
        conditioning_assets: Iterable[ConditioningAsset] = (),
    ) -> ModelDescriptor:
        """Run ``retarget`` in a worker thread."""
        return await asyncio.to_thread(
            self.retarget, descriptor, width, height, tuple(conditioning_assets)
        )

    def _load(
        self,
        location: Path,
        source: ModelDescriptor,
        assets: Iterable[ConditioningAsset],
    ) -> ModelDescriptor:
        result = build_descriptor(
            location,
            source.display_name,
            assets,
            source_location=source.location,
        )
        if result is None:
            raise RetargetError(f"Retargeted bundle at '{location}' is unreadable")
        return result

    def _check_source(self, bundle: Path) -> None:
        for role in SubmoduleRole:
            program = bundle / role.directory / PROGRAM_FILE
            if not program.is_file():
                raise BundleLayoutError(f"Missing program text: {program}")

    def _check_resources(self) -> None:
        for role, blob in self.blobs.items():
            if not blob.is_file():
                raise ResourceError(f"Missing precompiled VAE {role.value} metadata: {blob}")

    def _build(self, descriptor: ModelDescriptor, staged: Path, width: int, height: int) -> None:
        """Duplicate, rewrite and patch a bundle inside the staging area."""
        try:
            duplicate_bundle(descriptor.location, staged, show_progress=self.show_progress)
        except (OSError, shutil.Error) as e:
            raise RetargetError(f"Failed to copy bundle '{descriptor.location}': {e}") from e

        for role in SubmoduleRole:
            self._replace_compiled_metadata(staged, role)

        family = descriptor.architecture_family
        with ThreadPoolExecutor(max_workers=len(SubmoduleRole)) as executor:
            futures = [
                executor.submit(self._rewrite_program, staged, family, role, height, width)
                for role in SubmoduleRole
            ]
            for future in futures:
                future.result()

        self._patch_metadata(staged, height, width)

        if not read_attention_layout(staged).ok:
            raise RetargetError(f"Attention layout unreadable after retargeting '{descriptor.location}'")

    def _replace_compiled_metadata(self, bundle: Path, role: SubmoduleRole) -> None:
        target = bundle / role.directory / COMPILED_METADATA_FILE
        try:
            shutil.copyfile(self.blobs[role], target)
        except OSError as e:
            raise ResourceError(f"Failed to replace {target}: {e}") from e
        logger.debug(f"Replaced {role.directory}/{COMPILED_METADATA_FILE}")

    def _rewrite_program(
        self,
        bundle: Path,
        family: ArchitectureFamily,
        role: SubmoduleRole,
        height: int,
        width: int,
    ) -> None:
        table = get_table(family, role)
        directory = bundle / role.directory
        program = directory / PROGRAM_FILE
        backup = directory / PROGRAM_BACKUP_FILE

        try:
            # Always substitute from the native-resolution text
            if backup.is_file():
                shutil.copyfile(backup, program)
            else:
                shutil.copyfile(program, backup)

            text = program.read_text(encoding="utf-8")
            rewritten, counts = apply_catalog(text, table, height, width)
            program.write_text(rewritten, encoding="utf-8")
        except FileNotFoundError as e:
            raise BundleLayoutError(f"Missing program text in {directory}: {e}") from e
        except (OSError, UnicodeError) as e:
            raise RetargetError(f"Failed to rewrite {program}: {e}") from e

        logger.info(
            f"  {role.directory}: {sum(counts.values())} replacements "
            f"({sum(1 for c in counts.values() if c)}/{len(table)} shapes)"
        )

    def _patch_metadata(self, bundle: Path, height: int, width: int) -> None:
        """Update declared VAE shapes; failures are logged, not raised."""
        patches = (
            (SubmoduleRole.ENCODER, "inputSchema"),
            (SubmoduleRole.DECODER, "outputSchema"),
        )
        for role, schema_key in patches:
            path = sidecar_path(bundle, role.directory)
            try:
                shape = patch_sidecar_shape(path, schema_key, height, width)
            except MetadataError as e:
                logger.warning(f"{e}; continuing without metadata update")
                continue
            logger.info(f"  Updated {role.directory} {schema_key} shape: {shape}")
