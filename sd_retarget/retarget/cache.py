"""Resize cache for retargeted bundles"""

import json
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from sd_retarget.utils.config import ensure_directory
from sd_retarget.utils.logging import get_logger

logger = get_logger(__name__)

COMPLETION_MARKER = ".sd_retarget_complete"


def cache_key(display_name: str, width: int, height: int) -> str:
    """Directory name of a retargeted bundle: ``<name>_<width>x<height>``."""
    safe_name = display_name.replace("/", "_").replace("\\", "_")
    return f"{safe_name}_{width}x{height}"


class ResizeCache:
    """
    Directory of retargeted bundles keyed by (model name, width, height).

    Bundles are assembled in a staging directory and moved into place only
    once complete. A bundle counts as cached only if it carries the
    completion marker, so an interrupted retarget is never served.
    There is no eviction; artifacts persist until removed externally.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    def path_for(self, key: str) -> Path:
        return self.root / key

    def lookup(self, key: str) -> Optional[Path]:
        """
        Return the cached bundle for a key, or None if absent or incomplete.
        """
        path = self.path_for(key)
        if (path / COMPLETION_MARKER).is_file():
            return path
        if path.exists():
            logger.warning(f"Ignoring incomplete cached bundle: {path}")
        return None

    def read_marker(self, key: str) -> Dict[str, Any]:
        with open(self.path_for(key) / COMPLETION_MARKER, "r", encoding="utf-8") as f:
            return json.load(f)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """
        Serialize derivations of the same key within this process.

        A key's lock is dropped once nobody holds or waits for it.
        """
        with self._locks_guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    @contextmanager
    def staging(self, key: str) -> Iterator[Path]:
        """
        Provide a not-yet-existing bundle path to assemble an artifact in.

        The staging area lives under the cache root so the final move is a
        rename on the same filesystem. It is removed on exit whether or not
        the artifact was committed.
        """
        ensure_directory(self.root)
        staging_dir = Path(tempfile.mkdtemp(prefix=f".staging-{key}-", dir=self.root))
        try:
            yield staging_dir / key
        finally:
            shutil.rmtree(staging_dir, ignore_errors=True)

    def commit(self, staged: Path, key: str, info: Dict[str, Any]) -> Path:
        """
        Mark a staged bundle complete and move it into place.

        A completed bundle already at the key (committed by another engine or
        process sharing the cache directory) is kept and the staged copy is
        discarded with the staging area. Only unmarked leftovers are replaced.

        Args:
            staged: Bundle assembled inside ``staging()``
            key: Cache key
            info: Details recorded in the completion marker

        Returns:
            Final bundle path
        """
        with open(staged / COMPLETION_MARKER, "w", encoding="utf-8") as f:
            json.dump(info, f, indent=2)

        final = self.path_for(key)
        if (final / COMPLETION_MARKER).is_file():
            logger.info(f"Keeping existing cached bundle: {final}")
            return final
        if final.exists():
            logger.warning(f"Replacing incomplete cached bundle: {final}")
            shutil.rmtree(final)

        try:
            staged.replace(final)
        except OSError:
            # Lost a rename race to another process
            if (final / COMPLETION_MARKER).is_file():
                logger.info(f"Keeping existing cached bundle: {final}")
                return final
            raise
        logger.info(f"Cached retargeted bundle: {final}")
        return final
