"""Storage backend for cache entry files.

This module handles the file I/O for cache entries: JSON serialization via
orjson, lazy directory creation, permission normalization and removal of
single entries or whole key directories. None of the operations raise;
failures are logged and reported through the return value.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Tuple

import orjson

from simplecache.paths import CACHE_SUFFIX

logger = logging.getLogger(__name__)

DIR_MODE = 0o777
FILE_MODE = 0o666


class CacheStorage:
    """Reads, writes and deletes serialized payloads on the local filesystem.

    Entries are written as indented JSON with sorted keys so that they stay
    stable and easy to inspect by hand.

    Args:
        cache_root: Root directory of the cache. Directory deletion never
            removes the root itself.

    Examples:
        >>> storage = CacheStorage('/tmp/cache')
        >>> storage.write(Path('/tmp/cache/user/42.json'), {'n': 1})
        True
        >>> storage.read(Path('/tmp/cache/user/42.json'))
        ({'n': 1}, True)
    """

    def __init__(self, cache_root: Path):
        self.cache_root = Path(cache_root)

    def exists(self, path: Path) -> bool:
        return path.is_file()

    def write(self, path: Path, payload: Any) -> bool:
        """Serialize ``payload`` and write it to ``path``.

        Missing parent directories are created. The data is written to a
        temporary file in the same directory and moved into place, so readers
        never see a half-written entry.

        Args:
            path: Entry file
            payload: JSON-serializable value

        Returns:
            True on success, False on any serialization or I/O failure
        """
        try:
            content = orjson.dumps(
                payload, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS
            )
        except TypeError as e:
            logger.warning(f"Cannot serialize payload for {path}: {e}")
            return False

        temp_path = None
        try:
            path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            # One temp file per call; concurrent writers never share it
            fd, temp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f"{path.name}.", suffix=".tmp"
            )
            temp_path = Path(temp_name)
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(temp_path, path)
            os.chmod(path, FILE_MODE)
        except OSError as e:
            logger.warning(f"Cannot write cache file {path}: {e}")
            if temp_path is not None:
                self._discard(temp_path)
            return False

        return True

    def read(self, path: Path) -> Tuple[Optional[Any], bool]:
        """Read and deserialize the entry at ``path``.

        Args:
            path: Entry file

        Returns:
            ``(payload, True)`` on success, ``(None, False)`` if the file is
            missing, unreadable or not valid JSON
        """
        try:
            with open(path, "rb") as f:
                content = f.read()
        except FileNotFoundError:
            return None, False
        except OSError as e:
            logger.warning(f"Cannot read cache file {path}: {e}")
            return None, False

        try:
            return orjson.loads(content), True
        except orjson.JSONDecodeError as e:
            logger.warning(f"Corrupt cache file {path}: {e}")
            return None, False

    def touch(self, path: Path) -> bool:
        """Set the modification time of ``path`` to now without rewriting it.

        Args:
            path: Entry file

        Returns:
            True if the timestamp was updated
        """
        try:
            os.utime(path, None)
        except OSError as e:
            logger.warning(f"Cannot touch cache file {path}: {e}")
            return False
        return True

    def delete(self, path: Path, also_delete_directory: bool = False) -> bool:
        """Remove an entry, and optionally the directory belonging to its key.

        With ``also_delete_directory`` the key directory is the entry path
        without its suffix (``user.json`` -> ``user/``). If there is no such
        directory the directory holding the entry is used instead
        (``user/42.json`` -> ``user/``), except when that is the cache root.
        Deleting something that does not exist succeeds.

        What gets removed therefore depends on what exists on disk. For the
        key ``user.42``:

        - ``user/42/`` exists: ``user/42/`` and ``user/42.json`` are removed;
          siblings such as ``user/7.json`` are kept.
        - ``user/42/`` does not exist: all of ``user/`` is removed, including
          every sibling entry (``user/7.json``, ``user/8.json``, ...).

        Args:
            path: Entry file
            also_delete_directory: Also remove the key directory and
                everything below it

        Returns:
            True on success, False if something could not be removed
        """
        try:
            if also_delete_directory:
                directory = self.key_directory(path)
                if directory is not None:
                    logger.debug(f"Removing cache directory {directory}")
                    remove_tree(directory)

            if path.is_file():
                path.unlink()
        except OSError as e:
            logger.warning(f"Cannot delete cache entry {path}: {e}")
            return False

        return True

    def key_directory(self, path: Path) -> Optional[Path]:
        """Get the directory that ``delete`` removes for ``path``.

        Args:
            path: Entry file

        Returns:
            Existing directory below the cache root, or None
        """
        if path.name.endswith(CACHE_SUFFIX):
            own_dir = path.with_name(path.name[: -len(CACHE_SUFFIX)])
            if own_dir.name and own_dir.is_dir() and self._below_root(own_dir):
                return own_dir

        parent = path.parent
        if parent.is_dir() and self._below_root(parent):
            return parent
        return None

    def _below_root(self, directory: Path) -> bool:
        root = self.cache_root.resolve()
        target = directory.resolve()
        return target != root and root in target.parents

    @staticmethod
    def _discard(temp_path: Path) -> None:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to clean up temp file {temp_path}: {e}")


def remove_tree(directory: Path) -> None:
    """Remove ``directory`` and everything below it.

    Walks the tree bottom-up, unlinking files and symlinks before removing
    each emptied directory. Symlinked directories are unlinked, not followed.

    Args:
        directory: Directory to remove

    Raises:
        OSError: If an entry cannot be removed
    """
    if not directory.is_dir():
        return

    for dirpath, dirnames, filenames in os.walk(directory, topdown=False):
        current = Path(dirpath)
        for name in filenames:
            (current / name).unlink()
        for name in dirnames:
            child = current / name
            if child.is_symlink():
                child.unlink()
            else:
                child.rmdir()
    directory.rmdir()
