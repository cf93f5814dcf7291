"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

core/scanner.py
Enumerates the files a scan classifies.
Features:
- Scans one or more roots, recursively or only their top level
- Skips hidden files and directories unless asked not to
- Skips symbolic links, the report sidecar and erase staging areas
- Applies the media filter (all files, images only, videos only)
- Keeps zero-byte files: they are legitimate exact duplicates of each other
"""

import os
from typing import List, Optional, Callable
from pathlib import Path
import time
import logging

from mde.core.config import DedupConfig
from mde.core.errors import PathNotFoundError, InvalidPathError
from mde.core.interfaces import FileScanner
from mde.core.models import FileEntry, MediaFilter, Stage

logger = logging.getLogger(__name__)


class FileScannerImpl(FileScanner):
    """
    Walks the configured roots and returns FileEntry objects sorted by path.

    Attributes:
        root_paths: Directories (or single files) to scan
        recursive: Descend into subdirectories
        include_hidden: Also return entries whose name starts with '.'
        media_filter: Which kinds of files to return
    """

    def __init__(
        self,
        root_paths: List[str],
        recursive: bool = True,
        include_hidden: bool = False,
        media_filter: MediaFilter = MediaFilter.ALL
    ):
        self.root_paths = [str(Path(p).expanduser().absolute()) for p in root_paths]
        self.recursive = recursive
        self.include_hidden = include_hidden
        self.media_filter = media_filter

    def scan(self,
            stopped_flag: Optional[Callable[[], bool]] = None,
            progress_callback: Optional[Callable[[str, int, object], None]] = None) -> List[FileEntry]:
        logger.debug(f"Starting scan of {len(self.root_paths)} path(s): {self.root_paths}")
        logger.debug(f"recursive={self.recursive}, include_hidden={self.include_hidden}, "
                     f"media={self.media_filter.value}")

        # Validate every root before touching any of them
        for root in self.root_paths:
            if not os.path.exists(root):
                raise PathNotFoundError(root)
            if not (os.path.isdir(root) or os.path.isfile(root)):
                raise InvalidPathError(root, "not a regular file or directory")

        found = {}
        processed_files = 0
        progress_interval = 5000
        progress_counter = 0
        start_time = time.time()

        for root in self.root_paths:
            if stopped_flag and stopped_flag():
                logger.debug("Scan cancelled")
                return []

            if os.path.isfile(root):
                entry = self._process_file(Path(root))
                if entry:
                    found[entry.path] = entry
                processed_files += 1
                continue

            for current, dirs, files in os.walk(root):
                if stopped_flag and stopped_flag():
                    logger.debug("Scan interrupted by user")
                    return []

                # Pre-filter subdirectories BEFORE os.walk enters them
                if self.recursive:
                    dirs[:] = sorted(d for d in dirs if self._accept_dir(Path(current) / d))
                else:
                    dirs[:] = []

                for filename in files:
                    if not self.include_hidden and filename.startswith("."):
                        continue
                    entry = self._process_file(Path(current) / filename)
                    if entry:
                        found[entry.path] = entry
                    processed_files += 1
                    progress_counter += 1

                    if progress_callback and progress_counter >= progress_interval:
                        progress_callback(Stage.SCANNING.value, processed_files, None)
                        progress_counter = 0

        if progress_callback:
            progress_callback(Stage.SCANNING.value, processed_files, None)

        logger.debug(f"Total scan time: {time.time() - start_time:.2f} seconds")
        logger.info(f"Found {len(found)} files")
        return [found[path] for path in sorted(found)]

    def _accept_dir(self, path: Path) -> bool:
        name = path.name
        if name.startswith(DedupConfig.STAGING_PREFIX):
            logger.debug(f"Skipping erase staging directory: {path}")
            return False
        if not self.include_hidden and name.startswith("."):
            return False
        try:
            if path.is_symlink():
                logger.debug(f"Skipping symbolic link: {path}")
                return False
            return os.access(path, os.R_OK | os.X_OK)
        except OSError:
            logger.debug(f"Skipping inaccessible directory: {path}")
            return False

    def _process_file(self, path: Path) -> Optional[FileEntry]:
        """Return a FileEntry if the file passes all filters, else None."""
        if path.name == DedupConfig.REPORT_FILENAME:
            return None

        try:
            if path.is_symlink():
                logger.debug(f"Skipping symbolic link: {path}")
                return None
            stat_result = path.stat()
        except OSError as e:
            # The hasher records unreadable files; only stat failures are dropped here
            logger.debug(f"Could not stat {path}: {e}")
            return None

        if not self._media_passes(str(path)):
            return None

        return FileEntry(path=str(path), size=stat_result.st_size)

    def _media_passes(self, path: str) -> bool:
        if self.media_filter == MediaFilter.IMAGES:
            return DedupConfig.is_image(path)
        if self.media_filter == MediaFilter.VIDEOS:
            return DedupConfig.is_video(path)
        return True
