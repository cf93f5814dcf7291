"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

interfaces.py

Defines core interfaces (Protocols) used throughout the duplicate eraser.
These protocols enforce structural typing using Python's `typing.Protocol` so that
scanner, hasher, grouper and report store can be swapped independently (e.g. an
in-memory report store in tests).

Key Components:
---------------
- HashAlgorithm: Streaming cryptographic hash used as the exact-duplicate key.
- Fingerprinter: Perceptual fingerprint of an image (similarity key).
- Hasher: Turns a FileEntry into an immutable FileRecord.
- FileScanner: Enumerates the files to classify.
- DuplicateGrouper: Builds a DuplicateReport out of FileRecords.
- ReportStore: Persists the report between a scan and an erase.
"""

from datetime import datetime
from typing import Protocol, List, Optional, Callable, Sequence, BinaryIO
from mde.core.models import (
    FileEntry,
    FileRecord,
    DuplicateReport,
    ScanStats,
)


# ===== Interfaces =====

class HashAlgorithm(Protocol):
    """
    Interface for streaming hash algorithms.

    Allows plugging in different hashing functions without affecting the rest
    of the pipeline. Implementations must read the stream in bounded chunks.
    """

    def hash_stream(self, stream: BinaryIO) -> str:
        """Hashes everything left in `stream` and returns a lowercase hex digest."""
        ...


class Fingerprinter(Protocol):
    def supports(self, path: str) -> bool:
        """True if `path` looks like a raster image this fingerprinter can decode."""
        ...

    def fingerprint(self, path: str) -> str:
        """Returns the fingerprint as a hex string. Raises on undecodable images."""
        ...


class Hasher(Protocol):
    """Interface for computing the digest and fingerprint of files."""
    def hash(self, entry: FileEntry) -> FileRecord: ...
    def compute_digest(self, path: str) -> str: ...

    def hash_all(
        self,
        entries: Sequence[FileEntry],
        stopped_flag: Optional[Callable[[], bool]] = None,
        progress_callback: Optional[Callable[[str, int, object], None]] = None
    ) -> List[FileRecord]: ...


class FileScanner(Protocol):
    """
    Interface for enumerating files to classify.
    """
    def scan(
        self,
        stopped_flag: Optional[Callable[[], bool]] = None,
        progress_callback: Optional[Callable[[str, int, object], None]] = None
    ) -> List[FileEntry]:
        """
        Scan files from the configured roots.

        Args:
            stopped_flag: Function that returns True if operation should be canceled.
            progress_callback: Optional callback for reporting progress (stage, current, total).

        Returns:
            FileEntry list of every accepted file.
        """
        ...


class DuplicateGrouper(Protocol):
    """
    Interface for the duplicate grouping engine.

    Pure function of its input: the same records always give the same groups.
    """
    def group(
        self,
        records: Sequence[FileRecord],
        root_paths: Sequence[str] = (),
        scanned_at: Optional[datetime] = None,
        stats: Optional[ScanStats] = None
    ) -> DuplicateReport:
        ...


class ReportStore(Protocol):
    """
    The only way the rest of the system touches the persisted report.

    `location` is a directory holding the sidecar, or an explicit file path.
    """
    def save(self, report: DuplicateReport, location: str) -> str:
        """Persist the report and return where it was written."""
        ...

    def load(self, location: str) -> DuplicateReport:
        """
        Raises:
            ReportNotFoundError: nothing stored at the location
            ReportFormatError: stored data cannot be parsed
            ReportVersionError: stored data uses an unsupported schema version
        """
        ...

    def exists(self, location: str) -> bool: ...

    def delete(self, location: str) -> bool:
        """Remove the stored report. Returns False if there was nothing to remove."""
        ...
