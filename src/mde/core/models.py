"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

core/models.py
Data models for scanning, duplicate grouping, the persisted report and erase results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Dict, Optional, Tuple, Union, Callable
import logging
import os
from enum import Enum

logger = logging.getLogger(__name__)


# =============================
# Enums
# =============================

class GroupKind(Enum):
    """
    How the members of a duplicate group relate to each other.
    """
    EXACT = "exact"
    PERCEPTUAL = "perceptual"
    MIXED = "mixed"

    @property
    def display_name(self) -> str:
        """Human-readable name for UI display."""
        mapping = {
            GroupKind.EXACT: "Exact",
            GroupKind.PERCEPTUAL: "Perceptual",
            GroupKind.MIXED: "Mixed",
        }
        return mapping.get(self, self.value)

    def __repr__(self) -> str:
        return self.value


class MediaFilter(Enum):
    """Which files the scanner hands to the hasher."""
    ALL = "all"
    IMAGES = "images"
    VIDEOS = "videos"

    @property
    def display_name(self) -> str:
        mapping = {
            MediaFilter.ALL: "All files",
            MediaFilter.IMAGES: "Images only",
            MediaFilter.VIDEOS: "Videos only",
        }
        return mapping.get(self, self.value)


class EraseStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    NOTHING_TO_DO = "nothing-to-do"


class Stage(str, Enum):
    SCANNING = "Scanning"
    HASHING = "Hashing"
    EXACT = "Exact matching"
    PERCEPTUAL = "Perceptual matching"
    MERGE = "Merging groups"
    VALIDATING = "Validating"
    STAGING = "Staging"
    COMMITTING = "Committing"


# ======================
#  Core Data Models
# ======================

@dataclass(frozen=True)
class FileEntry:
    """A file handed over by the enumerator: absolute path and size in bytes."""
    path: str
    size: int


@dataclass(frozen=True)
class FileRecord:
    """
    Everything the grouping engine knows about one scanned file.
    Created once by the hasher and never modified afterwards.
    """
    path: str
    size: int
    content_digest: Optional[str] = None          # SHA-256, lowercase hex
    perceptual_fingerprint: Optional[str] = None  # imagehash hex string
    read_error: Optional[str] = None
    fingerprint_error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        """True if the file could be read and hashed."""
        return self.read_error is None and self.content_digest is not None

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    def __repr__(self):
        return f"<FileRecord path={self.path}, size={self.size}>"


@dataclass(frozen=True)
class GroupMember:
    path: str
    size: int
    digest: str

    @classmethod
    def from_record(cls, record: FileRecord) -> 'GroupMember':
        return cls(path=record.path, size=record.size, digest=record.content_digest)


@dataclass(frozen=True)
class DuplicateGroup:
    """
    Two or more files considered duplicates of one another.
    `members[original]` is the copy that is kept on erase.
    """
    id: str
    kind: GroupKind
    members: Tuple[GroupMember, ...]
    original: int = 0

    def __post_init__(self):
        # Accept any sequence but store an immutable tuple
        object.__setattr__(self, "members", tuple(self.members))
        if len(self.members) < 2:
            raise ValueError(f"Duplicate group {self.id!r} must have at least 2 members")
        if not 0 <= self.original < len(self.members):
            raise ValueError(f"Original index {self.original} out of range for group {self.id!r}")
        paths = [m.path for m in self.members]
        if len(set(paths)) != len(paths):
            raise ValueError(f"Duplicate group {self.id!r} lists the same path twice")

    @property
    def original_member(self) -> GroupMember:
        return self.members[self.original]

    @property
    def duplicates(self) -> List[GroupMember]:
        """Members that an erase removes (everyone except the original)."""
        return [m for i, m in enumerate(self.members) if i != self.original]

    @property
    def paths(self) -> List[str]:
        return [m.path for m in self.members]

    @property
    def duplicate_count(self) -> int:
        return len(self.members) - 1

    @property
    def reclaimable_bytes(self) -> int:
        return sum(m.size for m in self.duplicates)

    def __repr__(self):
        return f"<DuplicateGroup id={self.id}, kind={self.kind.value}, count={len(self.members)}>"


@dataclass(frozen=True)
class ReportSummary:
    """Structured numbers for presentation layers; no formatting is done here."""
    total_files_scanned: int
    error_count: int
    group_count: int
    duplicate_count: int
    reclaimable_bytes: int
    groups_by_kind: Dict[GroupKind, int]
    duplicates_by_kind: Dict[GroupKind, int]


@dataclass
class DuplicateReport:
    """
    Result of one scan. This is the only state persisted between a scan and a
    later erase or clean.
    """
    scan_timestamp: datetime
    root_paths: List[str]
    total_files_scanned: int
    error_count: int
    groups: List[DuplicateGroup] = field(default_factory=list)

    def duplicate_count(self) -> int:
        """Number of files an erase would remove (one original per group is kept)."""
        return sum(g.duplicate_count for g in self.groups)

    def group_count_by_kind(self) -> Dict[GroupKind, int]:
        counts = {kind: 0 for kind in GroupKind}
        for group in self.groups:
            counts[group.kind] += 1
        return counts

    def duplicate_count_by_kind(self) -> Dict[GroupKind, int]:
        counts = {kind: 0 for kind in GroupKind}
        for group in self.groups:
            counts[group.kind] += group.duplicate_count
        return counts

    def reclaimable_bytes(self) -> int:
        return sum(g.reclaimable_bytes for g in self.groups)

    def summary(self) -> ReportSummary:
        return ReportSummary(
            total_files_scanned=self.total_files_scanned,
            error_count=self.error_count,
            group_count=len(self.groups),
            duplicate_count=self.duplicate_count(),
            reclaimable_bytes=self.reclaimable_bytes(),
            groups_by_kind=self.group_count_by_kind(),
            duplicates_by_kind=self.duplicate_count_by_kind(),
        )

    def __repr__(self):
        return f"<DuplicateReport files={self.total_files_scanned}, groups={len(self.groups)}>"


# ======================
#  Erase Models
# ======================

@dataclass(frozen=True)
class PlannedDeletion:
    """A non-original member that is confirmed unchanged since the scan."""
    path: str
    size: int
    group_id: str
    original: str = ""  # Path of the group's original, confirmed alongside


@dataclass
class ErasePlan:
    """
    Outcome of revalidating a report against the current filesystem.
    Only `deletions` are ever touched; everything else is reported.
    """
    deletions: List[PlannedDeletion] = field(default_factory=list)
    skipped_missing: List[str] = field(default_factory=list)
    skipped_changed: List[str] = field(default_factory=list)
    # Duplicates left alone because their group's original is gone or changed
    skipped_unconfirmed_original: List[str] = field(default_factory=list)
    # (size, mtime_ns) of every file whose digest was confirmed, for a later cheap re-check
    confirmed: Dict[str, Tuple[int, int]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_empty(self) -> bool:
        return not self.deletions

    @property
    def total_bytes(self) -> int:
        return sum(d.size for d in self.deletions)

    @property
    def skipped_count(self) -> int:
        return (len(self.skipped_missing) + len(self.skipped_changed)
                + len(self.skipped_unconfirmed_original))


@dataclass
class EraseResult:
    status: EraseStatus
    plan: ErasePlan
    erased: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)  # (original path, reason)
    bytes_freed: int = 0
    staging_dirs: List[str] = field(default_factory=list)  # Kept on disk only after a partial commit
    report_deleted: bool = False
    recovery: Optional["RecoveryResult"] = None

    @property
    def is_success(self) -> bool:
        return self.status != EraseStatus.PARTIAL


@dataclass
class RecoveryResult:
    """What `AtomicEraser.recover` did with staging areas left by an interrupted run."""
    restored: List[str] = field(default_factory=list)
    purged: List[str] = field(default_factory=list)
    unresolved: List[Tuple[str, str]] = field(default_factory=list)  # (staged path, reason)

    @property
    def is_empty(self) -> bool:
        return not (self.restored or self.purged or self.unresolved)


# ======================
#  Statistics
# ======================

class ScanStats:
    """
    Statistics collected while hashing and grouping.
    """
    def __init__(self):
        self.total_time: float = 0.0
        self.read_errors: int = 0
        self.fingerprint_failures: int = 0
        self.stage_stats: Dict[str, Dict[str, Union[int, float]]] = {}
        self._listeners: List[Callable[[str, Dict], None]] = []

    def add_listener(self, listener: Callable[[str, Dict], None]):
        """Adds a listener to receive updates when stats are updated."""
        self._listeners.append(listener)

    def update_stage(
            self,
            stage_name: str,
            groups_found: int,
            files_processed: int,
            duration: float
    ) -> None:
        if stage_name not in self.stage_stats:
            self.stage_stats[stage_name] = {
                "groups": 0,
                "files": 0,
                "time": 0.0
            }
        self.stage_stats[stage_name]["groups"] += groups_found
        self.stage_stats[stage_name]["files"] += files_processed
        self.stage_stats[stage_name]["time"] += duration

        for listener in self._listeners:
            try:
                listener(stage_name, self.stage_stats[stage_name])
            except Exception:
                logger.exception("Error in stats event handler")

    def print_summary(self) -> str:
        lines = [
            "📊 Scan Statistics:",
            f"Total Execution Time: {self.total_time:.3f}s",
            f"Read errors: {self.read_errors} | Fingerprint failures: {self.fingerprint_failures}\n",
            "Stage: GROUPS / FILES / TIME"
        ]

        for stage, data in self.stage_stats.items():
            lines.append(f"{stage}: {data['groups']} / {data['files']} / {data['time']:.3f}s")

        return "\n".join(lines)


# =============================
# Parameters
# =============================

@dataclass
class ScanParams:
    """Parameters for a scan with validation. Interface-agnostic."""
    root_paths: List[str]
    recursive: bool = True
    include_hidden: bool = False
    media_filter: MediaFilter = MediaFilter.ALL
    output: Optional[str] = None
    workers: Optional[int] = None

    def __post_init__(self):
        """Validate parameters immediately after creation."""
        if not self.root_paths:
            raise ValueError("At least one directory to scan is required")

        normalized = []
        for path in self.root_paths:
            if not str(path).strip():
                raise ValueError("Scan path cannot be empty")
            absolute = os.path.abspath(os.path.expanduser(str(path)))
            if absolute not in normalized:
                normalized.append(absolute)
        self.root_paths = normalized

        if self.workers is not None and self.workers < 1:
            raise ValueError("Worker count must be at least 1")

    @property
    def report_location(self) -> str:
        """Where the scan result is written: --output, or the first scanned directory."""
        if self.output:
            return os.path.abspath(os.path.expanduser(self.output))
        first = self.root_paths[0]
        return first if os.path.isdir(first) else os.path.dirname(first)
