"""
Core engine — scanner, hasher, grouper and the data models they exchange.

- FileScannerImpl: directory traversal with hidden-file and media filters
- HasherImpl + Sha256AlgorithmImpl + ImageFingerprinter: content digests and pHash fingerprints
- DuplicateGrouperImpl: exact buckets + perceptual links merged with a disjoint-set
- Models: FileRecord, DuplicateGroup, DuplicateReport, erase plans and results

No filesystem writes happen here; persistence and deletion live in `mde.services`.
"""

from .scanner import FileScannerImpl
from .hasher import HasherImpl, Sha256AlgorithmImpl, ImageFingerprinter, hamming_distance
from .grouper import DuplicateGrouperImpl, DisjointSet, BKTree
from .config import DedupConfig
from .models import (
    FileEntry, FileRecord, GroupMember, DuplicateGroup, DuplicateReport, GroupKind, MediaFilter,
    ScanParams, ScanStats, ErasePlan, EraseResult, EraseStatus, RecoveryResult)

__all__ = [
    "FileScannerImpl",
    "HasherImpl",
    "Sha256AlgorithmImpl",
    "ImageFingerprinter",
    "hamming_distance",
    "DuplicateGrouperImpl",
    "DisjointSet",
    "BKTree",
    "DedupConfig",
    "FileEntry",
    "FileRecord",
    "GroupMember",
    "DuplicateGroup",
    "DuplicateReport",
    "GroupKind",
    "MediaFilter",
    "ScanParams",
    "ScanStats",
    "ErasePlan",
    "EraseResult",
    "EraseStatus",
    "RecoveryResult",
]
