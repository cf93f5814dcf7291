"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

core/config.py
Central constants for hashing, grouping, the report sidecar and the erase staging area.
"""
import os


class DedupConfig:
    # Max Hamming distance (in bits) between two fingerprints still considered the same picture
    SIMILARITY_THRESHOLD = 10

    # imagehash.phash hash_size: 8 → 8x8 = 64-bit fingerprint
    FINGERPRINT_HASH_SIZE = 8

    # Images bigger than this are thumbnailed before fingerprinting
    FINGERPRINT_MAX_DIMENSION = 1024

    READ_BUFFER_SIZE = 64 * 1024

    # Above this many fingerprinted files the O(n²) comparison is replaced by a BK-tree lookup
    PAIRWISE_LIMIT = 2000

    MAX_WORKERS = 32

    IMAGE_EXTENSIONS = frozenset({
        ".png", ".jpg", ".jpeg", ".bmp", ".gif", ".webp", ".tif", ".tiff",
    })
    VIDEO_EXTENSIONS = frozenset({
        ".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v", ".wmv", ".flv", ".3gp", ".mpg", ".mpeg",
    })

    REPORT_FILENAME = "duplicates.json"
    REPORT_VERSION = "1.0"

    STAGING_PREFIX = ".mde_erase_staging"
    JOURNAL_FILENAME = "journal.jsonl"

    @staticmethod
    def default_workers() -> int:
        """Worker pool size for hashing: one per CPU core, bounded."""
        return max(1, min(DedupConfig.MAX_WORKERS, os.cpu_count() or 1))

    @staticmethod
    def is_image(path: str) -> bool:
        return os.path.splitext(path)[1].lower() in DedupConfig.IMAGE_EXTENSIONS

    @staticmethod
    def is_video(path: str) -> bool:
        return os.path.splitext(path)[1].lower() in DedupConfig.VIDEO_EXTENSIONS
