"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

hasher.py
Implements file hashing utilities producing FileRecord objects.

Two keys are computed per file:
- SHA-256 of the full content (exact duplicates), streamed in fixed-size chunks
- pHash fingerprint for raster images (perceptual duplicates)

Neither failure aborts a scan: unreadable files get `read_error`, undecodable
images get `fingerprint_error` and only take part in exact matching.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from typing import BinaryIO, Callable, List, Optional, Sequence

import imagehash
from PIL import Image

from mde.core.config import DedupConfig
from mde.core.interfaces import Fingerprinter, HashAlgorithm, Hasher
from mde.core.models import FileEntry, FileRecord, Stage

logger = logging.getLogger(__name__)


def hamming_distance(fingerprint_a: str, fingerprint_b: str) -> int:
    """Number of differing bits between two hex fingerprints of equal length."""
    if len(fingerprint_a) != len(fingerprint_b):
        raise ValueError(
            f"Fingerprints must have the same length ({len(fingerprint_a)} != {len(fingerprint_b)})"
        )
    return bin(int(fingerprint_a, 16) ^ int(fingerprint_b, 16)).count("1")


# Use the same way to implement and use any other hashing algorithm
class Sha256AlgorithmImpl(HashAlgorithm):
    def __init__(self, buffer_size: int = DedupConfig.READ_BUFFER_SIZE):
        self.buffer_size = buffer_size

    def hash_stream(self, stream: BinaryIO) -> str:
        digest = hashlib.sha256()
        for chunk in iter(lambda: stream.read(self.buffer_size), b""):
            digest.update(chunk)
        return digest.hexdigest()


class ImageFingerprinter(Fingerprinter):
    """
    Perceptual hashing (pHash) of raster images via Pillow + imagehash.
    The image is reduced to a small grayscale grid, transformed with a DCT and
    thresholded around the median into a hash_size² bit vector.
    """

    def __init__(self, hash_size: int = DedupConfig.FINGERPRINT_HASH_SIZE):
        self.hash_size = int(hash_size)

    def supports(self, path: str) -> bool:
        return DedupConfig.is_image(path)

    def fingerprint(self, path: str) -> str:
        with Image.open(path) as img:
            # Resize large images for faster processing
            limit = DedupConfig.FINGERPRINT_MAX_DIMENSION
            if img.size[0] > limit or img.size[1] > limit:
                img.thumbnail((limit, limit))
            return str(imagehash.phash(img, hash_size=self.hash_size))


class HasherImpl(Hasher):
    """
    Computes FileRecords with a pluggable digest algorithm and fingerprinter.
    `hash_all` spreads the work over a bounded thread pool.
    """

    def __init__(
            self,
            algorithm: Optional[HashAlgorithm] = None,
            fingerprinter: Optional[Fingerprinter] = None,
            workers: Optional[int] = None
    ):
        self.algorithm = algorithm or Sha256AlgorithmImpl()
        self.fingerprinter = fingerprinter or ImageFingerprinter()
        self.workers = workers or DedupConfig.default_workers()

    def compute_digest(self, path: str) -> str:
        """Digest of the whole file. Raises OSError if the file cannot be read."""
        with open(path, "rb") as stream:
            return self.algorithm.hash_stream(stream)

    def hash(self, entry: FileEntry) -> FileRecord:
        try:
            digest = self.compute_digest(entry.path)
        except OSError as e:
            logger.debug(f"Could not hash {entry.path}: {e}")
            return FileRecord(path=entry.path, size=entry.size, read_error=str(e))

        fingerprint = None
        fingerprint_error = None
        if self.fingerprinter.supports(entry.path):
            try:
                fingerprint = self.fingerprinter.fingerprint(entry.path)
            except Exception as e:
                # Corrupt or unsupported image: the file still takes part in exact matching
                logger.debug(f"Could not fingerprint {entry.path}: {e}")
                fingerprint_error = str(e) or e.__class__.__name__

        return FileRecord(
            path=entry.path,
            size=entry.size,
            content_digest=digest,
            perceptual_fingerprint=fingerprint,
            fingerprint_error=fingerprint_error,
        )

    def hash_all(
            self,
            entries: Sequence[FileEntry],
            stopped_flag: Optional[Callable[[], bool]] = None,
            progress_callback: Optional[Callable[[str, int, object], None]] = None
    ) -> List[FileRecord]:
        """
        Hash every entry and return the records in input order.

        Returns only after every submitted unit has finished, so callers never
        see a partial record set. If `stopped_flag` fires, pending work is
        cancelled and an empty list is returned.
        """
        if stopped_flag and stopped_flag():
            return []
        if not entries:
            return []

        total = len(entries)
        results: List[Optional[FileRecord]] = [None] * total
        processed = 0
        cancelled = False

        logger.debug(f"Hashing {total} files with {self.workers} workers")
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="mde-hash") as executor:
            pending = {executor.submit(self.hash, entry): index for index, entry in enumerate(entries)}
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    index = pending.pop(future)
                    if future.cancelled():
                        continue
                    results[index] = future.result()
                    processed += 1
                if progress_callback:
                    progress_callback(Stage.HASHING.value, processed, total)
                if not cancelled and stopped_flag and stopped_flag():
                    logger.debug("Hashing interrupted by user")
                    cancelled = True
                    for future in pending:
                        future.cancel()
        # Leaving the executor block waits for running workers: this is the barrier

        if cancelled:
            return []
        return [record for record in results if record is not None]
