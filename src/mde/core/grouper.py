"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

core/grouper.py
Duplicate grouping engine: turns a flat list of FileRecords into duplicate groups.

PASSES
------
1. Exact       : bucket by size, then by SHA-256 digest. Buckets of 2+ are exact groups.
2. Perceptual  : among fingerprinted files (exact members included) link every pair
                 whose Hamming distance is within the threshold.
3. Merge       : exact buckets and perceptual links are unioned in one disjoint-set,
                 so groups sharing a file collapse transitively into one component.

ORIGINAL SELECTION
------------------
The kept copy is the lexicographically smallest path. When a component contains
exact buckets, the original is taken from them (smallest original among the buckets),
so a byte-identical copy always survives over a merely similar one.

Similarity is not transitive, but connected components are treated as ground truth:
a chain of near matches can join files whose endpoints exceed the threshold.
"""

import logging
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import xxhash

from mde.core.config import DedupConfig
from mde.core.hasher import hamming_distance
from mde.core.interfaces import DuplicateGrouper
from mde.core.models import (
    DuplicateGroup, DuplicateReport, FileRecord, GroupKind, GroupMember, ScanStats, Stage)

logger = logging.getLogger(__name__)


class DisjointSet:
    """Union-find over 0..n-1 with union by size and path halving (no recursion)."""

    def __init__(self, size: int):
        self.parent = list(range(size))
        self.sizes = [1] * size

    def find(self, item: int) -> int:
        parent = self.parent
        while parent[item] != item:
            parent[item] = parent[parent[item]]
            item = parent[item]
        return item

    def union(self, a: int, b: int) -> bool:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return False
        if self.sizes[root_a] < self.sizes[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        self.sizes[root_a] += self.sizes[root_b]
        return True

    def union_all(self, items: Iterable[int]) -> None:
        items = iter(items)
        first = next(items, None)
        if first is None:
            return
        for item in items:
            self.union(first, item)

    def components(self) -> List[List[int]]:
        """All sets with 2+ members, each sorted, in order of their smallest item."""
        buckets: Dict[int, List[int]] = defaultdict(list)
        for item in range(len(self.parent)):
            buckets[self.find(item)].append(item)
        return [members for members in buckets.values() if len(members) >= 2]


class BKTree:
    """
    Burkhard-Keller tree keyed on Hamming distance between fingerprints.
    Used instead of the all-pairs scan when there are many fingerprints.
    """

    def __init__(self, distance: Callable[[str, str], int] = hamming_distance):
        self.distance = distance
        self._root: Optional[Tuple[str, List[int], Dict[int, Any]]] = None

    def add(self, fingerprint: str, item: int) -> None:
        if self._root is None:
            self._root = (fingerprint, [item], {})
            return
        node = self._root
        while True:
            key, items, children = node
            d = self.distance(fingerprint, key)
            if d == 0:
                items.append(item)
                return
            child = children.get(d)
            if child is None:
                children[d] = (fingerprint, [item], {})
                return
            node = child

    def search(self, fingerprint: str, radius: int) -> List[int]:
        """Every item whose fingerprint is within `radius` bits of `fingerprint`."""
        if self._root is None:
            return []
        found = []
        stack = [self._root]
        while stack:
            key, items, children = stack.pop()
            d = self.distance(fingerprint, key)
            if d <= radius:
                found.extend(items)
            low, high = d - radius, d + radius
            for child_distance, child in children.items():
                if low <= child_distance <= high:
                    stack.append(child)
        return found


class DuplicateGrouperImpl(DuplicateGrouper):
    """
    Single-threaded grouping engine. Needs the complete record set: the caller
    must not pass partial hashing results.
    """

    def __init__(
            self,
            threshold: int = DedupConfig.SIMILARITY_THRESHOLD,
            pairwise_limit: int = DedupConfig.PAIRWISE_LIMIT
    ):
        if threshold < 0:
            raise ValueError("Similarity threshold cannot be negative")
        self.threshold = int(threshold)
        self.pairwise_limit = int(pairwise_limit)

    def group(
            self,
            records: Sequence[FileRecord],
            root_paths: Sequence[str] = (),
            scanned_at: Optional[datetime] = None,
            stats: Optional[ScanStats] = None
    ) -> DuplicateReport:
        errors = [r for r in records if not r.is_valid]
        # Sorting makes the outcome independent of the order records arrive in
        valid = self._deduplicate_paths(sorted((r for r in records if r.is_valid), key=lambda r: r.path))
        if errors:
            logger.info(f"{len(errors)} file(s) could not be read and are excluded from grouping")

        # Pass 1: exact duplicates
        start_time = time.time()
        exact_buckets = self.find_exact_buckets(valid)
        self._update_stats(stats, Stage.EXACT.value, exact_buckets, start_time)

        # Pass 2: perceptual similarity edges
        start_time = time.time()
        edges = self.find_similar_pairs(valid)
        if stats is not None:
            stats.update_stage(Stage.PERCEPTUAL.value, len(edges),
                               sum(1 for r in valid if r.perceptual_fingerprint), time.time() - start_time)

        # Pass 3: union everything and build final groups
        start_time = time.time()
        groups = self.merge(valid, exact_buckets, edges)
        self._update_stats(stats, Stage.MERGE.value, [g.members for g in groups], start_time)

        logger.info(f"Duplicate detection complete: {len(groups)} groups found")
        return DuplicateReport(
            scan_timestamp=scanned_at or datetime.now(timezone.utc),
            root_paths=list(root_paths),
            total_files_scanned=len(records),
            error_count=len(errors),
            groups=groups,
        )

    # =============================
    # Passes
    # =============================

    @staticmethod
    def find_exact_buckets(records: Sequence[FileRecord]) -> List[List[int]]:
        """
        Indices of byte-identical files, one list per digest with 2+ members.
        Size is checked first: files of different size cannot be identical.
        """
        size_groups = DuplicateGrouperImpl._group_by(range(len(records)), lambda i: records[i].size)
        buckets = []
        for size in sorted(size_groups):
            digest_groups = DuplicateGrouperImpl._group_by(size_groups[size], lambda i: records[i].content_digest)
            for digest in sorted(digest_groups):
                buckets.append(digest_groups[digest])
        logger.debug(f"Pass 1: {len(buckets)} exact buckets")
        return buckets

    def find_similar_pairs(self, records: Sequence[FileRecord]) -> List[Tuple[int, int]]:
        """Pairs (i, j), i < j, of fingerprinted records within the similarity threshold."""
        indexed = [(i, r.perceptual_fingerprint) for i, r in enumerate(records) if r.perceptual_fingerprint]
        if len(indexed) < 2:
            return []

        edges = []
        if len(indexed) <= self.pairwise_limit:
            for pos, (i, fp_i) in enumerate(indexed):
                for j, fp_j in indexed[pos + 1:]:
                    if self._is_similar(fp_i, fp_j):
                        edges.append((i, j))
        else:
            logger.debug(f"Pass 2: indexing {len(indexed)} fingerprints in a BK-tree")
            tree = BKTree(self._safe_distance)
            for i, fingerprint in indexed:
                for j in tree.search(fingerprint, self.threshold):
                    edges.append((j, i))
                tree.add(fingerprint, i)
        logger.debug(f"Pass 2: {len(edges)} perceptual links between {len(indexed)} images")
        return edges

    def merge(
            self,
            records: Sequence[FileRecord],
            exact_buckets: Sequence[Sequence[int]],
            edges: Sequence[Tuple[int, int]]
    ) -> List[DuplicateGroup]:
        dsu = DisjointSet(len(records))
        exact_original: Dict[int, int] = {}
        for bucket in exact_buckets:
            dsu.union_all(bucket)
            keeper = min(bucket, key=lambda i: records[i].path)
            for index in bucket:
                exact_original[index] = keeper
        for a, b in edges:
            dsu.union(a, b)

        groups = [self._build_group(records, component, exact_original) for component in dsu.components()]
        groups.sort(key=lambda g: (-max(m.size for m in g.members), g.original_member.path))
        return groups

    # =============================
    # Helpers
    # =============================

    def _build_group(
            self,
            records: Sequence[FileRecord],
            component: List[int],
            exact_original: Dict[int, int]
    ) -> DuplicateGroup:
        members = sorted((GroupMember.from_record(records[i]) for i in component), key=lambda m: m.path)
        keepers = {exact_original[i] for i in component if i in exact_original}
        candidates = keepers or set(component)
        original_path = min(records[i].path for i in candidates)
        original = next(pos for pos, m in enumerate(members) if m.path == original_path)

        return DuplicateGroup(
            id=self._group_id(members),
            kind=self._classify(members),
            members=members,
            original=original,
        )

    @staticmethod
    def _classify(members: Sequence[GroupMember]) -> GroupKind:
        """EXACT if all digests match, PERCEPTUAL if no two match, MIXED otherwise."""
        distinct = len({m.digest for m in members})
        if distinct == 1:
            return GroupKind.EXACT
        if distinct == len(members):
            return GroupKind.PERCEPTUAL
        return GroupKind.MIXED

    @staticmethod
    def _group_id(members: Sequence[GroupMember]) -> str:
        hasher = xxhash.xxh64()
        for member in members:
            hasher.update(member.path.encode("utf-8", "surrogateescape"))
            hasher.update(b"\0")
        return hasher.hexdigest()

    def _is_similar(self, fingerprint_a: str, fingerprint_b: str) -> bool:
        return self._safe_distance(fingerprint_a, fingerprint_b) <= self.threshold

    @staticmethod
    def _safe_distance(fingerprint_a: str, fingerprint_b: str) -> int:
        # Fingerprints of different sizes never match
        try:
            return hamming_distance(fingerprint_a, fingerprint_b)
        except ValueError:
            return max(len(fingerprint_a), len(fingerprint_b)) * 4

    @staticmethod
    def _deduplicate_paths(records: List[FileRecord]) -> List[FileRecord]:
        """A path may only be classified once; later duplicates of a path are dropped."""
        seen = set()
        unique = []
        for record in records:
            if record.path in seen:
                logger.debug(f"Ignoring repeated record for {record.path}")
                continue
            seen.add(record.path)
            unique.append(record)
        return unique

    @staticmethod
    def _group_by(items: Iterable[int], key_func: Callable[[int], Any]) -> Dict[Any, List[int]]:
        """
        Helper method to group items by any computed key.
        Returns only keys shared by at least two items.
        """
        groups = defaultdict(list)
        for item in items:
            key = key_func(item)
            if key is not None:
                groups[key].append(item)
        return {key: group for key, group in groups.items() if len(group) >= 2}

    @staticmethod
    def _update_stats(stats: Optional[ScanStats], stage: str, groups: Sequence[Sequence[Any]], start_time: float):
        if stats is None:
            return
        stats.update_stage(
            stage_name=stage,
            groups_found=len(groups),
            files_processed=sum(len(g) for g in groups),
            duration=time.time() - start_time
        )
