"""
Tests for the duplicate grouping engine: exact buckets, perceptual links and the
transitive merge. Records are built directly so every distance is known exactly.
"""
import random
from datetime import datetime, timezone

import pytest

from conftest import make_record
from mde.core.grouper import BKTree, DisjointSet, DuplicateGrouperImpl
from mde.core.hasher import hamming_distance
from mde.core.models import GroupKind, ScanStats

ZERO = "0000000000000000"
SCANNED_AT = datetime(2024, 1, 1, tzinfo=timezone.utc)


def fp(bits: int) -> str:
    """Fingerprint with the lowest `bits` bits set, i.e. `bits` away from ZERO."""
    return f"{(1 << bits) - 1:016x}"


class TestDisjointSet:
    def test_union_and_find(self):
        dsu = DisjointSet(5)
        dsu.union(0, 1)
        dsu.union(3, 4)
        dsu.union(1, 4)

        assert dsu.find(0) == dsu.find(3)
        assert dsu.find(2) != dsu.find(0)

    def test_union_returns_false_when_already_joined(self):
        dsu = DisjointSet(2)
        assert dsu.union(0, 1) is True
        assert dsu.union(1, 0) is False

    def test_components_skip_singletons(self):
        dsu = DisjointSet(6)
        dsu.union_all([0, 2, 4])
        dsu.union(1, 5)

        assert sorted(dsu.components()) == [[0, 2, 4], [1, 5]]

    def test_long_chain_does_not_recurse(self):
        size = 50_000
        dsu = DisjointSet(size)
        for i in range(size - 1):
            dsu.union(i, i + 1)
        assert len(dsu.components()) == 1


class TestBKTree:
    def test_search_matches_brute_force(self):
        rng = random.Random(7)
        fingerprints = [f"{rng.getrandbits(64):016x}" for _ in range(300)]
        tree = BKTree()
        for index, fingerprint in enumerate(fingerprints):
            tree.add(fingerprint, index)

        query = fingerprints[0]
        expected = {i for i, f in enumerate(fingerprints) if hamming_distance(query, f) <= 24}
        assert set(tree.search(query, 24)) == expected

    def test_identical_fingerprints_share_a_node(self):
        tree = BKTree()
        tree.add(ZERO, 1)
        tree.add(ZERO, 2)
        assert sorted(tree.search(ZERO, 0)) == [1, 2]

    def test_empty_tree(self):
        assert BKTree().search(ZERO, 10) == []


class TestExactGrouping:
    def test_identical_files_form_one_exact_group(self):
        """Two identical files, one renamed copy → one Exact group with one original."""
        records = [
            make_record("/photos/a.jpg", 100, digest="d1"),
            make_record("/photos/copy of a.jpg", 100, digest="d1"),
            make_record("/photos/unique.jpg", 100, digest="d2"),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert len(report.groups) == 1
        group = report.groups[0]
        assert group.kind == GroupKind.EXACT
        assert len(group.members) == 2
        assert group.duplicate_count == 1

    def test_original_is_lexicographically_smallest_path(self):
        records = [
            make_record("/z/photo.jpg", 10, digest="d"),
            make_record("/a/photo.jpg", 10, digest="d"),
            make_record("/m/photo.jpg", 10, digest="d"),
        ]

        group = DuplicateGrouperImpl().group(records).groups[0]

        assert group.original_member.path == "/a/photo.jpg"

    def test_same_digest_different_size_never_grouped(self):
        records = [make_record("/a", 10, digest="d"), make_record("/b", 11, digest="d")]
        assert DuplicateGrouperImpl().group(records).groups == []

    def test_zero_byte_files_form_one_group(self):
        empty = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        records = [make_record(f"/empty{i}", 0, digest=empty) for i in range(5)]

        report = DuplicateGrouperImpl().group(records)

        assert len(report.groups) == 1
        assert len(report.groups[0].members) == 5

    def test_read_errors_are_excluded_but_counted(self):
        records = [
            make_record("/a", 10, digest="d"),
            make_record("/b", 10, digest="d"),
            make_record("/c", 10, read_error="Permission denied"),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert report.error_count == 1
        assert report.total_files_scanned == 3
        assert "/c" not in report.groups[0].paths

    def test_repeated_path_is_classified_once(self):
        records = [make_record("/a", 10, digest="d"), make_record("/a", 10, digest="d")]
        assert DuplicateGrouperImpl().group(records).groups == []


class TestPerceptualGrouping:
    def test_reencoded_image_forms_perceptual_group(self):
        """An image and its JPEG re-save: different digest, distance 3 → one Perceptual group."""
        records = [
            make_record("/img.png", 5000, fingerprint=ZERO),
            make_record("/img.jpg", 3000, fingerprint=fp(3)),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert len(report.groups) == 1
        assert report.groups[0].kind == GroupKind.PERCEPTUAL

    def test_threshold_is_inclusive(self):
        at_threshold = [make_record("/a", 1, fingerprint=ZERO), make_record("/b", 2, fingerprint=fp(10))]
        beyond = [make_record("/a", 1, fingerprint=ZERO), make_record("/b", 2, fingerprint=fp(11))]

        assert len(DuplicateGrouperImpl().group(at_threshold).groups) == 1
        assert DuplicateGrouperImpl().group(beyond).groups == []

    def test_chain_of_near_matches_is_one_group(self):
        """Endpoints 16 bits apart are still grouped through the middle file."""
        records = [
            make_record("/a", 1, fingerprint=ZERO),
            make_record("/b", 2, fingerprint=fp(8)),
            make_record("/c", 3, fingerprint=fp(16)),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert len(report.groups) == 1
        assert sorted(report.groups[0].paths) == ["/a", "/b", "/c"]

    def test_files_without_fingerprint_only_match_exactly(self):
        records = [make_record("/video1.mp4", 10), make_record("/video2.mp4", 10)]
        assert DuplicateGrouperImpl().group(records).groups == []

    def test_fingerprints_of_different_length_never_match(self):
        records = [make_record("/a", 1, fingerprint=ZERO), make_record("/b", 2, fingerprint=ZERO * 4)]
        assert DuplicateGrouperImpl().group(records).groups == []

    def test_bk_tree_path_gives_same_groups_as_pairwise(self):
        rng = random.Random(3)
        records = []
        for i in range(40):
            base = rng.getrandbits(64)
            records.append(make_record(f"/img{i:03d}a", 10 + i, fingerprint=f"{base:016x}"))
            records.append(make_record(f"/img{i:03d}b", 20 + i, fingerprint=f"{base ^ 0b101:016x}"))

        pairwise = DuplicateGrouperImpl(pairwise_limit=10_000).group(records, scanned_at=SCANNED_AT)
        indexed = DuplicateGrouperImpl(pairwise_limit=1).group(records, scanned_at=SCANNED_AT)

        assert pairwise == indexed


class TestMerge:
    def test_exact_pair_and_perceptual_neighbour_merge_into_mixed(self):
        """
        A and B byte-identical, B and C 8 bits apart, A and C 15 bits apart
        → one Mixed group {A, B, C} through B.
        """
        a_fp, b_fp, c_fp = "0000000000007f00", ZERO, "00000000000000ff"
        assert hamming_distance(b_fp, c_fp) == 8
        assert hamming_distance(a_fp, c_fp) == 15
        records = [
            make_record("/a.jpg", 100, digest="same", fingerprint=a_fp),
            make_record("/b.jpg", 100, digest="same", fingerprint=b_fp),
            make_record("/c.jpg", 90, digest="other", fingerprint=c_fp),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert len(report.groups) == 1
        group = report.groups[0]
        assert group.kind == GroupKind.MIXED
        assert sorted(group.paths) == ["/a.jpg", "/b.jpg", "/c.jpg"]

    def test_merged_group_keeps_exact_original(self):
        """A similar file with a smaller path never displaces the exact bucket's original."""
        records = [
            make_record("/0-similar.jpg", 90, digest="other", fingerprint=fp(2)),
            make_record("/b.jpg", 100, digest="same", fingerprint=ZERO),
            make_record("/c.jpg", 100, digest="same", fingerprint=ZERO),
        ]

        group = DuplicateGrouperImpl().group(records).groups[0]

        assert group.kind == GroupKind.MIXED
        assert group.original_member.path == "/b.jpg"

    def test_two_exact_buckets_joined_by_similarity(self):
        records = [
            make_record("/a1", 100, digest="x", fingerprint=ZERO),
            make_record("/a2", 100, digest="x", fingerprint=ZERO),
            make_record("/b1", 200, digest="y", fingerprint=fp(4)),
            make_record("/b2", 200, digest="y", fingerprint=fp(4)),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert len(report.groups) == 1
        assert report.groups[0].kind == GroupKind.MIXED
        assert report.groups[0].original_member.path == "/a1"


class TestGroupingProperties:
    @pytest.fixture
    def random_records(self):
        rng = random.Random(11)
        records = []
        for i in range(120):
            digest = f"d{rng.randint(0, 30)}"
            fingerprint = f"{rng.choice([0, 0xff, 0xffff0000, 0x0f0f]) ^ rng.getrandbits(3):016x}" \
                if rng.random() < 0.7 else None
            records.append(make_record(f"/f{i:03d}", size=int(digest[1:]) * 10, digest=digest,
                                       fingerprint=fingerprint))
        return records

    def test_equal_digests_always_share_an_exact_or_mixed_group(self, random_records):
        report = DuplicateGrouperImpl().group(random_records)
        by_path = {r.path: r for r in random_records}
        group_of = {p: g for g in report.groups for p in g.paths}

        for a in random_records:
            for b in random_records:
                if a.path < b.path and a.content_digest == b.content_digest:
                    group = group_of.get(a.path)
                    assert group is not None and b.path in group.paths
                    assert group.kind in (GroupKind.EXACT, GroupKind.MIXED)
        for group in report.groups:
            assert all(by_path[p].is_valid for p in group.paths)

    def test_every_path_in_at_most_one_group_and_one_original(self, random_records):
        report = DuplicateGrouperImpl().group(random_records)

        paths = [p for g in report.groups for p in g.paths]
        assert len(paths) == len(set(paths))
        for group in report.groups:
            assert group.original_member not in group.duplicates

    def test_grouping_is_idempotent_and_order_independent(self, random_records):
        grouper = DuplicateGrouperImpl()
        first = grouper.group(random_records, scanned_at=SCANNED_AT)
        second = grouper.group(random_records, scanned_at=SCANNED_AT)
        shuffled = list(random_records)
        random.Random(5).shuffle(shuffled)
        third = grouper.group(shuffled, scanned_at=SCANNED_AT)

        assert first == second == third

    def test_far_apart_distinct_files_never_grouped(self):
        records = [
            make_record("/a", 10, digest="x", fingerprint=ZERO),
            make_record("/b", 10, digest="y", fingerprint="ffffffffffffffff"),
        ]
        assert DuplicateGrouperImpl().group(records).groups == []


class TestGroupReport:
    def test_report_metadata(self):
        records = [make_record("/r/a", 1, digest="d"), make_record("/r/b", 1, digest="d")]

        report = DuplicateGrouperImpl().group(records, root_paths=["/r"], scanned_at=SCANNED_AT)

        assert report.root_paths == ["/r"]
        assert report.scan_timestamp == SCANNED_AT
        assert report.total_files_scanned == 2

    def test_groups_sorted_by_size_descending(self):
        records = [
            make_record("/small1", 1, digest="s"), make_record("/small2", 1, digest="s"),
            make_record("/big1", 1000, digest="b"), make_record("/big2", 1000, digest="b"),
        ]

        report = DuplicateGrouperImpl().group(records)

        assert [g.original_member.path for g in report.groups] == ["/big1", "/small1"]

    def test_group_id_is_stable(self):
        records = [make_record("/a", 1, digest="d"), make_record("/b", 1, digest="d")]
        first = DuplicateGrouperImpl().group(records).groups[0].id
        second = DuplicateGrouperImpl().group(list(reversed(records))).groups[0].id
        assert first == second

    def test_stats_are_recorded(self):
        stats = ScanStats()
        records = [make_record("/a", 1, digest="d"), make_record("/b", 1, digest="d")]

        DuplicateGrouperImpl().group(records, stats=stats)

        assert stats.stage_stats["Exact matching"]["groups"] == 1
        assert "Merging groups" in stats.stage_stats

    def test_negative_threshold_rejected(self):
        with pytest.raises(ValueError):
            DuplicateGrouperImpl(threshold=-1)
