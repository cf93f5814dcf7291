"""
Shared fixtures for scan, grouping and erase tests.
Creates isolated temporary directories with controlled files and generated images.
"""
import hashlib
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

import pytest
from PIL import Image

from mde.core.models import (
    DuplicateGroup, DuplicateReport, FileRecord, GroupKind, GroupMember)


def make_blocky_image(seed: int, size: int = 256, blocks: int = 8) -> Image.Image:
    """
    Random grid of flat colour blocks. Different seeds give unrelated pictures;
    the same seed always gives the same picture.
    """
    rng = random.Random(seed)
    small = Image.new("RGB", (blocks, blocks))
    small.putdata([
        (rng.randint(0, 255), rng.randint(0, 255), rng.randint(0, 255))
        for _ in range(blocks * blocks)
    ])
    return small.resize((size, size), Image.NEAREST)


def sha256_of(path) -> str:
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


def make_record(
        path: str,
        size: int = 100,
        digest: Optional[str] = None,
        fingerprint: Optional[str] = None,
        read_error: Optional[str] = None
) -> FileRecord:
    """FileRecord with a digest derived from `path` unless one is given."""
    if digest is None and read_error is None:
        digest = hashlib.sha256(path.encode()).hexdigest()
    return FileRecord(
        path=path,
        size=size,
        content_digest=digest,
        perceptual_fingerprint=fingerprint,
        read_error=read_error,
    )


def report_for(*groups: DuplicateGroup, root: str = "/") -> DuplicateReport:
    return DuplicateReport(
        scan_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        root_paths=[root],
        total_files_scanned=sum(len(g.members) for g in groups),
        error_count=0,
        groups=list(groups),
    )


def exact_group_of(*paths: Path, group_id: str = "g1") -> DuplicateGroup:
    """Exact group built from files on disk; the first path is the original."""
    members = [GroupMember(path=str(p), size=p.stat().st_size, digest=sha256_of(p)) for p in paths]
    return DuplicateGroup(id=group_id, kind=GroupKind.EXACT, members=members, original=0)


@pytest.fixture
def temp_dir(tmp_path) -> Path:
    """Isolated temporary directory, cleaned up by pytest."""
    return tmp_path


@pytest.fixture
def test_files(temp_dir) -> Dict[str, Path]:
    """
    Controlled files for exact-duplicate scenarios:
    - 2 identical files (1KB of 'A') plus a third copy in a subdirectory
    - 2 identical files (2KB of 'B')
    - 2 unique files
    - 2 empty files (identical to each other)
    - 1 hidden file identical to the 'A' files
    """
    files = {}

    content_a = b"A" * 1024
    files["dup1_a"] = temp_dir / "dup1_a.txt"
    files["dup1_b"] = temp_dir / "dup1_b.txt"
    files["dup1_a"].write_bytes(content_a)
    files["dup1_b"].write_bytes(content_a)

    content_b = b"B" * 2048
    files["dup2_a"] = temp_dir / "dup2_a.txt"
    files["dup2_b"] = temp_dir / "dup2_b.txt"
    files["dup2_a"].write_bytes(content_b)
    files["dup2_b"].write_bytes(content_b)

    files["unique1"] = temp_dir / "unique1.txt"
    files["unique1"].write_bytes(b"C" * 1500)
    files["unique2"] = temp_dir / "unique2.txt"
    files["unique2"].write_bytes(b"D" * 2500)

    files["empty1"] = temp_dir / "empty1.txt"
    files["empty1"].write_bytes(b"")
    files["empty2"] = temp_dir / "empty2.txt"
    files["empty2"].write_bytes(b"")

    files["hidden"] = temp_dir / ".hidden.txt"
    files["hidden"].write_bytes(content_a)

    subdir = temp_dir / "subdir"
    subdir.mkdir()
    files["sub_dup"] = subdir / "dup_in_subdir.txt"
    files["sub_dup"].write_bytes(content_a)

    return files


@pytest.fixture
def image_files(temp_dir) -> Dict[str, Path]:
    """
    Images for perceptual scenarios:
    - photo.png and a byte-identical copy
    - photo_resaved.jpg: same picture re-encoded as JPEG
    - photo_small.png: same picture at half resolution
    - other.png: an unrelated picture
    - broken.jpg: not an image at all
    """
    files = {}
    photo = make_blocky_image(seed=1)

    files["photo"] = temp_dir / "photo.png"
    photo.save(files["photo"])
    files["photo_copy"] = temp_dir / "photo_copy.png"
    files["photo_copy"].write_bytes(files["photo"].read_bytes())

    files["resaved"] = temp_dir / "photo_resaved.jpg"
    photo.save(files["resaved"], quality=90)

    files["small"] = temp_dir / "photo_small.png"
    photo.resize((128, 128), Image.BILINEAR).save(files["small"])

    files["other"] = temp_dir / "other.png"
    make_blocky_image(seed=99).save(files["other"])

    files["broken"] = temp_dir / "broken.jpg"
    files["broken"].write_bytes(b"this is not a jpeg")

    return files
