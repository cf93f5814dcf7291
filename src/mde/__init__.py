"""
media-duplicate-eraser (mde) — find duplicate photos and videos and erase them safely.

Core features:
- Exact duplicates by SHA-256 of the full content
- Visually identical images by perceptual hash (pHash, Hamming distance)
- Exact and perceptual matches merged transitively into one group per picture
- Report written to duplicates.json between scan and erase
- All-or-nothing erase: files are revalidated, staged, then committed or rolled back
"""
import os

# Get version
try:
    from importlib.metadata import version as _version
    __version__ = _version("media-duplicate-eraser")
except Exception:
    try:
        import tomllib  # Python 3.11+
    except ImportError:
        import tomli as tomllib  # Python < 3.11: pip install tomli

    _pyproject = os.path.join(os.path.dirname(__file__), "..", "..", "pyproject.toml")
    with open(_pyproject, "rb") as f:
        __version__ = tomllib.load(f)["project"]["version"]

# Public API: only what users should import directly
from mde.commands import ScanCommand, EraseCommand, CleanCommand
from mde.core import (
    ScanParams, MediaFilter, GroupKind, DuplicateGroup, DuplicateReport, FileRecord,
    DuplicateGrouperImpl, HasherImpl, FileScannerImpl)
from mde.services import AtomicEraser, JsonReportStore, InMemoryReportStore, FileService
from mde.utils.convert_utils import ConvertUtils

__all__ = [
    "ScanCommand",
    "EraseCommand",
    "CleanCommand",
    "ScanParams",
    "MediaFilter",
    "GroupKind",
    "DuplicateGroup",
    "DuplicateReport",
    "FileRecord",
    "DuplicateGrouperImpl",
    "HasherImpl",
    "FileScannerImpl",
    "AtomicEraser",
    "JsonReportStore",
    "InMemoryReportStore",
    "FileService",
    "ConvertUtils",
    "__version__",
]
