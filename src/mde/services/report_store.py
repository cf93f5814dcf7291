"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

services/report_store.py
Persistence of DuplicateReport: the hand-off between `mde scan` and `mde erase` / `mde clean`.

The sidecar is JSON with an explicit "version" tag. Readers only accept the
version they were written for; anything else is rejected instead of being
half-understood.
"""
import json
import logging
import os
import tempfile
from datetime import datetime
from typing import Any, Dict, Optional

from mde.core.config import DedupConfig
from mde.core.errors import ReportFormatError, ReportNotFoundError, ReportVersionError
from mde.core.interfaces import ReportStore
from mde.core.models import DuplicateGroup, DuplicateReport, GroupKind, GroupMember

logger = logging.getLogger(__name__)


# =============================
# Schema
# =============================

def report_to_dict(report: DuplicateReport) -> Dict[str, Any]:
    return {
        "version": DedupConfig.REPORT_VERSION,
        "scanned_at": report.scan_timestamp.isoformat(),
        "root_paths": list(report.root_paths),
        "total_files_scanned": report.total_files_scanned,
        "error_count": report.error_count,
        # Informational only, recomputed on load
        "duplicate_groups": len(report.groups),
        "total_duplicates": report.duplicate_count(),
        "groups": [
            {
                "id": group.id,
                "kind": group.kind.value,
                "members": [
                    {
                        "path": member.path,
                        "size": member.size,
                        "digest": member.digest,
                        "original": index == group.original,
                    }
                    for index, member in enumerate(group.members)
                ],
            }
            for group in report.groups
        ],
    }


def report_from_dict(data: Any, location: str = "<memory>") -> DuplicateReport:
    """
    Rebuild a report from its JSON form.

    Raises:
        ReportVersionError: "version" is missing or not the supported one
        ReportFormatError: any other structural problem
    """
    if not isinstance(data, dict):
        raise ReportFormatError(location, "top-level value must be an object")

    version = data.get("version")
    if version != DedupConfig.REPORT_VERSION:
        raise ReportVersionError(location, version, DedupConfig.REPORT_VERSION)

    try:
        scanned_at = datetime.fromisoformat(_require(data, "scanned_at", str, location))
        root_paths = _require(data, "root_paths", list, location)
        if not all(isinstance(p, str) for p in root_paths):
            raise ReportFormatError(location, "'root_paths' must be a list of strings")

        groups = []
        seen_paths = set()
        for raw_group in _require(data, "groups", list, location):
            group = _group_from_dict(raw_group, location)
            for path in group.paths:
                if path in seen_paths:
                    raise ReportFormatError(location, f"path listed in more than one group: {path}")
                seen_paths.add(path)
            groups.append(group)

        return DuplicateReport(
            scan_timestamp=scanned_at,
            root_paths=root_paths,
            total_files_scanned=_require(data, "total_files_scanned", int, location),
            error_count=_require(data, "error_count", int, location),
            groups=groups,
        )
    except ReportFormatError:
        raise
    except (TypeError, ValueError, KeyError) as e:
        raise ReportFormatError(location, str(e)) from e


def _group_from_dict(raw: Any, location: str) -> DuplicateGroup:
    if not isinstance(raw, dict):
        raise ReportFormatError(location, "each group must be an object")

    members = []
    originals = []
    for index, raw_member in enumerate(_require(raw, "members", list, location)):
        if not isinstance(raw_member, dict):
            raise ReportFormatError(location, "each group member must be an object")
        path = _require(raw_member, "path", str, location)
        if "\0" in path:
            raise ReportFormatError(location, "member paths must not contain NUL characters")
        members.append(GroupMember(
            path=path,
            size=_require(raw_member, "size", int, location),
            digest=_require(raw_member, "digest", str, location),
        ))
        if _require(raw_member, "original", bool, location):
            originals.append(index)

    group_id = _require(raw, "id", str, location)
    if len(originals) != 1:
        raise ReportFormatError(location, f"group {group_id} must have exactly one original, found {len(originals)}")

    # DuplicateGroup validates member count and duplicate paths (ValueError)
    return DuplicateGroup(
        id=group_id,
        kind=GroupKind(_require(raw, "kind", str, location)),
        members=members,
        original=originals[0],
    )


def _require(data: Dict[str, Any], key: str, expected: type, location: str) -> Any:
    if key not in data:
        raise ReportFormatError(location, f"missing field '{key}'")
    value = data[key]
    # bool is a subclass of int; never accept it where a number is expected
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise ReportFormatError(location, f"field '{key}' must be of type {expected.__name__}")
    return value


# =============================
# Stores
# =============================

class JsonReportStore(ReportStore):
    """
    Stores the report as a JSON sidecar.
    `location` is either a directory (the sidecar is `<dir>/duplicates.json`)
    or the path of the report file itself.
    """

    def __init__(self, filename: str = DedupConfig.REPORT_FILENAME):
        self.filename = filename

    def path_for(self, location: str) -> str:
        location = os.path.abspath(os.path.expanduser(str(location)))
        if os.path.isdir(location):
            return os.path.join(location, self.filename)
        return location

    def save(self, report: DuplicateReport, location: str) -> str:
        path = self.path_for(location)
        payload = json.dumps(report_to_dict(report), indent=2, ensure_ascii=False)

        # Write to a temporary file and swap it in, so a crash never leaves half a report
        directory = os.path.dirname(path) or "."
        fd, tmp_path = tempfile.mkstemp(prefix=".duplicates-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.info(f"Duplicates report written to {path}")
        return path

    def load(self, location: str) -> DuplicateReport:
        path = self.path_for(location)
        logger.debug(f"Loading duplicates report from {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ReportNotFoundError(path) from None
        except IsADirectoryError:
            raise ReportNotFoundError(path) from None
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ReportFormatError(path, f"invalid JSON: {e}") from e
        return report_from_dict(data, path)

    def exists(self, location: str) -> bool:
        return os.path.isfile(self.path_for(location))

    def delete(self, location: str) -> bool:
        path = self.path_for(location)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.debug(f"Duplicates report not found at: {path}")
            return False
        logger.info(f"Duplicates report removed: {path}")
        return True


class InMemoryReportStore(ReportStore):
    """Keeps serialized reports in a dict. Goes through the same schema as the JSON store."""

    def __init__(self):
        self._reports: Dict[str, str] = {}

    @staticmethod
    def _key(location: str) -> str:
        return os.path.normpath(str(location))

    def save(self, report: DuplicateReport, location: str) -> str:
        key = self._key(location)
        self._reports[key] = json.dumps(report_to_dict(report))
        return key

    def load(self, location: str) -> DuplicateReport:
        key = self._key(location)
        raw: Optional[str] = self._reports.get(key)
        if raw is None:
            raise ReportNotFoundError(key)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ReportFormatError(key, f"invalid JSON: {e}") from e
        return report_from_dict(data, key)

    def put_raw(self, location: str, raw: str) -> None:
        """Store arbitrary text as if it had been persisted (e.g. a corrupt report)."""
        self._reports[self._key(location)] = raw

    def exists(self, location: str) -> bool:
        return self._key(location) in self._reports

    def delete(self, location: str) -> bool:
        return self._reports.pop(self._key(location), None) is not None
