"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

Command orchestrators for scan, erase and clean.
This is the single place where the core pieces are wired together; any front-end
(the CLI today) only parses input and renders the results.
"""
import logging
import os
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from mde.core.errors import OperationCancelledError, ReportNotFoundError
from mde.core.grouper import DuplicateGrouperImpl
from mde.core.hasher import HasherImpl
from mde.core.interfaces import DuplicateGrouper, Hasher, ReportStore
from mde.core.models import DuplicateReport, ErasePlan, EraseResult, ScanParams, ScanStats, Stage
from mde.core.scanner import FileScannerImpl
from mde.services.eraser import AtomicEraser
from mde.services.file_service import FileService
from mde.services.report_store import JsonReportStore

logger = logging.getLogger(__name__)


class ScanCommand:
    """
    Orchestrates a scan:
    1. Enumerate files under the roots
    2. Hash and fingerprint them (thread pool)
    3. Group duplicates
    4. Persist the report

    Usage:
        command = ScanCommand()
        report, stats = command.execute(
            ScanParams(root_paths=["~/Pictures"]),
            progress_callback=cli_progress_printer,
            stopped_flag=signal_handler_check
        )
        print(command.report_path)
    """

    def __init__(
            self,
            store: Optional[ReportStore] = None,
            hasher: Optional[Hasher] = None,
            grouper: Optional[DuplicateGrouper] = None
    ):
        self.store = store or JsonReportStore()
        self.hasher = hasher
        self.grouper = grouper or DuplicateGrouperImpl()
        self.report_path: Optional[str] = None

    def execute(
            self,
            params: ScanParams,
            progress_callback: Optional[Callable[[str, int, Optional[int]], None]] = None,
            stopped_flag: Optional[Callable[[], bool]] = None
    ) -> Tuple[DuplicateReport, ScanStats]:
        """
        Args:
            params: Validated scan parameters
            progress_callback: (stage: str, current: int, total: Optional[int]) -> None
            stopped_flag: () -> bool (returns True if operation should stop)

        Returns:
            Tuple of (report, statistics)

        Raises:
            PathNotFoundError / InvalidPathError: a root cannot be scanned
            OperationCancelledError: stopped before grouping; nothing is written
        """
        stats = ScanStats()
        start_time = time.time()
        scanned_at = datetime.now(timezone.utc)

        # Step 1: enumerate
        scanner = FileScannerImpl(
            root_paths=params.root_paths,
            recursive=params.recursive,
            include_hidden=params.include_hidden,
            media_filter=params.media_filter
        )
        stage_start = time.time()
        entries = scanner.scan(stopped_flag=stopped_flag, progress_callback=progress_callback)
        self._check_stopped(stopped_flag)
        stats.update_stage(Stage.SCANNING.value, 0, len(entries), time.time() - stage_start)

        # Step 2: hash (returns only once every file is done)
        hasher = self.hasher or HasherImpl(workers=params.workers)
        stage_start = time.time()
        records = hasher.hash_all(entries, stopped_flag=stopped_flag, progress_callback=progress_callback)
        self._check_stopped(stopped_flag)
        stats.update_stage(Stage.HASHING.value, 0, len(records), time.time() - stage_start)
        stats.read_errors = sum(1 for r in records if r.read_error)
        stats.fingerprint_failures = sum(1 for r in records if r.fingerprint_error)
        if stats.fingerprint_failures:
            logger.warning(f"{stats.fingerprint_failures} image(s) could not be decoded; "
                           f"they are compared byte-for-byte only")

        # Step 3: group
        report = self.grouper.group(records, root_paths=params.root_paths, scanned_at=scanned_at, stats=stats)

        # Step 4: persist
        self.report_path = self.store.save(report, params.report_location)
        stats.total_time = time.time() - start_time
        return report, stats

    @staticmethod
    def _check_stopped(stopped_flag: Optional[Callable[[], bool]]) -> None:
        if stopped_flag and stopped_flag():
            raise OperationCancelledError("Scan cancelled by user")


class EraseCommand:
    """
    Loads the report written by a scan and erases its duplicates atomically.
    `location` is a scanned directory holding duplicates.json, or the report file itself.
    """

    def __init__(
            self,
            store: Optional[ReportStore] = None,
            use_trash: bool = False,
            hasher: Optional[Hasher] = None,
            file_service: type = FileService
    ):
        self.store = store or JsonReportStore()
        self.eraser = AtomicEraser(
            hasher=hasher,
            file_service=file_service,
            report_store=self.store,
            use_trash=use_trash
        )

    def load(self, location: str) -> Optional[DuplicateReport]:
        """
        The persisted report, or None if there is none.
        Malformed or version-mismatched reports raise ReportFormatError / ReportVersionError.
        """
        try:
            return self.store.load(location)
        except ReportNotFoundError:
            logger.info(f"No duplicates report at {location}: nothing to erase")
            return None

    def preview(self, location: str, report: Optional[DuplicateReport] = None) -> Optional[ErasePlan]:
        """What an erase would do right now, without touching anything."""
        report = report or self.load(location)
        if report is None:
            return None
        return self.eraser.plan(report)

    def execute(
            self,
            location: str,
            report: Optional[DuplicateReport] = None,
            stopped_flag: Optional[Callable[[], bool]] = None,
            progress_callback: Optional[Callable[[str, int, Optional[int]], None]] = None,
            plan: Optional[ErasePlan] = None
    ) -> Optional[EraseResult]:
        """
        `plan` is the result of `preview()` the user agreed to; it is re-checked
        cheaply instead of being rebuilt.

        Returns:
            EraseResult, or None when there is no report to act on

        Raises:
            ReportFormatError / ReportVersionError: the report cannot be trusted
            StagingError / OperationCancelledError: nothing was deleted
        """
        report = report or self.load(location)
        if report is None:
            return None

        return self.eraser.erase(
            report,
            directory=self.staging_directory(location, report),
            report_location=location,
            stopped_flag=stopped_flag,
            progress_callback=progress_callback,
            plan=plan
        )

    @staticmethod
    def staging_directory(location: str, report: DuplicateReport) -> str:
        """
        Where the erase is anchored: the given directory, else the first scanned
        directory that still exists, else the directory holding the report file.
        Files on another filesystem are staged under their own scanned root.
        """
        location = os.path.abspath(os.path.expanduser(str(location)))
        if os.path.isdir(location):
            return location
        for root in report.root_paths:
            if os.path.isdir(root):
                return root
        return os.path.dirname(location)


class CleanCommand:
    """Forget a previous scan: remove its report without reading it."""

    def __init__(self, store: Optional[ReportStore] = None):
        self.store = store or JsonReportStore()

    def execute(self, location: str) -> bool:
        """True if a report was removed, False if there was none."""
        return self.store.delete(location)
