"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

services/eraser.py
All-or-nothing removal of the duplicates listed in a DuplicateReport.

PROTOCOL
--------
1. Plan     : every non-original member is revalidated (exists, same size, same
              SHA-256). Missing files are skipped, changed files are dropped with a
              warning, and duplicates whose original cannot be confirmed are kept.
2. Stage    : each planned file is renamed into a `.mde_erase_staging-XXXX/` area on
              its own filesystem (the erase directory or a scanned root, else the
              file's own directory). The move is journaled before it happens. Any
              failure, cancellation or Ctrl+C renames every staged file back and
              the erase fails as a whole.
3. Commit   : a commit marker is journaled in every area, then staged files are
              removed for good (or sent to the trash). Failures here are reported per
              file; the batch is past the rollback boundary and is never un-staged.
4. Finalize : the report sidecar is deleted once the commit has finished.

A staging area left behind by a crash is resolved by `recover()`, which runs at
the start of every erase: without a commit marker the files are moved back, with
one the deletion is finished.
"""
import json
import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from mde.core.config import DedupConfig
from mde.core.errors import OperationCancelledError, StagingError
from mde.core.hasher import HasherImpl
from mde.core.interfaces import Hasher, ReportStore
from mde.core.models import (
    DuplicateReport, EraseResult, ErasePlan, EraseStatus, GroupMember, PlannedDeletion,
    RecoveryResult, Stage)
from mde.services.file_service import FileService

logger = logging.getLogger(__name__)

_CONFIRMED = "confirmed"
_MISSING = "missing"
_CHANGED = "changed"


def _device_of(path: str) -> int:
    return os.stat(path).st_dev


def _staged_files(staging_dir: str) -> List[str]:
    """Every file left in a staging directory except its journal."""
    journal_path = os.path.join(staging_dir, DedupConfig.JOURNAL_FILENAME)
    return [
        os.path.join(root, f)
        for root, _, files in os.walk(staging_dir)
        for f in files
        if os.path.join(root, f) != journal_path
    ]


@dataclass(frozen=True)
class StagedFile:
    original: str
    staged: str
    size: int


class StagingJournal:
    """
    Append-only JSON-lines log of the staging area. Each line is flushed and
    synced before the filesystem operation it describes.
    """

    def __init__(self, path: str):
        self.path = path
        self._file = open(path, "a", encoding="utf-8")

    def record_stage(self, original: str, staged: str) -> None:
        self._write({"op": "stage", "original": original, "staged": staged})

    def record_commit(self) -> None:
        self._write({"op": "commit"})

    def record_rollback(self) -> None:
        self._write({"op": "rollback"})

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def _write(self, entry: dict) -> None:
        self._file.write(json.dumps(entry, ensure_ascii=False) + "\n")
        self._file.flush()
        os.fsync(self._file.fileno())

    @staticmethod
    def read(path: str) -> Tuple[List[Tuple[str, str]], bool]:
        """
        Returns ((original, staged) pairs, whether the batch is committed).
        A rollback marker written after the commit marker cancels it.
        """
        moves = []
        committed = False
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line_number, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        # A torn last line from a crash mid-write
                        logger.warning(f"Ignoring unreadable journal line {line_number} in {path}")
                        continue
                    op = entry.get("op")
                    if op == "stage":
                        moves.append((entry["original"], entry["staged"]))
                    elif op == "commit":
                        committed = True
                    elif op == "rollback":
                        committed = False
        except FileNotFoundError:
            logger.debug(f"No journal in staging area: {path}")
        return moves, committed


class StagingArea:
    """
    One staging directory and its journal. A rename never crosses filesystems,
    so an erase opens one area per device it touches.
    """

    def __init__(self, directory: str):
        self.path = tempfile.mkdtemp(prefix=DedupConfig.STAGING_PREFIX + "-", dir=directory)
        try:
            self.journal = StagingJournal(os.path.join(self.path, DedupConfig.JOURNAL_FILENAME))
        except OSError:
            shutil.rmtree(self.path, ignore_errors=True)
            raise
        self._count = 0
        logger.debug(f"Created staging directory: {self.path}")

    def next_target(self, original: str) -> str:
        """Fresh holder directory, so equal basenames never collide."""
        holder = os.path.join(self.path, f"{self._count:06d}")
        self._count += 1
        os.mkdir(holder)
        return os.path.join(holder, os.path.basename(original))


class AtomicEraser:
    """
    Deletes all planned duplicates or none of them.
    Single-threaded on purpose: one staging batch, one rollback path.
    """

    def __init__(
            self,
            hasher: Optional[Hasher] = None,
            file_service: type = FileService,
            report_store: Optional[ReportStore] = None,
            use_trash: bool = False
    ):
        self.hasher = hasher or HasherImpl(workers=1)
        self.file_service = file_service
        self.report_store = report_store
        self.use_trash = use_trash

    # =============================
    # Step 1: plan
    # =============================

    def plan(
            self,
            report: DuplicateReport,
            progress_callback: Optional[Callable[[str, int, object], None]] = None
    ) -> ErasePlan:
        """Revalidate every group of `report` against the filesystem. Touches nothing."""
        plan = ErasePlan()
        total = len(report.groups)

        for index, group in enumerate(report.groups, 1):
            original = group.original_member
            original_state, signature = self._confirm(original)
            if original_state == _CONFIRMED:
                plan.confirmed[original.path] = signature
            else:
                logger.warning(
                    f"Original {original.path} is {original_state}; "
                    f"keeping its {group.duplicate_count} duplicate(s)"
                )

            for member in group.duplicates:
                state, signature = self._confirm(member)
                if state == _MISSING:
                    logger.warning(f"Skipping {member.path}: no longer exists")
                    plan.skipped_missing.append(member.path)
                elif state == _CHANGED:
                    logger.warning(f"Skipping {member.path}: content changed since the scan")
                    plan.skipped_changed.append(member.path)
                elif original_state != _CONFIRMED:
                    plan.skipped_unconfirmed_original.append(member.path)
                else:
                    plan.confirmed[member.path] = signature
                    plan.deletions.append(PlannedDeletion(
                        path=member.path, size=member.size, group_id=group.id, original=original.path))

            if progress_callback:
                progress_callback(Stage.VALIDATING.value, index, total)

        logger.info(
            f"Erase plan: {len(plan.deletions)} file(s) to delete, {plan.skipped_count} skipped"
        )
        return plan

    def _confirm(self, member: GroupMember) -> Tuple[str, Optional[Tuple[int, int]]]:
        """Checks that `member` is still the file recorded at scan time."""
        try:
            st = os.stat(member.path, follow_symlinks=False)
        except FileNotFoundError:
            return _MISSING, None
        except OSError as e:
            logger.debug(f"Cannot stat {member.path}: {e}")
            return _CHANGED, None

        if not stat.S_ISREG(st.st_mode) or st.st_size != member.size:
            return _CHANGED, None
        try:
            digest = self.hasher.compute_digest(member.path)
        except OSError as e:
            logger.debug(f"Cannot re-hash {member.path}: {e}")
            return _CHANGED, None
        if digest != member.digest:
            return _CHANGED, None
        return _CONFIRMED, (st.st_size, st.st_mtime_ns)

    def recheck(self, plan: ErasePlan) -> ErasePlan:
        """
        Re-check a plan made a moment ago (e.g. before asking the user) without
        hashing again: every file it confirmed must still have the size and
        modification time it had when its digest was checked.
        """
        checked = ErasePlan(
            skipped_missing=list(plan.skipped_missing),
            skipped_changed=list(plan.skipped_changed),
            skipped_unconfirmed_original=list(plan.skipped_unconfirmed_original),
            confirmed=dict(plan.confirmed),
        )
        for deletion in plan.deletions:
            state = self._unchanged_since_plan(deletion.path, plan)
            if state == _MISSING:
                logger.warning(f"Skipping {deletion.path}: no longer exists")
                checked.skipped_missing.append(deletion.path)
            elif state == _CHANGED:
                logger.warning(f"Skipping {deletion.path}: modified after it was checked")
                checked.skipped_changed.append(deletion.path)
            elif self._unchanged_since_plan(deletion.original, plan) != _CONFIRMED:
                logger.warning(f"Keeping {deletion.path}: its original {deletion.original} moved or changed")
                checked.skipped_unconfirmed_original.append(deletion.path)
            else:
                checked.deletions.append(deletion)
        return checked

    @staticmethod
    def _unchanged_since_plan(path: str, plan: ErasePlan) -> str:
        signature = plan.confirmed.get(path)
        if signature is None:
            return _CHANGED
        try:
            st = os.stat(path, follow_symlinks=False)
        except FileNotFoundError:
            return _MISSING
        except OSError:
            return _CHANGED
        if not stat.S_ISREG(st.st_mode) or (st.st_size, st.st_mtime_ns) != signature:
            return _CHANGED
        return _CONFIRMED

    # =============================
    # Full erase
    # =============================

    def erase(
            self,
            report: DuplicateReport,
            directory: str,
            report_location: Optional[str] = None,
            stopped_flag: Optional[Callable[[], bool]] = None,
            progress_callback: Optional[Callable[[str, int, object], None]] = None,
            plan: Optional[ErasePlan] = None
    ) -> EraseResult:
        """
        Remove every confirmed duplicate of `report`, staging next to `directory`
        (or a scanned root on the same filesystem as the file). The report is
        deleted from `report_store` (at `report_location`, default `directory`)
        once the commit is done.

        `plan` is an earlier result of `plan()` the user already confirmed; it is
        re-checked with `recheck()` instead of hashing every file again.

        Raises:
            StagingError: a file could not be staged; everything was rolled back
            OperationCancelledError: stopped during staging; everything was rolled back
        """
        directory = os.path.abspath(directory)
        recovery = self.recover(*self._recovery_directories(directory, report))

        if plan is None:
            plan = self.plan(report, progress_callback=progress_callback)
        else:
            plan = self.recheck(plan)
        if plan.is_empty:
            logger.info("Nothing to erase")
            result = EraseResult(status=EraseStatus.NOTHING_TO_DO, plan=plan, recovery=recovery)
            result.report_deleted = self._finalize(directory, report_location)
            return result

        homes = self._staging_homes(directory, report)
        areas, staged = self._stage(plan, homes, stopped_flag, progress_callback)
        result = self._commit(plan, areas, staged, stopped_flag, progress_callback)
        result.recovery = recovery
        result.report_deleted = self._finalize(directory, report_location)
        return result

    @staticmethod
    def _staging_homes(directory: str, report: DuplicateReport) -> Dict[int, str]:
        """Device -> directory a staging area for that device goes in."""
        homes: Dict[int, str] = {}
        for candidate in [directory] + [os.path.abspath(root) for root in report.root_paths]:
            if not os.path.isdir(candidate):
                continue
            try:
                homes.setdefault(_device_of(candidate), candidate)
            except OSError as e:
                logger.debug(f"Cannot stat {candidate}: {e}")
        return homes

    @staticmethod
    def _recovery_directories(directory: str, report: DuplicateReport) -> List[str]:
        """Everywhere an earlier erase of this report may have left a staging area."""
        candidates = [directory] + [os.path.abspath(root) for root in report.root_paths]
        candidates += [os.path.dirname(m.path) for g in report.groups for m in g.members]
        return list(dict.fromkeys(candidates))

    # =============================
    # Step 2: stage
    # =============================

    def _stage(
            self,
            plan: ErasePlan,
            homes: Dict[int, str],
            stopped_flag: Optional[Callable[[], bool]],
            progress_callback: Optional[Callable[[str, int, object], None]]
    ) -> Tuple[List[StagingArea], List[StagedFile]]:
        areas: Dict[int, StagingArea] = {}
        staged: List[StagedFile] = []
        total = len(plan.deletions)
        current = None
        try:
            for index, deletion in enumerate(plan.deletions):
                current = deletion.path
                if stopped_flag and stopped_flag():
                    raise OperationCancelledError("Erase cancelled while staging files")

                area = self._area_for(deletion.path, homes, areas)
                target = area.next_target(deletion.path)
                area.journal.record_stage(deletion.path, target)
                # Tracked before the rename so an interruption between the two is still undone
                staged.append(StagedFile(original=deletion.path, staged=target, size=deletion.size))
                os.rename(deletion.path, target)
                logger.debug(f"Staged: {deletion.path} -> {target}")

                if progress_callback:
                    progress_callback(Stage.STAGING.value, index + 1, total)
        except OperationCancelledError:
            unrestored = self._abort(list(areas.values()), staged)
            if unrestored:
                raise StagingError(current, OperationCancelledError(), unrestored)
            raise
        except OSError as e:
            logger.error(f"Failed to stage {current}: {e}")
            unrestored = self._abort(list(areas.values()), staged)
            raise StagingError(current, e, unrestored) from e
        except BaseException:
            logger.warning("Staging interrupted, rolling back")
            self._abort(list(areas.values()), staged)
            raise

        return list(areas.values()), staged

    @staticmethod
    def _area_for(path: str, homes: Dict[int, str], areas: Dict[int, StagingArea]) -> StagingArea:
        parent = os.path.dirname(path)
        device = _device_of(parent)
        area = areas.get(device)
        if area is None:
            area = StagingArea(homes.get(device, parent))
            areas[device] = area
        return area

    def _abort(self, areas: List[StagingArea], staged: List[StagedFile]) -> List[Tuple[str, str]]:
        """Undo staging. Returns (original, staged) pairs that could not be moved back."""
        for area in areas:
            try:
                area.journal.record_rollback()
            except OSError as e:
                logger.warning(f"Cannot write rollback marker in {area.path}: {e}")
            area.journal.close()

        self._rollback(staged)

        unrestored = []
        for area in areas:
            # The journal names every move, including one whose bookkeeping was cut short
            moves, _ = StagingJournal.read(area.journal.path)
            self._resolve(area.path, moves, False, RecoveryResult())
            unrestored.extend((original, path) for original, path in moves if os.path.lexists(path))
        if unrestored:
            logger.error(f"{len(unrestored)} file(s) could not be restored; they remain in staging")
        return unrestored

    @staticmethod
    def _rollback(staged: List[StagedFile]) -> None:
        logger.warning(f"Rolling back {len(staged)} staged file(s)...")
        for item in reversed(staged):
            if not os.path.lexists(item.staged):
                # Journaled, but the rename never happened
                continue
            if os.path.lexists(item.original):
                # Never overwrite whatever now sits at the original path
                logger.error(f"Cannot restore {item.original}: path is occupied")
                continue
            try:
                os.rename(item.staged, item.original)
                logger.debug(f"Restored: {item.original}")
            except OSError as e:
                logger.error(f"Failed to restore {item.original} from {item.staged}: {e}")

    # =============================
    # Step 3: commit
    # =============================

    def _commit(
            self,
            plan: ErasePlan,
            areas: List[StagingArea],
            staged: List[StagedFile],
            stopped_flag: Optional[Callable[[], bool]],
            progress_callback: Optional[Callable[[str, int, object], None]]
    ) -> EraseResult:
        result = EraseResult(status=EraseStatus.SUCCESS, plan=plan)
        for area in areas:
            try:
                area.journal.record_commit()
            except OSError as e:
                # Without the marker a crash would roll back anyway, so do it now
                logger.error(f"Cannot write commit marker in {area.path}: {e}")
                unrestored = self._abort(areas, staged)
                raise StagingError(area.path, e, unrestored) from e
        for area in areas:
            area.journal.close()

        total = len(staged)
        for index, item in enumerate(staged):
            if stopped_flag and stopped_flag():
                self._mark_unfinished(result, staged[index:], "cancelled before removal")
                break
            try:
                self.file_service.dispose(item.staged, use_trash=self.use_trash)
            except (OSError, RuntimeError) as e:
                logger.error(f"Failed to remove staged copy of {item.original}: {e}")
                result.failed.append((item.original, str(e)))
            except KeyboardInterrupt:
                logger.warning("Interrupted while committing")
                self._mark_unfinished(result, staged[index:], "interrupted before removal")
                break
            else:
                result.erased.append(item.original)
                result.bytes_freed += item.size
            if progress_callback:
                progress_callback(Stage.COMMITTING.value, index + 1, total)

        for area in areas:
            if _staged_files(area.path):
                result.staging_dirs.append(area.path)
                continue
            try:
                shutil.rmtree(area.path)
            except OSError as e:
                # Only the journal and empty holders remain; recover() clears them next time
                logger.warning(f"Could not remove staging directory {area.path}: {e}")

        if result.failed:
            result.status = EraseStatus.PARTIAL
            logger.error(
                f"Erase partially failed: {len(result.erased)} deleted, {len(result.failed)} "
                f"left in {', '.join(result.staging_dirs)}"
            )
        else:
            logger.info(f"Permanently deleted {len(result.erased)} files")
        return result

    @staticmethod
    def _mark_unfinished(result: EraseResult, remaining: List[StagedFile], reason: str) -> None:
        for item in remaining:
            result.failed.append((item.original, reason))

    # =============================
    # Step 4: finalize
    # =============================

    def _finalize(self, directory: str, report_location: Optional[str]) -> bool:
        if self.report_store is None:
            return False
        return self.report_store.delete(report_location or directory)

    # =============================
    # Crash recovery
    # =============================

    def recover(self, *directories: str) -> RecoveryResult:
        """Resolve staging areas left in any of `directories` by an interrupted erase."""
        result = RecoveryResult()
        for directory in dict.fromkeys(os.path.abspath(d) for d in directories):
            try:
                names = sorted(os.listdir(directory))
            except OSError as e:
                logger.debug(f"Cannot list {directory}: {e}")
                continue

            for name in names:
                staging_dir = os.path.join(directory, name)
                if not name.startswith(DedupConfig.STAGING_PREFIX) or not os.path.isdir(staging_dir):
                    continue
                logger.warning(f"Found leftover staging directory: {staging_dir}")
                moves, committed = StagingJournal.read(os.path.join(staging_dir, DedupConfig.JOURNAL_FILENAME))
                self._resolve(staging_dir, moves, committed, result)
        return result

    def _resolve(
            self,
            staging_dir: str,
            moves: List[Tuple[str, str]],
            committed: bool,
            result: RecoveryResult
    ) -> None:
        """Finish (committed) or undo the journaled moves of one staging area."""
        for original, staged in moves:
            if not os.path.lexists(staged):
                continue
            if committed:
                try:
                    self.file_service.dispose(staged, use_trash=self.use_trash)
                    result.purged.append(original)
                except (OSError, RuntimeError) as e:
                    result.unresolved.append((staged, str(e)))
            elif os.path.lexists(original):
                result.unresolved.append((staged, f"original path is occupied: {original}"))
            else:
                try:
                    os.rename(staged, original)
                    result.restored.append(original)
                    logger.info(f"Recovered: {original}")
                except OSError as e:
                    result.unresolved.append((staged, str(e)))

        leftovers = _staged_files(staging_dir)
        if leftovers:
            known = {staged for staged, _ in result.unresolved}
            for path in leftovers:
                if path not in known:
                    result.unresolved.append((path, "not listed in the staging journal"))
            logger.error(f"Staging directory {staging_dir} still holds {len(leftovers)} file(s)")
        else:
            shutil.rmtree(staging_dir, ignore_errors=True)
