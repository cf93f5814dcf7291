#!/usr/bin/env python3
"""
mde CLI — find duplicate photos and videos, then erase them safely.

  scan   : hash every file, group exact and visually identical copies, write duplicates.json
  erase  : re-check the files listed in duplicates.json and delete the duplicates, all or nothing
  clean  : remove duplicates.json without deleting anything
"""
from __future__ import annotations  # Enable postponed evaluation of annotations (PEP 563)
import argparse
import logging
import os
import sys
import time
from typing import List, NoReturn, Optional

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)-8s | %(name)-25s | %(message)s"
)

# === EARLY DEPENDENCY VALIDATION ===
_MISSING_DEPS = []
try:
    import send2trash  # noqa: F401
except ImportError:
    _MISSING_DEPS.append("Send2Trash")

try:
    import xxhash  # noqa: F401
except ImportError:
    _MISSING_DEPS.append("xxhash")

try:
    import imagehash  # noqa: F401
    import PIL  # noqa: F401
except ImportError:
    _MISSING_DEPS.append("Pillow ImageHash")

if _MISSING_DEPS:
    print("❌ Missing required dependencies:", file=sys.stderr)
    print(f"   pip install {' '.join(_MISSING_DEPS)}", file=sys.stderr)
    print("\nOr install the package with all dependencies:", file=sys.stderr)
    print("   pip install media-duplicate-eraser", file=sys.stderr)
    sys.exit(1)

# === NORMAL IMPORTS (after validation) ===
from mde import __version__
from mde.aliases import EPILOG_TEXT, ERASE_HELP_TEXT, MEDIA_ALIASES, MEDIA_CHOICES, MEDIA_HELP_TEXT
from mde.commands import CleanCommand, EraseCommand, ScanCommand
from mde.core.errors import MdeError, OperationCancelledError, ReportError, StagingError
from mde.core.models import DuplicateReport, ErasePlan, EraseResult, EraseStatus, GroupKind, ScanParams
from mde.utils.convert_utils import ConvertUtils

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


class CLIApplication:
    """Main CLI application controller."""

    def __init__(self):
        self.start_time: float = time.time()
        self.verbosity: int = 0
        self.quiet: bool = False

        # Fix encoding for Windows consoles to prevent UnicodeEncodeError
        for stream in (sys.stdout, sys.stderr):
            if hasattr(stream, "reconfigure"):
                stream.reconfigure(encoding="utf-8")

    @staticmethod
    def parse_args(args=None) -> argparse.Namespace:
        """Parse command-line arguments."""
        # Verbosity flags are accepted before and after the subcommand.
        # Subcommands only set them when given, so they never reset the global ones.
        common = argparse.ArgumentParser(add_help=False)
        CLIApplication._add_output_options(common, argparse.SUPPRESS, argparse.SUPPRESS)

        parser = argparse.ArgumentParser(
            prog="mde",
            description="mde — media duplicate eraser with atomic, revalidated deletion",
            formatter_class=argparse.RawTextHelpFormatter,
            epilog=EPILOG_TEXT
        )
        CLIApplication._add_output_options(parser, 0, False)
        parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

        subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
        subparsers.required = True

        # scan
        scan = subparsers.add_parser(
            "scan",
            parents=[common],
            formatter_class=argparse.RawTextHelpFormatter,
            help="Find duplicates and write duplicates.json"
        )
        scan.add_argument(
            "paths",
            nargs="*",
            default=["."],
            metavar="PATH",
            help="Directories (or files) to scan. Default: current directory"
        )
        scan.add_argument(
            "--no-recursive",
            action="store_false",
            dest="recursive",
            help="Only scan the top level of each directory"
        )
        scan.add_argument(
            "--include-hidden",
            action="store_true",
            help="Also scan files and directories whose name starts with '.'"
        )
        scan.add_argument(
            "--output", "-o",
            type=str,
            default=None,
            metavar="OUTPUT",
            help="Where to write the report (file or directory). Default: the first PATH"
        )
        scan.add_argument(
            "--media",
            choices=MEDIA_CHOICES,
            default="all",
            type=str,
            help=MEDIA_HELP_TEXT
        )
        scan.add_argument(
            "--workers",
            type=int,
            default=None,
            metavar="N",
            help="Hashing threads. Default: one per CPU core"
        )

        # erase
        erase = subparsers.add_parser(
            "erase",
            parents=[common],
            formatter_class=argparse.RawTextHelpFormatter,
            help="Delete the duplicates listed in duplicates.json",
            description=ERASE_HELP_TEXT
        )
        erase.add_argument(
            "path",
            nargs="?",
            default=".",
            metavar="PATH",
            help="Scanned directory, or the report file itself. Default: current directory"
        )
        erase.add_argument(
            "--yes", "-y",
            action="store_true",
            help="Do not ask for confirmation (for automation/scripts)"
        )
        erase.add_argument(
            "--trash",
            action="store_true",
            help="Move duplicates to the system trash instead of deleting them permanently"
        )
        erase.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be deleted and exit"
        )

        # clean
        clean = subparsers.add_parser(
            "clean",
            parents=[common],
            help="Remove duplicates.json without deleting anything"
        )
        clean.add_argument(
            "path",
            nargs="?",
            default=".",
            metavar="PATH",
            help="Scanned directory, or the report file itself. Default: current directory"
        )

        return parser.parse_args(args)

    @staticmethod
    def _add_output_options(parser: argparse.ArgumentParser, verbose_default, quiet_default) -> None:
        parser.add_argument(
            "--verbose", "-v",
            action="count",
            default=verbose_default,
            help="More output: -v shows progress and info logs, -vv debug logs"
        )
        parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            default=quiet_default,
            help="Only print errors"
        )

    @staticmethod
    def configure_logging(verbosity: int, quiet: bool) -> None:
        if quiet:
            level = logging.ERROR
        elif verbosity >= 2:
            level = logging.DEBUG
        elif verbosity == 1:
            level = logging.INFO
        else:
            level = logging.WARNING
        logging.getLogger().setLevel(level)

    def validate_args(self, args: argparse.Namespace) -> None:
        """Validate command-line arguments before execution."""
        if args.command == "scan":
            if args.workers is not None and args.workers < 1:
                self.error_exit("--workers must be at least 1")
            for path in args.paths:
                if not os.path.exists(os.path.expanduser(path)):
                    self.error_exit(f"Path not found: {path}")

        if args.command == "erase" and not (args.yes or args.dry_run):
            # Prevent interactive confirmation in non-TTY environments
            if not sys.stdin.isatty() or not sys.stdout.isatty():
                self.error_exit(
                    "Cannot request interactive confirmation in non-interactive session.\n"
                    "Use --yes to proceed without confirmation when piping output or running in scripts."
                )

    def create_params(self, args: argparse.Namespace) -> ScanParams:
        """Create ScanParams from CLI arguments."""
        try:
            return ScanParams(
                root_paths=list(args.paths),
                recursive=args.recursive,
                include_hidden=args.include_hidden,
                media_filter=MEDIA_ALIASES[args.media],
                output=args.output,
                workers=args.workers
            )
        except ValueError as e:
            self.error_exit(f"Parameter error: {e}")

    def progress_callback(self, stage: str, current: int, total: Optional[int]) -> None:
        """CLI progress callback - shows progress in console."""
        if self.verbosity < 1 or self.quiet:
            return

        if total and total > 0:
            percent = (current / total) * 100
            sys.stderr.write(f"\r  [{stage}] {current}/{total} ({percent:.1f}%)")
        else:
            sys.stderr.write(f"\r  [{stage}] {current} files processed...")
        sys.stderr.flush()

    @staticmethod
    def stopped_flag() -> bool:
        """Ctrl+C is delivered as KeyboardInterrupt, so there is no other stop source."""
        return False

    # =============================
    # scan
    # =============================

    def run_scan(self, args: argparse.Namespace) -> int:
        params = self.create_params(args)
        if not self.quiet:
            print(f"Scanning: {', '.join(params.root_paths)}")

        command = ScanCommand()
        report, stats = command.execute(
            params,
            progress_callback=self.progress_callback,
            stopped_flag=self.stopped_flag
        )
        if self.verbosity >= 1 and not self.quiet:
            sys.stderr.write("\n")

        self.output_scan_results(report, stats.total_time)
        if self.verbosity >= 1 and not self.quiet:
            print("\n" + stats.print_summary())
        if not self.quiet:
            print(f"\nReport written to {command.report_path}")
            if report.groups:
                print(f"Review it, then run: mde erase {self._quote(params.report_location)}")
        return EXIT_OK

    def output_scan_results(self, report: DuplicateReport, elapsed: float) -> None:
        if self.quiet:
            return
        summary = report.summary()

        line = (f"\nScanned {ConvertUtils.plural(summary.total_files_scanned, 'file')} "
                f"in {ConvertUtils.seconds_to_human(elapsed)}")
        if summary.error_count:
            line += f" ({summary.error_count} unreadable)"
        print(line)

        if not report.groups:
            print("No duplicates found.")
            return

        print(f"Found {ConvertUtils.plural(summary.group_count, 'duplicate group')}: "
              f"{ConvertUtils.plural(summary.duplicate_count, 'file')} to remove, "
              f"{ConvertUtils.bytes_to_human(summary.reclaimable_bytes)} reclaimable")
        for kind in GroupKind:
            groups = summary.groups_by_kind[kind]
            if groups:
                print(f"  {kind.display_name:<11}: {ConvertUtils.plural(groups, 'group')}, "
                      f"{ConvertUtils.plural(summary.duplicates_by_kind[kind], 'duplicate')}")

        if self.verbosity >= 1:
            for idx, group in enumerate(report.groups, 1):
                print(f"\n📁 Group {idx} | {group.kind.display_name} | Files: {len(group.members)}")
                for position, member in enumerate(group.members):
                    marker = "[KEEP]" if position == group.original else "[DEL] "
                    print(f"   {marker} {member.path} [{ConvertUtils.bytes_to_human(member.size)}]")

    # =============================
    # erase
    # =============================

    def run_erase(self, args: argparse.Namespace) -> int:
        command = EraseCommand(use_trash=args.trash)
        try:
            report = command.load(args.path)
        except ReportError as e:
            self.error_exit(f"{e}\nNothing was deleted. Run 'mde scan' again or 'mde clean' to discard it.")

        if report is None:
            if not self.quiet:
                print(f"Nothing to erase: no duplicates report found at {os.path.abspath(args.path)}")
            return EXIT_OK

        plan = None
        if args.dry_run or not args.yes:
            plan = command.preview(args.path, report)
            self.output_plan(plan, use_trash=args.trash)
            if args.dry_run:
                if not self.quiet:
                    print("\nDry run: nothing was deleted.")
                return EXIT_OK
            if not plan.is_empty and not self.confirm(plan, args.trash):
                if not self.quiet:
                    print("Erase cancelled by user.")
                return EXIT_OK

        try:
            result = command.execute(
                args.path,
                report=report,
                stopped_flag=self.stopped_flag,
                progress_callback=self.progress_callback,
                plan=plan
            )
        except StagingError as e:
            for original, staged in e.unrestored:
                print(f"   ⚠️  {original} is still at {staged}", file=sys.stderr)
            self.error_exit(f"Erase aborted: {e}")
        except OperationCancelledError as e:
            print(f"\n⚠️  {e}. Nothing was deleted.", file=sys.stderr)
            return EXIT_INTERRUPTED

        if self.verbosity >= 1 and not self.quiet:
            sys.stderr.write("\n")
        return self.output_erase_result(result, use_trash=args.trash)

    def output_plan(self, plan: ErasePlan, use_trash: bool) -> None:
        if self.quiet:
            return
        action = "Move to trash" if use_trash else "Delete"
        for deletion in plan.deletions:
            print(f"   [DEL]  {deletion.path} [{ConvertUtils.bytes_to_human(deletion.size)}]")
        self._print_skipped(plan)
        print("=" * 60)
        print(f"{action}: {ConvertUtils.plural(len(plan.deletions), 'file')} "
              f"({ConvertUtils.bytes_to_human(plan.total_bytes)})")
        if plan.skipped_count:
            print(f"Skipped: {ConvertUtils.plural(plan.skipped_count, 'file')}")

    @staticmethod
    def _print_skipped(plan: ErasePlan) -> None:
        for path in plan.skipped_missing:
            print(f"   [GONE] {path}")
        for path in plan.skipped_changed:
            print(f"   [CHANGED] {path}")
        for path in plan.skipped_unconfirmed_original:
            print(f"   [KEPT] {path} (its original is missing or changed)")

    def confirm(self, plan: ErasePlan, use_trash: bool) -> bool:
        # Safety check: confirm we're still in interactive mode
        if not sys.stdin.isatty() or not sys.stdout.isatty():
            self.error_exit(
                "Lost interactive terminal during operation. "
                "Use --yes to proceed in non-interactive environments."
            )
        verb = "move to trash" if use_trash else "permanently delete"
        response = input(f"\nAre you sure you want to {verb} {ConvertUtils.plural(len(plan.deletions), 'file')}? [y/N]: ")
        return response.strip().lower() in ("y", "yes")

    def output_erase_result(self, result: EraseResult, use_trash: bool) -> int:
        recovery = result.recovery
        if recovery is not None and not recovery.is_empty and not self.quiet:
            print(f"Recovered an interrupted erase: {len(recovery.restored)} restored, "
                  f"{len(recovery.purged)} finished")
            for staged, reason in recovery.unresolved:
                self.warning(f"Could not recover {staged}: {reason}")

        if result.status == EraseStatus.NOTHING_TO_DO:
            if not self.quiet:
                print("Nothing to erase: every duplicate is already gone, changed, or unconfirmed.")
            return EXIT_OK

        verb = "moved to trash" if use_trash else "deleted"
        if result.status == EraseStatus.PARTIAL:
            print(f"\n⚠️  Partial success: {len(result.erased)}/{len(result.plan.deletions)} files {verb}.",
                  file=sys.stderr)
            print(f"Failed to remove {ConvertUtils.plural(len(result.failed), 'file')}:", file=sys.stderr)
            for path, reason in result.failed:
                print(f"  • {path}: {reason}", file=sys.stderr)
            print(f"Their staged copies are kept in {', '.join(result.staging_dirs)}", file=sys.stderr)
            return EXIT_PARTIAL

        if not self.quiet:
            print(f"✅ Successfully {verb} {ConvertUtils.plural(len(result.erased), 'file')}, "
                  f"{ConvertUtils.bytes_to_human(result.bytes_freed)} freed.")
        return EXIT_OK

    # =============================
    # clean
    # =============================

    def run_clean(self, args: argparse.Namespace) -> int:
        removed = CleanCommand().execute(args.path)
        if not self.quiet:
            if removed:
                print(f"✅ Removed duplicates report from {os.path.abspath(args.path)}")
            else:
                print(f"No duplicates report found at {os.path.abspath(args.path)}")
        return EXIT_OK

    # =============================
    # Helpers
    # =============================

    @staticmethod
    def _quote(path: str) -> str:
        return f'"{path}"' if " " in path else path

    def warning(self, message: str) -> None:
        """Print a warning message to stderr."""
        if not self.quiet:
            print(f"⚠️  {message}", file=sys.stderr)

    @staticmethod
    def error_exit(message: str, code: int = EXIT_ERROR) -> NoReturn:
        """Print error and exit."""
        print(f"❌ Error: {message}", file=sys.stderr)
        sys.exit(code)

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point. Returns the process exit code."""
        args = self.parse_args(argv)
        self.verbosity = args.verbose
        self.quiet = args.quiet
        self.configure_logging(self.verbosity, self.quiet)

        self.validate_args(args)
        handlers = {
            "scan": self.run_scan,
            "erase": self.run_erase,
            "clean": self.run_clean,
        }
        try:
            code = handlers[args.command](args)
        except OperationCancelledError as e:
            print(f"\n⚠️  {e}", file=sys.stderr)
            return EXIT_INTERRUPTED
        except MdeError as e:
            self.error_exit(str(e))

        elapsed = time.time() - self.start_time
        if self.verbosity >= 1 and not self.quiet:
            print(f"\n✅ Completed in {ConvertUtils.seconds_to_human(elapsed)}")
        return code


def main(argv: Optional[List[str]] = None) -> None:
    """Application entry point."""
    app = CLIApplication()
    try:
        sys.exit(app.run(argv))
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user (Ctrl+C)", file=sys.stderr)
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        if os.environ.get("DEBUG"):
            raise
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
