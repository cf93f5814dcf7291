"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

core/errors.py
Exception types raised by the scan, report and erase layers.
"""
from typing import List, Optional, Tuple


class MdeError(Exception):
    """Base class for every error raised by media-duplicate-eraser."""


class PathNotFoundError(MdeError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path not found: {path}")


class InvalidPathError(MdeError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid path: {path} - {reason}")


# =============================
# Report errors
# =============================

class ReportError(MdeError):
    """Base class for problems with the persisted duplicates report."""

    def __init__(self, location: str, message: str):
        self.location = location
        super().__init__(message)


class ReportNotFoundError(ReportError):
    """No report exists at the location: there is nothing to erase."""

    def __init__(self, location: str):
        super().__init__(location, f"No duplicates report found at: {location}")


class ReportFormatError(ReportError):
    """The report exists but cannot be parsed: the persisted state is corrupt."""

    def __init__(self, location: str, reason: str):
        self.reason = reason
        super().__init__(location, f"Malformed duplicates report {location}: {reason}")


class ReportVersionError(ReportError):
    """The report was written with a schema version this reader does not understand."""

    def __init__(self, location: str, found: object, supported: str):
        self.found = found
        self.supported = supported
        super().__init__(
            location,
            f"Unsupported duplicates report version {found!r} in {location} "
            f"(this version reads {supported!r}). Re-run 'mde scan'."
        )


# =============================
# Erase errors
# =============================

class EraseError(MdeError):
    """Base class for failures of an erase operation."""


class StagingError(EraseError):
    """
    Moving a file into the staging area failed. Everything staged before the
    failure has been moved back; `unrestored` lists (original, staged) pairs
    that could not be put back and need manual attention.
    """

    def __init__(
            self,
            path: str,
            cause: Optional[BaseException] = None,
            unrestored: Optional[List[Tuple[str, str]]] = None
    ):
        self.path = path
        self.cause = cause
        self.unrestored = unrestored or []
        message = f"Failed to stage {path}: {cause}" if cause else f"Failed to stage {path}"
        if self.unrestored:
            message += f" ({len(self.unrestored)} file(s) could not be restored)"
        else:
            message += " (all staged files were restored, nothing was deleted)"
        super().__init__(message)


class OperationCancelledError(MdeError):
    """The operation was stopped by the caller before it could finish."""

    def __init__(self, message: str = "Operation cancelled by user"):
        super().__init__(message)
