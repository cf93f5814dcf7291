"""
Copyright (c) 2025 initumX (initum.x@gmail.com)
Licensed under the MIT License

services/file_service.py
Irreversible file removal primitives used by the commit phase of an erase:
permanent deletion or a move to the system trash.
"""
import os
from pathlib import Path
from send2trash import send2trash


class FileService:
    """
    Removal of single files with uniform error reporting.
    Every failure is raised as RuntimeError carrying the original cause.
    """

    @staticmethod
    def remove_file(file_path: str):
        """Deletes a file permanently."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        try:
            os.remove(path)
        except OSError as e:
            raise RuntimeError(f"Failed to delete file: {e}") from e

    @staticmethod
    def move_to_trash(file_path: str):
        """Moves a file to the system trash."""
        path = Path(file_path).resolve()

        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        try:
            send2trash(str(path))
        except Exception as e:
            raise RuntimeError(f"Failed to move to trash: {e}") from e

    @classmethod
    def dispose(cls, file_path: str, use_trash: bool = False):
        """Deletes `file_path` permanently, or sends it to the trash."""
        if use_trash:
            cls.move_to_trash(file_path)
        else:
            cls.remove_file(file_path)

