from .report_store import JsonReportStore, InMemoryReportStore
from .eraser import AtomicEraser
from .file_service import FileService

__all__ = ["JsonReportStore", "InMemoryReportStore", "AtomicEraser", "FileService"]
