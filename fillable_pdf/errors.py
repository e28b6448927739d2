class FillablePdfError(Exception):
    """Base class for errors reported to the user"""


class IngestFailure(FillablePdfError):
    """A file could not be read as a PDF document"""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Failed to read {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class DetectionFailure(FillablePdfError):
    """Auto-detect failed on a whole document"""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Auto-detect failed on {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class ExportFailure(FillablePdfError):
    """Loading or saving a PDF failed while adding form fields"""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"Export failed for {file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class EmptyExportFailure(FillablePdfError):
    """Nothing to export because no document has fields"""
