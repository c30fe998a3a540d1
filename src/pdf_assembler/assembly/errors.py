"""Error taxonomy for document sessions, previews and exports."""


class AssemblyError(Exception):
    """Base class for all errors raised by the assembly core."""


class OutOfRangeError(AssemblyError, IndexError):
    """Raised when a page index is outside a file's page range.

    This signals a caller bug, never an I/O condition: the index is not clamped.
    """

    def __init__(self, file_id: str, page_index: object, page_count: int):
        self.file_id = file_id
        self.page_index = page_index
        self.page_count = page_count
        super().__init__(
            f"Page index {page_index!r} out of range for file {file_id} "
            f"({page_count} pages)"
        )


class CorruptDocumentError(AssemblyError, ValueError):
    """Raised when uploaded bytes cannot be parsed as a PDF document."""

    error_code = "corrupt_document"

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Cannot read {file_name}: {reason}")


class EncryptedDocumentError(CorruptDocumentError):
    """Raised when a PDF is password protected."""

    error_code = "encrypted_document"

    def __init__(self, file_name: str):
        super().__init__(file_name, "document is encrypted")


class RenderFailure(AssemblyError):
    """Raised when a single page preview could not be rendered."""

    def __init__(self, file_id: str, page_index: int, reason: str):
        self.file_id = file_id
        self.page_index = page_index
        self.reason = reason
        super().__init__(f"Failed to render page {page_index} of file {file_id}: {reason}")


class MissingSourceFileError(AssemblyError, KeyError):
    """Raised when a file id is not (or no longer) in the session."""

    def __init__(self, file_id: str):
        self.file_id = file_id
        super().__init__(file_id)

    def __str__(self) -> str:
        return f"Source file not found: {self.file_id}"


class PackagingError(AssemblyError):
    """Raised when the export archive could not be assembled."""


class EmptyExportError(AssemblyError):
    """Raised when an export would produce no pages at all."""
