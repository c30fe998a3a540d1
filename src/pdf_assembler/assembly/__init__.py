from .errors import (
    AssemblyError,
    CorruptDocumentError,
    EmptyExportError,
    EncryptedDocumentError,
    MissingSourceFileError,
    OutOfRangeError,
    PackagingError,
    RenderFailure,
)
from .physical_file import PageRef, PhysicalFile, PhysicalFileStore, load_physical_file
from .render_cache import RenderCache, RenderCacheEntry, RenderedPage, RenderEvent, RenderState
from .groups import Page, PageGroup, group_from_file, merge_groups, split_group
from .export import (
    AssembledDocument,
    ExportResult,
    copy_pages,
    create_document_from,
    export_groups,
)
from .packaging import NamedBuffer, package_files
from .persistence import InMemorySessionStore, SessionSnapshot, SessionStore
from .session import AddFileResult, DocumentSession

__all__ = [
    # Errors
    "AssemblyError",
    "CorruptDocumentError",
    "EmptyExportError",
    "EncryptedDocumentError",
    "MissingSourceFileError",
    "OutOfRangeError",
    "PackagingError",
    "RenderFailure",
    # Physical files
    "PageRef",
    "PhysicalFile",
    "PhysicalFileStore",
    "load_physical_file",
    # Render cache
    "RenderCache",
    "RenderCacheEntry",
    "RenderedPage",
    "RenderEvent",
    "RenderState",
    # Groups
    "Page",
    "PageGroup",
    "group_from_file",
    "merge_groups",
    "split_group",
    # Export
    "AssembledDocument",
    "ExportResult",
    "copy_pages",
    "create_document_from",
    "export_groups",
    # Packaging
    "NamedBuffer",
    "package_files",
    # Persistence
    "InMemorySessionStore",
    "SessionSnapshot",
    "SessionStore",
    # Session
    "AddFileResult",
    "DocumentSession",
]
