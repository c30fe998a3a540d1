"""Uploaded source PDFs and the page references minted from them.

A PhysicalFile wraps the bytes of one upload and a parsed PyMuPDF handle.
It is never modified: exports and previews open their own documents from
the bytes. Each file owns the registry of its PageRefs, so asking twice for
the same page index hands back the very same PageRef object.
"""

import asyncio
import time
import uuid
from typing import Iterator

import fitz  # PyMuPDF
from pydantic import BaseModel, ConfigDict

from ..logger import logger
from .errors import (
    CorruptDocumentError,
    EncryptedDocumentError,
    MissingSourceFileError,
    OutOfRangeError,
)


class PageRef(BaseModel):
    """Identity of "page N of file F".

    Obtain instances through PhysicalFile.get_page; the model is frozen and
    hashes by value, so it can key dicts and sets.
    """

    model_config = ConfigDict(frozen=True)

    file_id: str
    page_index: int


class PhysicalFile:
    """One uploaded PDF, parsed once and never mutated."""

    def __init__(self, file_id: str, file_name: str, data: bytes, document: fitz.Document):
        self._id = file_id
        self._file_name = file_name
        self._data = bytes(data)
        self._document = document
        self._page_count = document.page_count
        self._page_refs: dict[int, PageRef] = {}

    @property
    def id(self) -> str:
        return self._id

    @property
    def file_name(self) -> str:
        return self._file_name

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def document(self) -> fitz.Document:
        return self._document

    @property
    def page_count(self) -> int:
        return self._page_count

    def get_page(self, page_index: int) -> PageRef:
        """Return the PageRef for a page, creating it on first use.

        Raises:
            OutOfRangeError: If page_index is not in [0, page_count).
        """
        self.check_index(page_index)
        ref = self._page_refs.get(page_index)
        if ref is None:
            ref = PageRef(file_id=self._id, page_index=page_index)
            self._page_refs[page_index] = ref
        return ref

    def page_refs(self) -> list[PageRef]:
        return [self.get_page(i) for i in range(self._page_count)]

    def check_index(self, page_index: int) -> None:
        # bool is an int subclass but never a meaningful page index
        if (
            not isinstance(page_index, int)
            or isinstance(page_index, bool)
            or not 0 <= page_index < self._page_count
        ):
            raise OutOfRangeError(self._id, page_index, self._page_count)

    def close(self) -> None:
        if not self._document.is_closed:
            self._document.close()

    def __repr__(self) -> str:
        return f"PhysicalFile(id={self._id!r}, file_name={self._file_name!r}, pages={self._page_count})"


def open_pdf(data: bytes, file_name: str) -> fitz.Document:
    """Parse PDF bytes into a PyMuPDF document.

    Args:
        data: Raw file contents.
        file_name: Name used in error messages.

    Returns:
        The opened document with at least one page.

    Raises:
        EncryptedDocumentError: If the document requires a password.
        CorruptDocumentError: If the bytes are empty, not a PDF or have no pages.
    """
    if not data:
        raise CorruptDocumentError(file_name, "file is empty")

    try:
        document = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        # fitz.FileDataError / EmptyFileError derive from RuntimeError
        raise CorruptDocumentError(file_name, str(e)) from e

    if document.needs_pass:
        document.close()
        raise EncryptedDocumentError(file_name)
    if not document.is_pdf or document.page_count == 0:
        document.close()
        raise CorruptDocumentError(file_name, "document has no pages")
    return document


async def load_physical_file(data: bytes, file_name: str) -> PhysicalFile:
    """Parse an upload into a PhysicalFile with a fresh id.

    Yields to the event loop before parsing so that a batch of uploads
    interleaves with other pending work.
    """
    await asyncio.sleep(0)
    start = time.perf_counter()
    document = open_pdf(data, file_name)
    physical = PhysicalFile(str(uuid.uuid4()), file_name, data, document)

    logger.info(
        "pdf loaded",
        file_id=physical.id,
        file_name=file_name,
        page_count=physical.page_count,
        size_bytes=len(data),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return physical


class PhysicalFileStore:
    """Session-owned map from file id to PhysicalFile.

    Files stay in the store until removed explicitly, even when no page
    group references them any more.
    """

    def __init__(self):
        self._files: dict[str, PhysicalFile] = {}

    def add(self, physical: PhysicalFile) -> None:
        if physical.id in self._files:
            raise ValueError(f"File {physical.id} is already in the store")
        self._files[physical.id] = physical

    def get(self, file_id: str) -> PhysicalFile:
        """Return a file by id.

        Raises:
            MissingSourceFileError: If the id is unknown.
        """
        physical = self._files.get(file_id)
        if physical is None:
            raise MissingSourceFileError(file_id)
        return physical

    def find(self, file_id: str) -> PhysicalFile | None:
        return self._files.get(file_id)

    def get_page(self, file_id: str, page_index: int) -> PageRef:
        return self.get(file_id).get_page(page_index)

    def remove(self, file_id: str) -> PhysicalFile:
        physical = self._files.pop(file_id, None)
        if physical is None:
            raise MissingSourceFileError(file_id)
        physical.close()
        logger.info("pdf removed", file_id=file_id, file_name=physical.file_name)
        return physical

    def close(self) -> None:
        for physical in self._files.values():
            physical.close()
        self._files.clear()

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[PhysicalFile]:
        return iter(list(self._files.values()))
