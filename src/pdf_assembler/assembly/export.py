"""Merge page groups into output PDFs.

create_document_from works in two passes:

1. Collect the PageRefs of every placement into one set per source file, so a
   page referenced several times is copied once. Each file then gets a single
   batched copy of the pages it contributes.
2. Walk the placements again in their original order and append the copied
   pages to the output, repeating pages where a group repeats them.

Copies go through PyMuPDF's select/insert_pdf, which keep annotations and
links instead of flattening pages into images or form XObjects. insert_pdf
only keeps an internal link when its target is copied in the same call, so
GoTo links are rebuilt once the output is complete.
"""

import asyncio
import re
import time

import fitz  # PyMuPDF
from pydantic import BaseModel, ConfigDict, Field

from ..config import EXPORT_STRICT_MISSING_FILES
from ..logger import logger
from .errors import EmptyExportError, MissingSourceFileError
from .groups import PageGroup
from .packaging import NamedBuffer, package_files
from .physical_file import PageRef, PhysicalFile, PhysicalFileStore

PDF_MEDIA_TYPE = "application/pdf"
ZIP_MEDIA_TYPE = "application/zip"
UNTITLED_DOCUMENT = "Untitled Document"

_UNSAFE_NAME_CHARS = re.compile(r'[\x00-\x1f\x7f/\\:*?"<>|]')


class AssembledDocument(BaseModel):
    """An output document built from page groups."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    document: fitz.Document
    source_pages: list[PageRef]
    skipped_pages: int = 0

    @property
    def page_count(self) -> int:
        return self.document.page_count

    def to_bytes(self) -> bytes:
        # garbage=2 drops unused objects but never merges duplicate pages
        return self.document.tobytes(garbage=2, deflate=True)

    def close(self) -> None:
        if not self.document.is_closed:
            self.document.close()


class ExportResult(BaseModel):
    """A downloadable export: one PDF or a zip of PDFs."""

    file_name: str
    media_type: str
    data: bytes
    documents_count: int
    omitted_groups: list[str] = Field(default_factory=list)


def safe_file_name(name: str, default: str = UNTITLED_DOCUMENT) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name).strip().strip(".")
    return cleaned or default


async def copy_pages(source: PhysicalFile, page_indices: list[int]) -> fitz.Document:
    """Copy pages of one source file into a new document in a single batch.

    The source is reopened from its bytes: select() rewrites the document it
    runs on, and the file's parsed handle is closed as soon as the file is
    removed from its store, which can happen while an export is suspended.

    Args:
        source: File to copy from.
        page_indices: Pages to copy.

    Returns:
        Document whose page i is a copy of page_indices[i].
    """
    await asyncio.sleep(0)
    batch = fitz.open(stream=source.data, filetype="pdf")
    batch.select(page_indices)
    logger.debug("pages copied", file_id=source.id, pages_count=len(page_indices))
    return batch


def _append_in_order(output: fitz.Document, placements: list[tuple[fitz.Document, int]]) -> None:
    # Consecutive pages of the same batch go in one insert_pdf call, which
    # keeps links between them intact.
    i = 0
    while i < len(placements):
        batch, start = placements[i]
        end = start
        j = i + 1
        while j < len(placements) and placements[j][0] is batch and placements[j][1] == end + 1:
            end += 1
            j += 1
        output.insert_pdf(batch, from_page=start, to_page=end, links=True, annots=True)
        i = j


def _restore_internal_links(
    output: fitz.Document,
    present: list[PageRef],
    copied: dict[PageRef, tuple[fitz.Document, int]],
    batch_refs: dict[str, list[PageRef]],
) -> None:
    """Point every GoTo link at the output position of its target page.

    A link to a page placed several times targets its first placement. Links
    whose target page is not part of the output are dropped.
    """
    first_position: dict[PageRef, int] = {}
    for position, ref in enumerate(present):
        first_position.setdefault(ref, position)

    for position, ref in enumerate(present):
        batch, batch_position = copied[ref]
        # batch page numbers index into the file's sorted batch refs
        targets = batch_refs[ref.file_id]
        page = output[position]
        for link in page.get_links():
            if link["kind"] == fitz.LINK_GOTO:
                page.delete_link(link)
        for link in batch[batch_position].get_links():
            if link["kind"] != fitz.LINK_GOTO or not 0 <= link.get("page", -1) < len(targets):
                continue
            target = first_position.get(targets[link["page"]])
            if target is None:
                continue
            page.insert_link({**link, "page": target})


async def create_document_from(
    groups: list[PageGroup],
    files: PhysicalFileStore,
    strict: bool = False,
) -> AssembledDocument:
    """Assemble one output document from the pages of the given groups.

    Args:
        groups: Groups whose pages, in order, make up the output.
        files: Store resolving file ids to source files.
        strict: Raise instead of skipping pages whose source file is gone.

    Returns:
        AssembledDocument; the caller owns and must close it.

    Raises:
        MissingSourceFileError: In strict mode, if a referenced file is missing.
    """
    start = time.perf_counter()

    # Point-in-time snapshot: later edits to the groups do not leak into
    # this export.
    refs = [page.ref for group in groups for page in group.pages]

    sources: dict[str, PhysicalFile] = {}
    needed: dict[str, set[PageRef]] = {}
    present: list[PageRef] = []
    skipped = 0
    for ref in refs:
        physical = sources.get(ref.file_id) or files.find(ref.file_id)
        if physical is None:
            if strict:
                raise MissingSourceFileError(ref.file_id)
            skipped += 1
            continue
        sources[ref.file_id] = physical
        needed.setdefault(ref.file_id, set()).add(ref)
        present.append(ref)

    if skipped:
        logger.warn("skipping pages of missing source files", skipped_pages=skipped)

    file_ids = list(needed)
    batch_refs = {
        file_id: sorted(needed[file_id], key=lambda r: r.page_index) for file_id in file_ids
    }
    results = await asyncio.gather(
        *(
            copy_pages(sources[file_id], [r.page_index for r in batch_refs[file_id]])
            for file_id in file_ids
        ),
        return_exceptions=True,
    )
    batches = [r for r in results if isinstance(r, fitz.Document)]
    output = fitz.open()
    try:
        for result in results:
            if isinstance(result, BaseException):
                raise result

        copied: dict[PageRef, tuple[fitz.Document, int]] = {}
        for file_id, batch in zip(file_ids, results):
            for position, ref in enumerate(batch_refs[file_id]):
                copied[ref] = (batch, position)

        _append_in_order(output, [copied[ref] for ref in present])
        _restore_internal_links(output, present, copied, batch_refs)
    except BaseException:
        output.close()
        raise
    finally:
        for batch in batches:
            batch.close()

    logger.info(
        "document assembled",
        groups_count=len(groups),
        pages_count=output.page_count,
        source_files=len(file_ids),
        copied_pages=sum(len(v) for v in needed.values()),
        skipped_pages=skipped,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return AssembledDocument(document=output, source_pages=present, skipped_pages=skipped)


async def export_group(group: PageGroup, files: PhysicalFileStore, strict: bool = False) -> bytes | None:
    """Serialize one group as PDF bytes, or None if none of its pages survive."""
    assembled = await create_document_from([group], files, strict=strict)
    try:
        if assembled.page_count == 0:
            return None
        return assembled.to_bytes()
    finally:
        assembled.close()


async def export_groups(
    groups: list[PageGroup],
    files: PhysicalFileStore,
    document_name: str,
    strict: bool | None = None,
) -> ExportResult | None:
    """Export groups as a single PDF or, for several groups, a zip of PDFs.

    Args:
        groups: Groups to export, in order.
        files: Store resolving the groups' file ids.
        document_name: Base name of the archive when there are several groups.
        strict: Missing-file policy; defaults to EXPORT_STRICT_MISSING_FILES.

    Returns:
        ExportResult, or None when there are no groups.

    Raises:
        EmptyExportError: If no group yields a single page.
        PackagingError: If the archive cannot be built.
    """
    if strict is None:
        strict = EXPORT_STRICT_MISSING_FILES
    # Copy every group's page list before the first await: edits made while
    # the export runs do not affect it.
    groups = [group.model_copy(update={"pages": list(group.pages)}) for group in groups]
    if not groups:
        logger.info("nothing to export")
        return None

    if len(groups) == 1:
        group = groups[0]
        data = await export_group(group, files, strict=strict)
        if data is None:
            raise EmptyExportError(f"Group {group.name!r} has no pages to export")
        return ExportResult(
            file_name=f"{safe_file_name(group.name)}.pdf",
            media_type=PDF_MEDIA_TYPE,
            data=data,
            documents_count=1,
        )

    buffers: list[NamedBuffer] = []
    omitted: list[str] = []
    for group in groups:
        data = await export_group(group, files, strict=strict)
        if data is None:
            logger.warn("skipping empty group", group_id=group.id, group_name=group.name)
            omitted.append(group.name)
            continue
        buffers.append(NamedBuffer(name=f"{safe_file_name(group.name)}.pdf", data=data))

    if not buffers:
        raise EmptyExportError("None of the groups has pages to export")

    archive = await package_files(buffers)
    return ExportResult(
        file_name=f"{safe_file_name(document_name)}.zip",
        media_type=ZIP_MEDIA_TYPE,
        data=archive,
        documents_count=len(buffers),
        omitted_groups=omitted,
    )
