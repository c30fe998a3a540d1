"""Document session: uploaded files, their previews and the page groups.

The session never touches the source PDFs. It only records what the output
should look like; the export engine builds it on demand.
"""

import asyncio
import uuid

from pydantic import BaseModel

from ..logger import logger
from .errors import CorruptDocumentError
from .export import UNTITLED_DOCUMENT, ExportResult, export_groups
from .groups import Page, PageGroup, group_from_file
from .groups import merge_groups as _merge_groups
from .groups import split_group as _split_group
from .persistence import FileSnapshot, GroupSnapshot, PageSnapshot, SessionSnapshot
from .physical_file import PageRef, PhysicalFileStore, load_physical_file
from .render_cache import RenderCache, RenderedPage


class AddFileResult(BaseModel):
    """Outcome of adding one uploaded file to a session."""

    file_name: str
    file_id: str | None = None
    group_id: str | None = None
    page_count: int = 0
    error: str | None = None
    error_code: str | None = None


class DocumentSession:
    """Single source of truth for what an export will contain."""

    def __init__(self, render_cache: RenderCache | None = None, session_id: str | None = None):
        self.id = session_id or str(uuid.uuid4())
        self.files = PhysicalFileStore()
        self.render_cache = render_cache or RenderCache()
        self.groups: list[PageGroup] = []
        self.has_unsaved_changes = False

    def _changed(self) -> None:
        self.has_unsaved_changes = True

    def mark_saved(self) -> None:
        self.has_unsaved_changes = False

    @property
    def document_name(self) -> str:
        if not self.groups:
            return UNTITLED_DOCUMENT
        return self.groups[0].name

    # ------------------------------------------------------------------
    # files
    # ------------------------------------------------------------------
    async def add_files(self, uploads: list[tuple[str, bytes]]) -> list[AddFileResult]:
        """Parse uploads concurrently and create one group per readable file.

        A file that cannot be parsed only fails its own result. Groups are
        appended in upload order.

        Args:
            uploads: (file name, bytes) pairs.

        Returns:
            One AddFileResult per upload, in the same order.
        """
        loaded = await asyncio.gather(
            *(load_physical_file(data, name) for name, data in uploads),
            return_exceptions=True,
        )

        unexpected = [
            r for r in loaded
            if isinstance(r, BaseException) and not isinstance(r, CorruptDocumentError)
        ]
        if unexpected:
            for r in loaded:
                if not isinstance(r, BaseException):
                    r.close()
            raise unexpected[0]

        results: list[AddFileResult] = []
        for (file_name, _), outcome in zip(uploads, loaded):
            if isinstance(outcome, CorruptDocumentError):
                logger.warn(
                    "failed to load pdf",
                    file_name=file_name,
                    error_code=outcome.error_code,
                    error=str(outcome),
                )
                results.append(
                    AddFileResult(
                        file_name=file_name,
                        error=str(outcome),
                        error_code=outcome.error_code,
                    )
                )
                continue

            self.files.add(outcome)
            self.render_cache.register(outcome)
            group = group_from_file(outcome)
            self.groups.append(group)
            results.append(
                AddFileResult(
                    file_name=file_name,
                    file_id=outcome.id,
                    group_id=group.id,
                    page_count=outcome.page_count,
                )
            )

        if any(r.file_id for r in results):
            self._changed()
        logger.info(
            "files added",
            session_id=self.id,
            files_count=len(uploads),
            failed=sum(1 for r in results if r.error),
        )
        return results

    def remove_file(self, file_id: str) -> None:
        """Drop a file. Placements pointing at it stay in their groups."""
        self.files.remove(file_id)
        self.render_cache.unregister(file_id)
        self._changed()

    def get_page_ref(self, file_id: str, page_index: int) -> PageRef:
        return self.files.get_page(file_id, page_index)

    # ------------------------------------------------------------------
    # groups
    # ------------------------------------------------------------------
    def get_group(self, group_id: str) -> PageGroup:
        for group in self.groups:
            if group.id == group_id:
                return group
        raise KeyError(f"Group {group_id} not found")

    def _group_index(self, group_id: str) -> int:
        return self.groups.index(self.get_group(group_id))

    def find_page(self, page_id: str) -> tuple[PageGroup, Page]:
        for group in self.groups:
            for page in group.pages:
                if page.id == page_id:
                    return group, page
        raise KeyError(f"Page {page_id} not found")

    def add_group(self, name: str, position: int | None = None) -> PageGroup:
        group = PageGroup(name=name)
        if position is None:
            self.groups.append(group)
        else:
            self.groups.insert(position, group)
        self._changed()
        return group

    def remove_group(self, group_id: str) -> PageGroup:
        group = self.groups.pop(self._group_index(group_id))
        self._changed()
        return group

    def move_group(self, group_id: str, position: int) -> None:
        group = self.groups.pop(self._group_index(group_id))
        self.groups.insert(position, group)
        self._changed()

    def rename_group(self, group_id: str, name: str) -> None:
        self.get_group(group_id).rename(name)
        self._changed()

    def add_page(
        self, group_id: str, file_id: str, page_index: int, position: int | None = None
    ) -> Page:
        group = self.get_group(group_id)
        page = group.insert(self.get_page_ref(file_id, page_index), position)
        self._changed()
        return page

    def remove_page(self, group_id: str, page_id: str) -> Page:
        page = self.get_group(group_id).remove(page_id)
        self._changed()
        return page

    def move_page(self, page_id: str, to_group_id: str, position: int | None = None) -> None:
        """Move a placement within its group or into another group.

        The placement keeps its id, so external selection state stays valid.
        """
        source, _ = self.find_page(page_id)
        target = self.get_group(to_group_id)
        page = source.remove(page_id)
        target.insert_page(page, position)
        self._changed()

    def duplicate_page(self, group_id: str, page_id: str) -> Page:
        page = self.get_group(group_id).duplicate(page_id)
        self._changed()
        return page

    def reorder_pages(self, group_id: str, page_ids: list[str]) -> None:
        self.get_group(group_id).reorder(page_ids)
        self._changed()

    def merge_groups(self, group_ids: list[str], name: str | None = None) -> PageGroup:
        """Replace several groups by one, placed where the first of them was."""
        groups = [self.get_group(group_id) for group_id in group_ids]
        if len({g.id for g in groups}) != len(groups):
            raise ValueError("Cannot merge a group with itself")
        merged = _merge_groups(groups, name)
        position = min(self.groups.index(g) for g in groups)
        self.groups = [g for g in self.groups if g not in groups]
        self.groups.insert(position, merged)
        self._changed()
        return merged

    def split_group(self, group_id: str, at: int) -> tuple[PageGroup, PageGroup]:
        index = self._group_index(group_id)
        head, tail = _split_group(self.groups[index], at)
        self.groups[index:index + 1] = [head, tail]
        self._changed()
        return head, tail

    # ------------------------------------------------------------------
    # preview, export, persistence
    # ------------------------------------------------------------------
    def request_page(self, ref: PageRef) -> RenderedPage | None:
        """Preview boundary: the rendered page, or None while it renders."""
        return self.render_cache.request_page(ref.file_id, ref.page_index)

    async def export(self, strict: bool | None = None) -> ExportResult | None:
        """Export the current groups; see export_groups for the policy."""
        return await export_groups(
            list(self.groups), self.files, self.document_name, strict=strict
        )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            document_name=self.document_name,
            files=[
                FileSnapshot(id=f.id, file_name=f.file_name, page_count=f.page_count)
                for f in self.files
            ],
            groups=[
                GroupSnapshot(
                    id=group.id,
                    name=group.name,
                    pages=[
                        PageSnapshot(
                            id=page.id,
                            file_id=page.ref.file_id,
                            page_index=page.ref.page_index,
                        )
                        for page in group.pages
                    ],
                )
                for group in self.groups
            ],
        )

    def close(self) -> None:
        self.render_cache.close()
        self.files.close()
