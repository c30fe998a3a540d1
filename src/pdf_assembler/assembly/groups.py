"""Page groups: ordered, named lists of page placements.

A group becomes one output document. A Page is one placement inside a group
and carries its own id, so the same PageRef can sit at several positions
(or in several groups) while each slot stays individually addressable.
"""

import re
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .physical_file import PageRef, PhysicalFile

_PDF_SUFFIX = re.compile(r"\.pdf$", re.IGNORECASE)


def _new_id() -> str:
    return str(uuid.uuid4())


def without_pdf_extension(file_name: str) -> str:
    return _PDF_SUFFIX.sub("", file_name)


class Page(BaseModel):
    """A placement of a source page inside a group."""

    id: str = Field(default_factory=_new_id)
    ref: PageRef

    @classmethod
    def place(cls, ref: PageRef) -> "Page":
        return cls(ref=ref)


class PageGroup(BaseModel):
    """Ordered sequence of placements plus a display name."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    name: str
    pages: list[Page] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("group name must not be empty")
        return v

    def __len__(self) -> int:
        return len(self.pages)

    def refs(self) -> list[PageRef]:
        return [page.ref for page in self.pages]

    def index_of(self, page_id: str) -> int:
        for i, page in enumerate(self.pages):
            if page.id == page_id:
                return i
        raise KeyError(f"Page {page_id} not in group {self.name!r}")

    def get(self, page_id: str) -> Page:
        return self.pages[self.index_of(page_id)]

    def insert(self, ref: PageRef, position: int | None = None) -> Page:
        """Place a page reference at a position (appends by default)."""
        page = Page.place(ref)
        if position is None:
            self.pages.append(page)
        else:
            self.pages.insert(position, page)
        return page

    def insert_page(self, page: Page, position: int | None = None) -> None:
        if position is None:
            self.pages.append(page)
        else:
            self.pages.insert(position, page)

    def remove(self, page_id: str) -> Page:
        return self.pages.pop(self.index_of(page_id))

    def move(self, page_id: str, position: int) -> None:
        page = self.remove(page_id)
        self.pages.insert(position, page)

    def reorder(self, page_ids: list[str]) -> None:
        """Put the placements in the given order.

        Raises:
            ValueError: If page_ids is not a permutation of the current ids.
        """
        by_id = {page.id: page for page in self.pages}
        if len(page_ids) != len(self.pages) or set(page_ids) != set(by_id):
            raise ValueError(f"Reorder of group {self.name!r} must list each page exactly once")
        self.pages = [by_id[page_id] for page_id in page_ids]

    def duplicate(self, page_id: str) -> Page:
        """Place the same source page again, right after the original."""
        index = self.index_of(page_id)
        copy = Page.place(self.pages[index].ref)
        self.pages.insert(index + 1, copy)
        return copy

    def rename(self, name: str) -> None:
        self.name = name


def group_from_file(physical: PhysicalFile) -> PageGroup:
    """Default group for a new upload: every page, in file order."""
    return PageGroup(
        name=without_pdf_extension(physical.file_name) or physical.file_name,
        pages=[Page.place(ref) for ref in physical.page_refs()],
    )


def merge_groups(groups: list[PageGroup], name: str | None = None) -> PageGroup:
    """Concatenate groups into a new one with fresh placements.

    The name defaults to the first group's name.
    """
    if not groups:
        raise ValueError("merge_groups needs at least one group")
    return PageGroup(
        name=name or groups[0].name,
        pages=[Page.place(page.ref) for group in groups for page in group.pages],
    )


def split_group(group: PageGroup, at: int) -> tuple[PageGroup, PageGroup]:
    """Split a group before position `at` into two new groups."""
    if not 0 < at < len(group.pages):
        raise ValueError(f"Split position {at} must be within 1..{len(group.pages) - 1}")
    head = PageGroup(name=group.name, pages=[Page.place(p.ref) for p in group.pages[:at]])
    tail = PageGroup(name=f"{group.name} (2)", pages=[Page.place(p.ref) for p in group.pages[at:]])
    return head, tail
