"""Lazy, memoized page previews.

Every registered file gets its own PyMuPDF handle for rasterising pages.
Previews are rendered on demand: the first request for a page schedules a
render task and returns None, later requests reuse that task until it
completes and then get the cached RenderedPage synchronously.

For a given (file, page) at most one render task exists at a time, so any
number of concurrent requests cost exactly one call to render_page.
"""

import asyncio
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable

import fitz  # PyMuPDF
from pydantic import BaseModel

from ..config import PREVIEW_DPI, RENDER_CACHE_MAX_PAGES
from ..logger import logger
from .errors import MissingSourceFileError, OutOfRangeError, RenderFailure
from .physical_file import PhysicalFile


class RenderState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class RenderedPage(BaseModel):
    """A page rasterised to PNG."""

    file_id: str
    page_index: int
    width: int
    height: int
    dpi: int
    png: bytes


class RenderEvent(BaseModel):
    """Notification sent to subscribers when a render settles."""

    file_id: str
    page_index: int
    page: RenderedPage | None = None
    error: str | None = None


RenderListener = Callable[[RenderEvent], None]


def render_page(document: fitz.Document, file_id: str, page_index: int, dpi: int) -> RenderedPage:
    """Rasterise one page of a document to PNG.

    Args:
        document: Open document to render from.
        file_id: Id of the PhysicalFile the document was opened from.
        page_index: Zero-based page index.
        dpi: Target resolution.

    Returns:
        RenderedPage holding the PNG bytes and pixel size.
    """
    page = document.load_page(page_index)
    zoom = dpi / 72
    pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
    return RenderedPage(
        file_id=file_id,
        page_index=page_index,
        width=pix.width,
        height=pix.height,
        dpi=dpi,
        png=pix.tobytes("png"),
    )


class RenderCacheEntry:
    """Per-file render state."""

    def __init__(self, file_id: str, document: fitz.Document):
        self.file_id = file_id
        self.document = document
        self.page_count = document.page_count
        self.pages: dict[int, RenderedPage] = {}
        self.pending: dict[int, asyncio.Task] = {}
        self.failures: dict[int, RenderFailure] = {}

    def close(self) -> None:
        for task in self.pending.values():
            task.cancel()
        self.pending.clear()
        if not self.document.is_closed:
            self.document.close()


class RenderCache:
    """Preview cache shared by all files of a session.

    Args:
        dpi: Resolution of rendered previews.
        max_pages: Upper bound on cached previews across all files, evicting
            the least recently used. 0 or None keeps everything.
    """

    def __init__(self, dpi: int = PREVIEW_DPI, max_pages: int | None = RENDER_CACHE_MAX_PAGES):
        self._dpi = dpi
        self._max_pages = max_pages or 0
        self._entries: dict[str, RenderCacheEntry] = {}
        self._lru: OrderedDict[tuple[str, int], None] = OrderedDict()
        self._listeners: list[RenderListener] = []

    @property
    def dpi(self) -> int:
        return self._dpi

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------
    def register(self, physical: PhysicalFile) -> RenderCacheEntry:
        """Open a render handle for a file. Registering twice is a no-op."""
        entry = self._entries.get(physical.id)
        if entry is None:
            document = fitz.open(stream=physical.data, filetype="pdf")
            entry = RenderCacheEntry(physical.id, document)
            self._entries[physical.id] = entry
        return entry

    def unregister(self, file_id: str) -> None:
        entry = self._entries.pop(file_id, None)
        if entry is None:
            return
        for key in [k for k in self._lru if k[0] == file_id]:
            del self._lru[key]
        entry.close()

    def close(self) -> None:
        for file_id in list(self._entries):
            self.unregister(file_id)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._entries

    # ------------------------------------------------------------------
    # subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, listener: RenderListener) -> Callable[[], None]:
        """Register a callback for settled renders; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: RenderEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "render listener failed",
                    file_id=event.file_id,
                    page_index=event.page_index,
                )

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def _entry(self, file_id: str, page_index: int) -> RenderCacheEntry:
        entry = self._entries.get(file_id)
        if entry is None:
            raise MissingSourceFileError(file_id)
        if (
            not isinstance(page_index, int)
            or isinstance(page_index, bool)
            or not 0 <= page_index < entry.page_count
        ):
            raise OutOfRangeError(file_id, page_index, entry.page_count)
        return entry

    def state(self, file_id: str, page_index: int) -> RenderState:
        entry = self._entry(file_id, page_index)
        if page_index in entry.pages:
            return RenderState.READY
        if page_index in entry.pending:
            return RenderState.PENDING
        if page_index in entry.failures:
            return RenderState.FAILED
        return RenderState.IDLE

    def cached_pages(self, file_id: str) -> dict[int, RenderedPage]:
        entry = self._entries.get(file_id)
        if entry is None:
            raise MissingSourceFileError(file_id)
        return dict(entry.pages)

    def request_page(self, file_id: str, page_index: int) -> RenderedPage | None:
        """Return a rendered page if available, otherwise start rendering it.

        Never blocks. Must be called while an event loop is running.

        Returns:
            The RenderedPage, or None while the render is pending.

        Raises:
            RenderFailure: If the last render of this page failed. The failure
                is reported once; the next request starts a new render.
        """
        entry = self._entry(file_id, page_index)
        rendered = entry.pages.get(page_index)
        if rendered is not None:
            self._touch(file_id, page_index)
            return rendered

        failure = entry.failures.pop(page_index, None)
        if failure is not None:
            raise failure

        self._ensure_task(entry, page_index)
        return None

    async def get_page(self, file_id: str, page_index: int) -> RenderedPage:
        """Wait for a page to be rendered, sharing any in-flight render.

        Raises:
            RenderFailure: If rendering fails.
        """
        entry = self._entry(file_id, page_index)
        rendered = entry.pages.get(page_index)
        if rendered is not None:
            self._touch(file_id, page_index)
            return rendered

        entry.failures.pop(page_index, None)
        task = self._ensure_task(entry, page_index)
        try:
            # A cancelled waiter must not cancel the render other callers share
            return await asyncio.shield(task)
        except RenderFailure as failure:
            # Delivered here; a later request_page retries instead of re-raising
            if entry.failures.get(page_index) is failure:
                del entry.failures[page_index]
            raise

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------
    def _ensure_task(self, entry: RenderCacheEntry, page_index: int) -> asyncio.Task:
        task = entry.pending.get(page_index)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._render(entry, page_index))
            task.add_done_callback(_retrieve_exception)
            entry.pending[page_index] = task
            logger.debug("render scheduled", file_id=entry.file_id, page_index=page_index)
        return task

    async def _render(self, entry: RenderCacheEntry, page_index: int) -> RenderedPage:
        # Give other ready callbacks a turn before the CPU-bound rasterisation
        await asyncio.sleep(0)
        start = time.perf_counter()
        try:
            rendered = render_page(entry.document, entry.file_id, page_index, self._dpi)
        except Exception as e:
            failure = RenderFailure(entry.file_id, page_index, str(e))
            entry.failures[page_index] = failure
            logger.warn(
                "page render failed",
                file_id=entry.file_id,
                page_index=page_index,
                error=str(e),
            )
            self._notify(RenderEvent(file_id=entry.file_id, page_index=page_index, error=str(failure)))
            raise failure from e
        finally:
            entry.pending.pop(page_index, None)

        entry.pages[page_index] = rendered
        self._touch(entry.file_id, page_index)
        self._evict()
        logger.debug(
            "page rendered",
            file_id=entry.file_id,
            page_index=page_index,
            width=rendered.width,
            height=rendered.height,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        self._notify(RenderEvent(file_id=entry.file_id, page_index=page_index, page=rendered))
        return rendered

    # ------------------------------------------------------------------
    # eviction
    # ------------------------------------------------------------------
    def _touch(self, file_id: str, page_index: int) -> None:
        key = (file_id, page_index)
        self._lru[key] = None
        self._lru.move_to_end(key)

    def _evict(self) -> None:
        if not self._max_pages:
            return
        while len(self._lru) > self._max_pages:
            (file_id, page_index), _ = self._lru.popitem(last=False)
            entry = self._entries.get(file_id)
            if entry is not None:
                entry.pages.pop(page_index, None)
            logger.debug("preview evicted", file_id=file_id, page_index=page_index)


def _retrieve_exception(task: asyncio.Task) -> None:
    # Failures are recorded on the entry; mark them retrieved so asyncio
    # does not warn about tasks nobody awaited.
    if not task.cancelled():
        task.exception()
