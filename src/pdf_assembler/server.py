"""FastAPI REST API for document assembly sessions.

All endpoints are coroutines so that session state is only ever touched from
the event loop thread.
"""

from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, Query, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .assembly import (
    AddFileResult,
    CorruptDocumentError,
    DocumentSession,
    EmptyExportError,
    InMemorySessionStore,
    MissingSourceFileError,
    OutOfRangeError,
    PackagingError,
    RenderFailure,
    SessionSnapshot,
    SessionStore,
)
from .config import MAX_BATCH_SIZE, MAX_UPLOAD_SIZE
from .logger import log_context, logger

# --- Request/Response Models ---


class CreateGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    position: int | None = Field(default=None, ge=0)


class RenameGroupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class AddPageRequest(BaseModel):
    file_id: str
    page_index: int
    position: int | None = Field(default=None, ge=0)


class ReorderPagesRequest(BaseModel):
    page_ids: list[str]


class MovePageRequest(BaseModel):
    to_group_id: str
    position: int | None = Field(default=None, ge=0)


class MergeGroupsRequest(BaseModel):
    group_ids: list[str] = Field(..., min_length=2)
    name: str | None = Field(default=None, min_length=1, max_length=255)


class SplitGroupRequest(BaseModel):
    at: int = Field(..., ge=1)


class SessionResponse(BaseModel):
    session: SessionSnapshot
    has_unsaved_changes: bool


class UploadResponse(BaseModel):
    results: list[AddFileResult]
    successful: int = 0
    failed: int = 0


class PageResponse(BaseModel):
    group_id: str
    page_id: str
    file_id: str
    page_index: int


class HealthResponse(BaseModel):
    status: str
    sessions: int = 0


class ErrorResponse(BaseModel):
    code: str
    message: str


# --- App State ---

sessions: dict[str, DocumentSession] = {}
_session_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    """Lazy initialization of the snapshot store."""
    global _session_store
    if _session_store is None:
        _session_store = InMemorySessionStore()
    return _session_store


def get_session(session_id: str) -> DocumentSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


def commit(session: DocumentSession) -> SessionResponse:
    """Persist the session snapshot and return the current state."""
    snapshot = session.snapshot()
    get_session_store().save(session.id, snapshot)
    session.mark_saved()
    return SessionResponse(session=snapshot, has_unsaved_changes=session.has_unsaved_changes)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("starting server")

    yield

    for session in sessions.values():
        session.close()
    sessions.clear()
    logger.info("server shutdown")


app = FastAPI(
    title="PDF Assembly API",
    description="Assemble output documents from pages of uploaded PDFs",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Exception Handlers ---


def _error(status_code: int, code: str, exc: Exception, message: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=code, message=message or str(exc)).model_dump(),
    )


@app.exception_handler(OutOfRangeError)
async def out_of_range_handler(request, exc: OutOfRangeError):
    return _error(400, "PAGE_OUT_OF_RANGE", exc)


@app.exception_handler(MissingSourceFileError)
async def missing_source_file_handler(request, exc: MissingSourceFileError):
    return _error(404, "MISSING_SOURCE_FILE", exc)


@app.exception_handler(KeyError)
async def not_found_handler(request, exc: KeyError):
    # str(KeyError) is the repr of its key
    message = str(exc.args[0]) if exc.args else None
    return _error(404, "NOT_FOUND", exc, message)


@app.exception_handler(CorruptDocumentError)
async def corrupt_document_handler(request, exc: CorruptDocumentError):
    return _error(422, exc.error_code.upper(), exc)


@app.exception_handler(ValueError)
async def invalid_request_handler(request, exc: ValueError):
    return _error(400, "INVALID_REQUEST", exc)


@app.exception_handler(RenderFailure)
async def render_failure_handler(request, exc: RenderFailure):
    return _error(500, "RENDER_FAILED", exc)


@app.exception_handler(EmptyExportError)
async def empty_export_handler(request, exc: EmptyExportError):
    return _error(422, "EMPTY_EXPORT", exc)


@app.exception_handler(PackagingError)
async def packaging_error_handler(request, exc: PackagingError):
    return _error(500, "PACKAGING_FAILED", exc)


# --- Health Endpoints ---


@app.get("/health", response_model=HealthResponse)
async def health():
    """Liveness check."""
    return HealthResponse(status="healthy", sessions=len(sessions))


# --- Session Endpoints ---


@app.post("/api/v1/sessions", response_model=SessionResponse, status_code=201)
async def create_session():
    session = DocumentSession()
    sessions[session.id] = session
    logger.info("session created", session_id=session.id)
    return commit(session)


@app.get("/api/v1/sessions/{session_id}", response_model=SessionResponse)
async def read_session(session_id: str):
    session = get_session(session_id)
    return SessionResponse(
        session=session.snapshot(), has_unsaved_changes=session.has_unsaved_changes
    )


@app.delete("/api/v1/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str):
    session = get_session(session_id)
    sessions.pop(session_id, None)
    session.close()
    get_session_store().delete(session_id)
    logger.info("session deleted", session_id=session_id)
    return Response(status_code=204)


@app.get("/api/v1/sessions/{session_id}/snapshot", response_model=SessionSnapshot)
async def read_snapshot(session_id: str):
    """Last snapshot saved to the session store."""
    snapshot = get_session_store().load(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No snapshot saved for this session")
    return snapshot


# --- File Endpoints ---


@app.post("/api/v1/sessions/{session_id}/files", response_model=UploadResponse)
async def upload_files(session_id: str, files: list[UploadFile] = File(...)):
    """Add PDF files to a session; each readable file gets its own group."""
    session = get_session(session_id)
    if len(files) > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files. Maximum batch size is {MAX_BATCH_SIZE}",
        )

    with log_context(session_id=session_id):
        results: list[AddFileResult | None] = []
        valid: list[tuple[str, bytes]] = []
        valid_positions: list[int] = []

        # Phase 1: size limit; whether the bytes are a PDF is left to the parser
        for file in files:
            file_name = file.filename or "unknown.pdf"
            data = await file.read()

            if len(data) > MAX_UPLOAD_SIZE:
                results.append(
                    AddFileResult(
                        file_name=file_name,
                        error=f"File too large. Maximum size is {MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
                        error_code="file_too_large",
                    )
                )
                continue

            valid_positions.append(len(results))
            results.append(None)
            valid.append((file_name, data))

        # Phase 2: parse the remaining files together
        if valid:
            added = await session.add_files(valid)
            for position, result in zip(valid_positions, added):
                results[position] = result

        commit(session)

    final = [r for r in results if r is not None]
    return UploadResponse(
        results=final,
        successful=sum(1 for r in final if not r.error),
        failed=sum(1 for r in final if r.error),
    )


@app.delete("/api/v1/sessions/{session_id}/files/{file_id}", response_model=SessionResponse)
async def remove_file(session_id: str, file_id: str):
    session = get_session(session_id)
    session.remove_file(file_id)
    return commit(session)


@app.get("/api/v1/sessions/{session_id}/files/{file_id}/pages/{page_index}/preview")
async def preview_page(session_id: str, file_id: str, page_index: int, wait: bool = Query(default=False)):
    """PNG preview of a source page; 202 while it is still rendering."""
    session = get_session(session_id)
    ref = session.get_page_ref(file_id, page_index)
    if wait:
        rendered = await session.render_cache.get_page(ref.file_id, ref.page_index)
    else:
        rendered = session.request_page(ref)
    if rendered is None:
        return JSONResponse(status_code=202, content={"status": "pending"})
    return Response(content=rendered.png, media_type="image/png")


# --- Group Endpoints ---


@app.post("/api/v1/sessions/{session_id}/groups", response_model=SessionResponse, status_code=201)
async def create_group(session_id: str, request: CreateGroupRequest):
    session = get_session(session_id)
    session.add_group(request.name, request.position)
    return commit(session)


@app.patch("/api/v1/sessions/{session_id}/groups/{group_id}", response_model=SessionResponse)
async def rename_group(session_id: str, group_id: str, request: RenameGroupRequest):
    session = get_session(session_id)
    session.rename_group(group_id, request.name)
    return commit(session)


@app.delete("/api/v1/sessions/{session_id}/groups/{group_id}", response_model=SessionResponse)
async def delete_group(session_id: str, group_id: str):
    session = get_session(session_id)
    session.remove_group(group_id)
    return commit(session)


@app.post("/api/v1/sessions/{session_id}/groups/merge", response_model=SessionResponse)
async def merge_groups(session_id: str, request: MergeGroupsRequest):
    session = get_session(session_id)
    session.merge_groups(request.group_ids, request.name)
    return commit(session)


@app.post("/api/v1/sessions/{session_id}/groups/{group_id}/split", response_model=SessionResponse)
async def split_group(session_id: str, group_id: str, request: SplitGroupRequest):
    session = get_session(session_id)
    session.split_group(group_id, request.at)
    return commit(session)


@app.put("/api/v1/sessions/{session_id}/groups/{group_id}/pages", response_model=SessionResponse)
async def reorder_pages(session_id: str, group_id: str, request: ReorderPagesRequest):
    session = get_session(session_id)
    session.reorder_pages(group_id, request.page_ids)
    return commit(session)


@app.post(
    "/api/v1/sessions/{session_id}/groups/{group_id}/pages",
    response_model=PageResponse,
    status_code=201,
)
async def add_page(session_id: str, group_id: str, request: AddPageRequest):
    session = get_session(session_id)
    page = session.add_page(group_id, request.file_id, request.page_index, request.position)
    commit(session)
    return PageResponse(
        group_id=group_id,
        page_id=page.id,
        file_id=page.ref.file_id,
        page_index=page.ref.page_index,
    )


@app.delete(
    "/api/v1/sessions/{session_id}/groups/{group_id}/pages/{page_id}",
    response_model=SessionResponse,
)
async def remove_page(session_id: str, group_id: str, page_id: str):
    session = get_session(session_id)
    session.remove_page(group_id, page_id)
    return commit(session)


@app.post("/api/v1/sessions/{session_id}/pages/{page_id}/move", response_model=SessionResponse)
async def move_page(session_id: str, page_id: str, request: MovePageRequest):
    session = get_session(session_id)
    session.move_page(page_id, request.to_group_id, request.position)
    return commit(session)


@app.post(
    "/api/v1/sessions/{session_id}/pages/{page_id}/duplicate",
    response_model=PageResponse,
    status_code=201,
)
async def duplicate_page(session_id: str, page_id: str):
    session = get_session(session_id)
    group, _ = session.find_page(page_id)
    page = session.duplicate_page(group.id, page_id)
    commit(session)
    return PageResponse(
        group_id=group.id,
        page_id=page.id,
        file_id=page.ref.file_id,
        page_index=page.ref.page_index,
    )


# --- Export Endpoints ---


@app.get("/api/v1/sessions/{session_id}/export")
async def export_session(session_id: str, strict: bool | None = Query(default=None)):
    """Download the session as one PDF, or a zip when there are several groups."""
    session = get_session(session_id)
    with log_context(session_id=session_id):
        result = await session.export(strict=strict)
    if result is None:
        return Response(status_code=204)

    logger.info(
        "export served",
        session_id=session_id,
        file_name=result.file_name,
        documents_count=result.documents_count,
        size_bytes=len(result.data),
    )
    return Response(
        content=result.data,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(result.file_name)}"
        },
    )
