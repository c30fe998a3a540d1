"""Bundle several exported documents into one zip archive."""

import asyncio
import io
import time
import zipfile
from pathlib import PurePosixPath

from pydantic import BaseModel

from ..config import ARCHIVE_COMPRESSLEVEL
from ..logger import logger
from .errors import PackagingError


class NamedBuffer(BaseModel):
    """A file name and its contents."""

    name: str
    data: bytes


def unique_names(names: list[str]) -> list[str]:
    """Suffix repeated names with " (2)", " (3)", ... before the extension.

    Example:
        ["a.pdf", "a.pdf", "b.pdf"] -> ["a.pdf", "a (2).pdf", "b.pdf"]
    """
    seen: set[str] = set()
    result = []
    for name in names:
        candidate = name
        if candidate in seen:
            path = PurePosixPath(name)
            counter = 2
            while candidate in seen:
                candidate = f"{path.stem} ({counter}){path.suffix}"
                counter += 1
        seen.add(candidate)
        result.append(candidate)
    return result


def build_zip(files: list[NamedBuffer], compresslevel: int = ARCHIVE_COMPRESSLEVEL) -> bytes:
    buffer = io.BytesIO()
    names = unique_names([f.name for f in files])
    with zipfile.ZipFile(
        buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel
    ) as archive:
        for name, file in zip(names, files):
            archive.writestr(name, file.data)
    return buffer.getvalue()


async def package_files(files: list[NamedBuffer]) -> bytes:
    """Zip named buffers in a worker thread.

    Args:
        files: Documents to bundle, in archive order.

    Returns:
        The zip archive bytes.

    Raises:
        PackagingError: If there is nothing to package or compression fails.
            No partial archive is ever returned.
    """
    if not files:
        raise PackagingError("Nothing to package")

    start = time.perf_counter()
    try:
        data = await asyncio.to_thread(build_zip, files)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as e:
        logger.error("packaging failed", files_count=len(files), error=str(e))
        raise PackagingError(f"Failed to build archive: {e}") from e

    logger.info(
        "archive packaged",
        files_count=len(files),
        size_bytes=len(data),
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return data
