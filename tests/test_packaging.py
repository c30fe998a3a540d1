"""Tests for zip packaging."""

import asyncio
import io
import zipfile
from unittest.mock import patch

import pytest

from pdf_assembler.assembly import NamedBuffer, PackagingError, package_files
from pdf_assembler.assembly.packaging import unique_names


class TestPackageFiles:
    def test_archive_contains_entries_in_order(self):
        files = [
            NamedBuffer(name="first.pdf", data=b"%PDF-1"),
            NamedBuffer(name="second.pdf", data=b"%PDF-2"),
        ]
        data = asyncio.run(package_files(files))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["first.pdf", "second.pdf"]
            assert archive.read("second.pdf") == b"%PDF-2"
            assert archive.testzip() is None

    def test_duplicate_names_are_suffixed(self):
        files = [NamedBuffer(name="doc.pdf", data=b"1"), NamedBuffer(name="doc.pdf", data=b"2")]
        data = asyncio.run(package_files(files))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.namelist() == ["doc.pdf", "doc (2).pdf"]
            assert archive.read("doc (2).pdf") == b"2"

    def test_empty_input_raises(self):
        with pytest.raises(PackagingError):
            asyncio.run(package_files([]))

    def test_compression_error_propagates(self):
        files = [NamedBuffer(name="doc.pdf", data=b"1")]
        with patch(
            "pdf_assembler.assembly.packaging.zipfile.ZipFile.writestr",
            side_effect=OSError("disk full"),
        ):
            with pytest.raises(PackagingError, match="disk full") as exc_info:
                asyncio.run(package_files(files))
        assert isinstance(exc_info.value.__cause__, OSError)


class TestUniqueNames:
    def test_names_without_clash_unchanged(self):
        assert unique_names(["a.pdf", "b.pdf"]) == ["a.pdf", "b.pdf"]

    def test_repeated_names(self):
        assert unique_names(["a.pdf", "a.pdf", "a.pdf"]) == ["a.pdf", "a (2).pdf", "a (3).pdf"]

    def test_suffix_does_not_collide_with_existing_name(self):
        assert unique_names(["a (2).pdf", "a.pdf", "a.pdf"]) == ["a (2).pdf", "a.pdf", "a (3).pdf"]
