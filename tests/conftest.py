"""Shared fixtures: small PDFs whose pages are identifiable by their text."""

from typing import Callable

import fitz  # PyMuPDF
import pytest


def build_pdf(labels: list[str], annotate: bool = False, goto: dict[int, int] | None = None) -> bytes:
    """Create a PDF with one page per label, the label printed on the page.

    With annotate=True every page also gets a text annotation and a URI link.
    goto maps a page index to the page its internal link jumps to.
    """
    doc = fitz.open()
    for label in labels:
        page = doc.new_page(width=200, height=200)
        page.insert_text((20, 40), label, fontsize=14, fontname="helv")
        if annotate:
            page.add_text_annot((150, 150), f"note {label}")
            page.insert_link(
                {
                    "kind": fitz.LINK_URI,
                    "from": fitz.Rect(20, 60, 120, 80),
                    "uri": f"https://example.com/{label}",
                }
            )
    for source, target in (goto or {}).items():
        doc[source].insert_link(
            {
                "kind": fitz.LINK_GOTO,
                "from": fitz.Rect(20, 100, 120, 120),
                "page": target,
                "to": fitz.Point(0, 0),
            }
        )
    data = doc.tobytes()
    doc.close()
    return data


def page_labels(source: bytes | fitz.Document) -> list[str]:
    """Return the text of every page, stripped, in page order."""
    if isinstance(source, (bytes, bytearray)):
        doc = fitz.open(stream=source, filetype="pdf")
        try:
            return [page.get_text().strip() for page in doc]
        finally:
            doc.close()
    return [page.get_text().strip() for page in source]


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture
def read_labels() -> Callable[[bytes | fitz.Document], list[str]]:
    return page_labels


@pytest.fixture
def encrypted_pdf() -> bytes:
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), "secret", fontname="helv")
    data = doc.tobytes(
        encryption=fitz.PDF_ENCRYPT_AES_256,
        owner_pw="owner",
        user_pw="user",
    )
    doc.close()
    return data
