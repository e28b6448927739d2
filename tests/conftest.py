"""Shared fixtures: small PDFs built in memory with PyMuPDF."""

from __future__ import annotations

import logging
import sys

import fitz
import pytest

from fillable_pdf.fields import Field, PageMeta, new_field_id
from fillable_pdf.ingest import ingest_bytes

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)

LETTER = (612, 792)


def make_pdf(pages: list[list[tuple[tuple[float, float], str]]], size=LETTER) -> bytes:
    """Build a PDF; each page is a list of ((x, baseline_y), text) in top-left coords"""
    doc = fitz.open()
    for lines in pages:
        page = doc.new_page(width=size[0], height=size[1])
        for point, text in lines:
            page.insert_text(point, text, fontname="helv", fontsize=12)
    data = doc.tobytes()
    doc.close()
    return data


def make_field(page_index=0, x=100.0, y=100.0, width=150.0, height=24.0, **kwargs) -> Field:
    kwargs.setdefault("name", f"page{page_index + 1}_manual_1")
    return Field(
        id=kwargs.pop("id", new_field_id()),
        page_index=page_index,
        x=x,
        y=y,
        width=width,
        height=height,
        **kwargs,
    )


@pytest.fixture
def letter_page() -> PageMeta:
    return PageMeta.from_original(0, 612, 792, 1.25)


@pytest.fixture
def blank_form_pdf() -> bytes:
    return make_pdf(
        [
            [((72, 100), "__________"), ((72, 200), "Name: __________ Date: ____")],
            [((72, 300), "Signature: ____________________")],
        ]
    )


@pytest.fixture
def plain_pdf() -> bytes:
    return make_pdf([[((72, 100), "No blanks on this page.")]])


@pytest.fixture
def blank_form_record(blank_form_pdf):
    return ingest_bytes("form.pdf", blank_form_pdf)


@pytest.fixture
def plain_record(plain_pdf):
    return ingest_bytes("plain.pdf", plain_pdf)
