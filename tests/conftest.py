"""
Shared pytest fixtures.

Provides an in-memory record store, pipeline settings rooted in a
temporary workspace, and helpers that render test PDFs and images.
"""

import random
import stat
from pathlib import Path

import pytest
from PIL import Image
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from gradebatch.config.models import OCRSettings, PipelineSettings
from gradebatch.storage.repository import create_store

# Never resolves on PATH, so OCR is always reported as unavailable
MISSING_OCR_COMMAND = "gradebatch-test-missing-ocr-tool"


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings(work_dir: Path) -> PipelineSettings:
    return PipelineSettings(
        work_dir=work_dir,
        database_url="sqlite://",
        ocr=OCRSettings(command=MISSING_OCR_COMMAND, poll_interval=0.05),
    )


@pytest.fixture
def store(settings: PipelineSettings):
    store = create_store(settings.resolved_database_url)
    yield store
    store.dispose()


@pytest.fixture
def task(store):
    return store.tasks.add(
        name="Essay 1",
        external_ref="12345",
        grading_instructions="Grade the essay from 0 to 10.",
    )


# -----------------------------------------------------------------------------
# File builders
# -----------------------------------------------------------------------------


def make_text_pdf(path: Path, pages: list[str]) -> Path:
    """Render a PDF with one line of text per page."""
    path.parent.mkdir(parents=True, exist_ok=True)
    pdf = canvas.Canvas(str(path), pagesize=A4)
    for text in pages:
        pdf.drawString(72, 720, text)
        pdf.showPage()
    pdf.save()
    return path


def make_image_pdf(path: Path, pages: list[list[Image.Image]]) -> Path:
    """Render a PDF placing the given images on each page."""
    path.parent.mkdir(parents=True, exist_ok=True)
    pdf = canvas.Canvas(str(path), pagesize=A4)
    for images in pages:
        for i, image in enumerate(images):
            pdf.drawImage(ImageReader(image), 72 + i * 220, 500, width=200, height=200)
        pdf.showPage()
    pdf.save()
    return path


def block_pattern(seed: int, size: int = 128, blocks: int = 16) -> Image.Image:
    """Image of random gray blocks, reproducible from the seed."""
    rng = random.Random(seed)
    image = Image.new("RGB", (size, size))
    step = size // blocks
    for by in range(blocks):
        for bx in range(blocks):
            level = rng.randint(0, 255)
            image.paste((level, level, level), (bx * step, by * step, (bx + 1) * step, (by + 1) * step))
    return image


def write_script(path: Path, body: str) -> Path:
    """Write an executable shell script standing in for the OCR tool."""
    path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path
