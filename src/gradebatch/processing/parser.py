"""
Text extraction from PDF text layers and plain text files.

PDF text is read structurally with pypdf: whatever text layer the
document carries (native or added by OCR) is returned, nothing is
recognized from images here.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pypdf
from pypdf.errors import PyPdfError

from ..utils.logging import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class ParseError(Exception):
    """Error during document parsing."""

    pass


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass
class TextExtractionResult:
    """Result of text extraction from a document."""

    text: str
    file_path: Path
    format: str
    page_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Text Extraction Functions
# -----------------------------------------------------------------------------


def extract_text_from_pdf(file_path: Path) -> TextExtractionResult:
    """
    Extract the text layer of a PDF document.

    Pages are read in order and joined with blank lines. A page whose
    text cannot be decoded is reported as a warning and skipped.

    Args:
        file_path: Path to the PDF file

    Returns:
        TextExtractionResult with extracted text and PDF metadata

    Raises:
        ParseError: If the PDF cannot be opened
    """
    logger.debug(f"Reading PDF text layer: {file_path}")
    warnings = []

    try:
        reader = pypdf.PdfReader(file_path)
    except (PyPdfError, OSError, ValueError) as e:
        raise ParseError(f"Failed to open PDF {file_path}: {e}") from e

    meta = reader.metadata or {}
    text_parts = []
    for i, page in enumerate(reader.pages, 1):
        try:
            page_text = page.extract_text()
        except (PyPdfError, KeyError, ValueError) as e:
            warnings.append(f"Could not extract text from page {i}: {e}")
            continue
        if page_text:
            text_parts.append(page_text.strip())

    if not text_parts:
        warnings.append("No text layer found in PDF (may be scanned/image-based)")

    return TextExtractionResult(
        text="\n\n".join(text_parts),
        file_path=file_path,
        format="pdf",
        page_count=len(reader.pages),
        metadata={
            "title": str(meta.get("/Title", "")),
            "author": str(meta.get("/Author", "")),
            "producer": str(meta.get("/Producer", "")),
        },
        warnings=warnings,
    )


def read_text_file(file_path: Path) -> str:
    """
    Read a text file verbatim as UTF-8.

    Undecodable bytes are replaced rather than rejected so that a stray
    Latin-1 character never drops a student's file.
    """
    return file_path.read_bytes().decode("utf-8", errors="replace")


# -----------------------------------------------------------------------------
# Text Processing Utilities
# -----------------------------------------------------------------------------


def normalize_text(text: str) -> str:
    """
    Normalize text for consistent processing.

    - Normalizes line endings
    - Removes excessive blank lines

    Args:
        text: Raw text to normalize

    Returns:
        Normalized text
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text
