"""
Submission file classification and text extraction.

Every file of a submission is classified from its content into one of
the outcomes of `Classification`. Plain-text files are read here;
PDFs are handed over to the OCR text extractor; everything else is
recorded as unsupported.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..utils.logging import get_logger
from .filetypes import detect_media_type, is_pdf_media_type, is_text_media_type
from .parser import read_text_file

logger = get_logger(__name__)


class Classification(Enum):
    """Outcome of classifying one submission file."""

    PLAIN_TEXT = "plain-text"
    PDF_PROCESSED = "pdf-processed"
    PDF_ORIGINAL = "pdf-original"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ClassificationResult:
    """Media type, classification and (for plain text) the file's text."""

    file_path: Path
    media_type: str
    classification: Classification
    extracted_text: str | None = None

    @property
    def is_plain_text(self) -> bool:
        return self.classification is Classification.PLAIN_TEXT

    @property
    def is_pdf(self) -> bool:
        return self.classification in (Classification.PDF_ORIGINAL, Classification.PDF_PROCESSED)

    @property
    def is_supported(self) -> bool:
        return self.classification is not Classification.UNSUPPORTED


class ContentExtractor:
    """Classifies files by content and extracts plain text."""

    def detect_media_type(self, file_path: Path) -> str:
        """Detect a file's media type from its bytes."""
        return detect_media_type(file_path)

    def classify_and_extract(self, file_path: Path) -> ClassificationResult:
        """
        Classify a file and read its text when it is plain text.

        PDFs are reported as `PDF_ORIGINAL` without text; extracting them
        is the OCR text extractor's job. Unsupported types are a normal
        outcome, not an error.

        Args:
            file_path: File to classify

        Returns:
            ClassificationResult for the file

        Raises:
            OSError: If the file cannot be read
        """
        media_type = self.detect_media_type(file_path)

        if is_text_media_type(media_type):
            text = read_text_file(file_path)
            logger.info(f"Text file: {file_path.name} ({len(text)} characters)")
            return ClassificationResult(file_path, media_type, Classification.PLAIN_TEXT, text)

        if is_pdf_media_type(media_type):
            logger.info(f"PDF file: {file_path.name}")
            return ClassificationResult(file_path, media_type, Classification.PDF_ORIGINAL)

        logger.warning(f"Unsupported file type: {file_path.name} (media type: {media_type})")
        return ClassificationResult(file_path, media_type, Classification.UNSUPPORTED)
