"""
Submission processing module.

Classifies submission files by content, reads plain text, and extracts
text from PDFs through the OCR tool.
"""

# Media type detection
from .filetypes import (
    FileType,
    FileCategory,
    TEXT_MEDIA_TYPES,
    PDF_MEDIA_TYPE,
    detect_filetype,
    detect_media_type,
    is_text_media_type,
    is_pdf_media_type,
)

# Classification
from .extractor import (
    Classification,
    ClassificationResult,
    ContentExtractor,
)

# Text extraction
from .parser import (
    ParseError,
    TextExtractionResult,
    extract_text_from_pdf,
    read_text_file,
    normalize_text,
)

# OCR
from .ocr import (
    INTERRUPTED_TEXT,
    CancellationToken,
    OCRError,
    OCRTextExtractor,
    OcrOutcome,
    OcrResult,
    OcrState,
)

__all__ = [
    # Media types
    "FileType",
    "FileCategory",
    "TEXT_MEDIA_TYPES",
    "PDF_MEDIA_TYPE",
    "detect_filetype",
    "detect_media_type",
    "is_text_media_type",
    "is_pdf_media_type",
    # Classification
    "Classification",
    "ClassificationResult",
    "ContentExtractor",
    # Text extraction
    "ParseError",
    "TextExtractionResult",
    "extract_text_from_pdf",
    "read_text_file",
    "normalize_text",
    # OCR
    "INTERRUPTED_TEXT",
    "CancellationToken",
    "OCRError",
    "OCRTextExtractor",
    "OcrOutcome",
    "OcrResult",
    "OcrState",
]
