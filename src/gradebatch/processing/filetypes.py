"""
Content-based media type detection.

Identifies a file's media type from its bytes (file signatures and a
text-likeness probe) rather than from its name. The file name is only
consulted to refine the subtype of content already known to be text.
"""

import json
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from ..utils.logging import get_logger

logger = get_logger(__name__)

# Bytes inspected by the text-likeness probe
SNIFF_SIZE = 8192


class FileCategory(Enum):
    """Categories of detected media types."""

    TEXT = "text"
    DOCUMENT = "document"
    ARCHIVE = "archive"
    IMAGE = "image"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FileType:
    """Represents a detected media type."""

    extension: str
    mime_type: str
    category: FileCategory
    description: str


# -----------------------------------------------------------------------------
# Known File Types
# -----------------------------------------------------------------------------

# Text family
TXT = FileType("txt", "text/plain", FileCategory.TEXT, "Plain Text")
MD = FileType("md", "text/markdown", FileCategory.TEXT, "Markdown")
PYTHON = FileType("py", "text/x-python", FileCategory.TEXT, "Python Source")
JAVA = FileType("java", "text/x-java-source", FileCategory.TEXT, "Java Source")
C = FileType("c", "text/x-c", FileCategory.TEXT, "C Source")
CPP = FileType("cpp", "text/x-c++", FileCategory.TEXT, "C++ Source")
JAVASCRIPT = FileType("js", "text/javascript", FileCategory.TEXT, "JavaScript Source")
HTML = FileType("html", "text/html", FileCategory.TEXT, "HTML Document")
CSS = FileType("css", "text/css", FileCategory.TEXT, "CSS Stylesheet")
SQL = FileType("sql", "text/x-sql", FileCategory.TEXT, "SQL Script")
JSON = FileType("json", "application/json", FileCategory.TEXT, "JSON Data")
XML = FileType("xml", "application/xml", FileCategory.TEXT, "XML Document")

# Documents
PDF = FileType("pdf", "application/pdf", FileCategory.DOCUMENT, "PDF Document")
DOCX = FileType("docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document", FileCategory.DOCUMENT, "Microsoft Word Document")
DOC = FileType("doc", "application/x-tika-msoffice", FileCategory.DOCUMENT, "OLE2 Compound Document")
RTF = FileType("rtf", "application/rtf", FileCategory.DOCUMENT, "Rich Text Format")

# Archives
ZIP = FileType("zip", "application/zip", FileCategory.ARCHIVE, "ZIP Archive")
RAR = FileType("rar", "application/x-rar-compressed", FileCategory.ARCHIVE, "RAR Archive")
SEVENZ = FileType("7z", "application/x-7z-compressed", FileCategory.ARCHIVE, "7-Zip Archive")
GZIP = FileType("gz", "application/gzip", FileCategory.ARCHIVE, "Gzip Archive")

# Images
PNG = FileType("png", "image/png", FileCategory.IMAGE, "PNG Image")
JPEG = FileType("jpg", "image/jpeg", FileCategory.IMAGE, "JPEG Image")
GIF = FileType("gif", "image/gif", FileCategory.IMAGE, "GIF Image")
TIFF = FileType("tif", "image/tiff", FileCategory.IMAGE, "TIFF Image")

UNKNOWN = FileType("", "application/octet-stream", FileCategory.UNKNOWN, "Unknown File Type")


# Media types read verbatim as UTF-8 text. A detected type matches when it
# equals an entry or starts with one (e.g. "text/x-c++src" matches "text/x-c").
TEXT_MEDIA_TYPES: tuple[str, ...] = (
    "text/plain",
    "text/x-java-source",
    "text/x-python",
    "text/x-c",
    "text/x-c++",
    "text/html",
    "text/css",
    "text/javascript",
    "application/javascript",
    "application/x-javascript",
    "text/x-sql",
    "application/sql",
    "text/markdown",
    "text/x-markdown",
    "application/json",
    "application/xml",
    "text/xml",
)

PDF_MEDIA_TYPE = PDF.mime_type


# -----------------------------------------------------------------------------
# Magic Bytes Signatures
# -----------------------------------------------------------------------------

# Format: (signature_bytes, offset, file_type)
MAGIC_SIGNATURES: list[tuple[bytes, int, FileType]] = [
    (b"%PDF", 0, PDF),
    (b"PK\x03\x04", 0, ZIP),
    (b"PK\x05\x06", 0, ZIP),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", 0, DOC),
    (b"{\\rtf", 0, RTF),
    (b"Rar!\x1a\x07", 0, RAR),
    (b"7z\xbc\xaf\x27\x1c", 0, SEVENZ),
    (b"\x1f\x8b", 0, GZIP),
    (b"\x89PNG\r\n\x1a\n", 0, PNG),
    (b"\xff\xd8\xff", 0, JPEG),
    (b"GIF87a", 0, GIF),
    (b"GIF89a", 0, GIF),
    (b"II*\x00", 0, TIFF),
    (b"MM\x00*", 0, TIFF),
]

# Subtypes of text content, refined by extension once content is known to be text
TEXT_EXTENSION_MAP: dict[str, FileType] = {
    "txt": TXT,
    "md": MD,
    "markdown": MD,
    "py": PYTHON,
    "pyw": PYTHON,
    "java": JAVA,
    "c": C,
    "h": C,
    "cpp": CPP,
    "cc": CPP,
    "cxx": CPP,
    "hpp": CPP,
    "js": JAVASCRIPT,
    "mjs": JAVASCRIPT,
    "html": HTML,
    "htm": HTML,
    "css": CSS,
    "sql": SQL,
    "json": JSON,
    "xml": XML,
}


# -----------------------------------------------------------------------------
# Detection Functions
# -----------------------------------------------------------------------------


def detect_by_magic(header: bytes) -> FileType:
    """
    Detect a media type from leading bytes (file signature).

    Args:
        header: First bytes of the file

    Returns:
        Detected FileType or UNKNOWN
    """
    for signature, offset, file_type in MAGIC_SIGNATURES:
        if header[offset : offset + len(signature)] == signature:
            return file_type
    return UNKNOWN


def looks_like_text(sample: bytes) -> bool:
    """
    Check whether a byte sample is text.

    Empty input counts as text. NUL bytes or undecodable UTF-8 (other
    than a sequence cut at the sample boundary) mean binary content.
    """
    if not sample:
        return True
    if b"\x00" in sample:
        return False
    try:
        sample.decode("utf-8")
    except UnicodeDecodeError as e:
        # A multibyte character cut by the sample window is still text
        if e.start >= len(sample) - 3 and e.reason == "unexpected end of data":
            return True
        return False
    return True


def _detect_text_subtype(sample: bytes, path: Path) -> FileType:
    """Refine text content into a specific text media type."""
    stripped = sample.lstrip(b"\xef\xbb\xbf").lstrip()
    lowered = stripped[:256].lower()

    if lowered.startswith(b"<?xml"):
        return XML
    if lowered.startswith(b"<!doctype html") or lowered.startswith(b"<html"):
        return HTML
    if stripped[:1] in (b"{", b"["):
        try:
            json.loads(sample.decode("utf-8"))
            return JSON
        except ValueError:
            pass

    return TEXT_EXTENSION_MAP.get(path.suffix.lower().lstrip("."), TXT)


def _is_docx(path: Path) -> bool:
    """Check if a ZIP file is actually a DOCX document."""
    try:
        with zipfile.ZipFile(path, "r") as zf:
            names = zf.namelist()
            return "[Content_Types].xml" in names and any(name.startswith("word/") for name in names)
    except (zipfile.BadZipFile, OSError):
        return False


def _read_sample(stream: BinaryIO) -> bytes:
    return stream.read(SNIFF_SIZE)


def detect_filetype(path: Path) -> FileType:
    """
    Detect the media type of a file from its content.

    Args:
        path: Path to the file

    Returns:
        Detected FileType

    Raises:
        OSError: If the file cannot be read
    """
    with open(path, "rb") as f:
        sample = _read_sample(f)

    magic_type = detect_by_magic(sample)
    if magic_type == ZIP and _is_docx(path):
        return DOCX
    if magic_type != UNKNOWN:
        return magic_type

    if looks_like_text(sample):
        return _detect_text_subtype(sample, path)

    return UNKNOWN


def detect_media_type(path: Path) -> str:
    """Detect the media type string (MIME) of a file from its content."""
    media_type = detect_filetype(path).mime_type
    logger.debug(f"Detected media type for {path.name}: {media_type}")
    return media_type


def is_text_media_type(media_type: str) -> bool:
    """Check if a media type belongs to the text-like family."""
    return any(media_type == t or media_type.startswith(t) for t in TEXT_MEDIA_TYPES)


def is_pdf_media_type(media_type: str) -> bool:
    """Check if a media type is PDF."""
    return media_type == PDF_MEDIA_TYPE
