"""File handling utilities."""

import re
import unicodedata
from pathlib import Path

# Names that never belong to a student's deliverable
SYSTEM_FILE_NAMES = {"thumbs.db", "desktop.ini", ".ds_store"}

# Suffix of the folders the image extractor writes next to each PDF
IMAGES_DIR_SUFFIX = "_images"


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The path (for chaining)
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_filename(name: str, max_length: int = 255) -> str:
    """Convert a string to a safe filename.

    Removes or replaces characters that are problematic in filenames
    across different operating systems.

    Args:
        name: Original filename or string
        max_length: Maximum length of the resulting filename

    Returns:
        Safe filename string
    """
    name = unicodedata.normalize("NFKD", name)
    name = name.encode("ascii", "ignore").decode("ascii")
    name = name.replace(" ", "_")
    name = re.sub(r'[<>:"/\\|?*\x00-\x1f]', "", name)
    name = name.strip(". ")

    if len(name) > max_length:
        name = name[:max_length]

    if not name:
        name = "unnamed"

    return name


def is_hidden_or_system_file(path: Path) -> bool:
    """Check if a file is hidden or an OS artifact that must be ignored."""
    name = path.name
    if name.startswith("."):
        return True
    return name.lower() in SYSTEM_FILE_NAMES


def list_submission_files(directory: Path) -> list[Path]:
    """
    List every regular file of a submission directory, recursively.

    Hidden files, OS artifacts and folders produced by image extraction
    are skipped. The result is sorted so that enumeration order is
    reproducible across runs.

    Args:
        directory: Submission directory

    Returns:
        Sorted list of file paths

    Raises:
        NotADirectoryError: If the directory does not exist
    """
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a submission directory: {directory}")

    files = []
    for path in directory.rglob("*"):
        if not path.is_file():
            continue
        relative_parts = path.relative_to(directory).parts
        if any(part.startswith(".") for part in relative_parts[:-1]):
            continue
        if any(part.endswith(IMAGES_DIR_SUFFIX) for part in relative_parts[:-1]):
            continue
        if is_hidden_or_system_file(path):
            continue
        files.append(path)

    return sorted(files)
