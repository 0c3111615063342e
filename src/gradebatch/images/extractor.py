"""
Embedded image extraction from PDF documents.

Images are written next to the PDF in a `<stem>_images/` folder, named
`page_{page}_img_{index}.{ext}` (both 1-based) so that re-runs produce
the same paths.
"""

from dataclasses import dataclass
from pathlib import Path

import pypdf
from PIL import Image
from pypdf.errors import PyPdfError

from ..utils.files import IMAGES_DIR_SUFFIX, ensure_dir
from ..utils.logging import get_logger
from .hashing import ImageHashError, PerceptualHasher

logger = get_logger(__name__)

DEFAULT_EXTENSION = "png"
IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "jp2", "gif", "tif", "tiff", "bmp"}


class ImageExtractionError(Exception):
    """PDF could not be opened for image extraction."""

    pass


@dataclass
class ExtractedImage:
    """One raster image recovered from a PDF page."""

    relative_path: str
    file_path: Path
    media_type: str
    page_number: int
    image_index: int
    byte_size: int
    width: int | None = None
    height: int | None = None
    dhash: str | None = None
    phash: str | None = None
    is_duplicate: bool = False

    @property
    def has_hashes(self) -> bool:
        return bool(self.dhash and self.phash)


class ImageExtractor:
    """Saves the embedded images of a PDF and fingerprints each one."""

    def __init__(self, hasher: PerceptualHasher | None = None):
        self.hasher = hasher or PerceptualHasher()

    @staticmethod
    def images_dir_for(pdf_file: Path) -> Path:
        return pdf_file.parent / f"{pdf_file.stem}{IMAGES_DIR_SUFFIX}"

    def extract_images(
        self,
        pdf_file: Path,
        base_dir: Path | None = None,
        output_dir: Path | None = None,
    ) -> list[ExtractedImage]:
        """
        Extract every embedded image of a PDF, page by page.

        A page whose images cannot be decoded is logged and skipped.
        Hashing failures leave the image with null hashes.

        Args:
            pdf_file: PDF to read
            base_dir: Directory that `relative_path` is relative to
                (defaults to the PDF's folder)
            output_dir: Folder for the image files (defaults to
                `<stem>_images` beside the PDF)

        Returns:
            Extracted images in page and appearance order

        Raises:
            ImageExtractionError: If the PDF cannot be opened
        """
        base_dir = base_dir or pdf_file.parent

        try:
            reader = pypdf.PdfReader(pdf_file)
            pages = list(reader.pages)
        except (PyPdfError, OSError, ValueError) as e:
            raise ImageExtractionError(f"Failed to open PDF {pdf_file}: {e}") from e

        output_dir = output_dir or self.images_dir_for(pdf_file)
        images: list[ExtractedImage] = []

        for page_number, page in enumerate(pages, 1):
            try:
                page_images = list(page.images)
            except (PyPdfError, KeyError, ValueError, NotImplementedError) as e:
                logger.warning(f"Could not read images on page {page_number} of {pdf_file.name}: {e}")
                continue

            for index, image_file in enumerate(page_images, 1):
                ext = Path(image_file.name).suffix.lstrip(".").lower()
                if ext not in IMAGE_EXTENSIONS:
                    ext = DEFAULT_EXTENSION
                target = ensure_dir(output_dir) / f"page_{page_number}_img_{index}.{ext}"
                target.write_bytes(image_file.data)

                image = ExtractedImage(
                    relative_path=target.relative_to(base_dir).as_posix(),
                    file_path=target,
                    media_type=f"image/{ext}",
                    page_number=page_number,
                    image_index=index,
                    byte_size=len(image_file.data),
                )
                self._describe(image)
                images.append(image)

        logger.info(f"Extracted {len(images)} images from {pdf_file.name}")
        return images

    def _describe(self, image: ExtractedImage) -> None:
        """Fill in dimensions, media type and hashes of a saved image."""
        try:
            with Image.open(image.file_path) as pil_image:
                image.width, image.height = pil_image.size
                image.media_type = Image.MIME.get(pil_image.format or "", image.media_type)
        except OSError as e:
            logger.warning(f"Cannot decode extracted image {image.relative_path}: {e}")
            return

        try:
            hashes = self.hasher.compute(image.file_path)
        except ImageHashError as e:
            logger.warning(f"Hash computation failed for {image.relative_path}: {e}")
            return

        image.dhash = hashes.dhash
        image.phash = hashes.phash
