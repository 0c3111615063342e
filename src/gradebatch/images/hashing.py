"""
Perceptual image hashing.

Two complementary 64-bit fingerprints are computed per image, each
rendered as 16 hex characters:

- dHash (gradient): 9x8 grayscale, bit set when a pixel is brighter
  than its right-hand neighbour.
- pHash (simplified average): 32x32 grayscale, bit set when a pixel of
  the central 8x8 block is brighter than the mean of the whole image.
"""

import math
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from ..utils.logging import get_logger

logger = get_logger(__name__)

HASH_SIZE = 8
PHASH_SIZE = 32
# Central block used by the pHash (rows/cols 12..19 of 32)
PHASH_BLOCK_START = (PHASH_SIZE - HASH_SIZE) // 2


class ImageHashError(Exception):
    """Image could not be decoded or hashed."""

    pass


@dataclass(frozen=True)
class ImageHashes:
    """Fingerprints of one image."""

    dhash: str
    phash: str


def _grayscale_pixels(image: Image.Image, width: int, height: int) -> list[list[int]]:
    """Resize an image and return rows of (r + g + b) // 3 intensities."""
    resized = image.convert("RGB").resize((width, height), Image.Resampling.BILINEAR)
    pixels = resized.load()
    return [
        [sum(pixels[x, y]) // 3 for x in range(width)]
        for y in range(height)
    ]


def bits_to_hex(bits: list[int]) -> str:
    """Pack a bit sequence into hex characters, four bits per character."""
    digits = []
    for i in range(0, len(bits), 4):
        nibble = 0
        for bit in bits[i : i + 4]:
            nibble = (nibble << 1) | bit
        digits.append(f"{nibble:x}")
    return "".join(digits)


def hamming_distance(hash_a: str, hash_b: str) -> float:
    """
    Count differing bits between two hex hashes.

    Hashes of different length never match: their distance is infinite.
    """
    if len(hash_a) != len(hash_b):
        return math.inf

    distance = 0
    for a, b in zip(hash_a, hash_b):
        distance += bin(int(a, 16) ^ int(b, 16)).count("1")
    return distance


class PerceptualHasher:
    """Computes dHash and simplified pHash fingerprints."""

    def dhash(self, image: Image.Image) -> str:
        rows = _grayscale_pixels(image, HASH_SIZE + 1, HASH_SIZE)
        bits = [
            1 if row[x] > row[x + 1] else 0
            for row in rows
            for x in range(HASH_SIZE)
        ]
        return bits_to_hex(bits)

    def phash(self, image: Image.Image) -> str:
        rows = _grayscale_pixels(image, PHASH_SIZE, PHASH_SIZE)
        mean = sum(sum(row) for row in rows) / (PHASH_SIZE * PHASH_SIZE)

        block = range(PHASH_BLOCK_START, PHASH_BLOCK_START + HASH_SIZE)
        bits = [1 if rows[y][x] > mean else 0 for y in block for x in block]
        return bits_to_hex(bits)

    def compute(self, image_path: Path) -> ImageHashes:
        """
        Hash an image file.

        Args:
            image_path: Path to a decodable image

        Returns:
            ImageHashes with both fingerprints

        Raises:
            ImageHashError: If the image cannot be decoded
        """
        try:
            with Image.open(image_path) as image:
                image.load()
                hashes = ImageHashes(dhash=self.dhash(image), phash=self.phash(image))
        except (OSError, ValueError) as e:
            raise ImageHashError(f"Cannot hash {image_path.name}: {e}") from e

        logger.debug(f"Hashed {image_path.name}: dhash={hashes.dhash} phash={hashes.phash}")
        return hashes
