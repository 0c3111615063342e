"""
Image sub-pipeline.

Extracts embedded images from PDFs, fingerprints them with perceptual
hashes and flags repeated imagery as duplicates.
"""

from .dedup import DuplicateClusterer, HashedImage, ImageCluster
from .extractor import ExtractedImage, ImageExtractionError, ImageExtractor
from .hashing import ImageHashError, ImageHashes, PerceptualHasher, hamming_distance

__all__ = [
    "DuplicateClusterer",
    "HashedImage",
    "ImageCluster",
    "ExtractedImage",
    "ImageExtractionError",
    "ImageExtractor",
    "ImageHashError",
    "ImageHashes",
    "PerceptualHasher",
    "hamming_distance",
]
