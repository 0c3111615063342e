"""Tests for image extraction, perceptual hashing and duplicate clustering."""

import math
import re
from dataclasses import dataclass

import pytest
from PIL import Image

from conftest import block_pattern, make_image_pdf
from gradebatch.config.models import DedupSettings
from gradebatch.images.dedup import DuplicateClusterer
from gradebatch.images.extractor import ImageExtractor
from gradebatch.images.hashing import ImageHashError, PerceptualHasher, bits_to_hex, hamming_distance

HEX_16 = re.compile(r"^[0-9a-f]{16}$")


@dataclass
class FakeImage:
    name: str
    dhash: str | None
    phash: str | None
    is_duplicate: bool = False


def near_copy(image: Image.Image) -> Image.Image:
    """Same image with one pixel changed."""
    copy = image.copy()
    copy.putpixel((0, 0), (255, 0, 0))
    return copy


# -----------------------------------------------------------------------------
# Hashing
# -----------------------------------------------------------------------------


class TestHashing:
    @pytest.mark.parametrize("size", [(1, 1), (3, 500), (64, 64), (640, 480)])
    def test_hashes_are_16_hex_chars(self, size):
        hasher = PerceptualHasher()
        image = block_pattern(7).resize(size)

        assert HEX_16.match(hasher.dhash(image))
        assert HEX_16.match(hasher.phash(image))

    def test_near_identical_images_are_close(self):
        hasher = PerceptualHasher()
        base = block_pattern(3)

        assert hamming_distance(hasher.dhash(base), hasher.dhash(near_copy(base))) <= 4
        assert hamming_distance(hasher.phash(base), hasher.phash(near_copy(base))) <= 6

    def test_uniform_image_has_zero_hashes(self):
        hasher = PerceptualHasher()
        image = Image.new("RGB", (50, 50), (120, 120, 120))

        assert hasher.dhash(image) == "0" * 16
        assert hasher.phash(image) == "0" * 16

    def test_compute_from_file(self, tmp_path):
        path = tmp_path / "logo.png"
        block_pattern(5).save(path)

        hashes = PerceptualHasher().compute(path)

        assert HEX_16.match(hashes.dhash)
        assert HEX_16.match(hashes.phash)

    def test_undecodable_file_raises(self, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")

        with pytest.raises(ImageHashError):
            PerceptualHasher().compute(path)

    def test_bits_to_hex(self):
        assert bits_to_hex([1, 0, 1, 0, 0, 0, 0, 1]) == "a1"


class TestHammingDistance:
    def test_identity(self):
        assert hamming_distance("a1b2c3d4e5f60718", "a1b2c3d4e5f60718") == 0

    def test_symmetry(self):
        a, b = "0f0f0f0f0f0f0f0f", "ff00ff00ff00ff01"
        assert hamming_distance(a, b) == hamming_distance(b, a)

    def test_counts_bits(self):
        assert hamming_distance("0000000000000000", "000000000000000f") == 4
        assert hamming_distance("0000000000000000", "ffffffffffffffff") == 64

    def test_unequal_length_is_infinite(self):
        assert hamming_distance("abc", "abcd") == math.inf


# -----------------------------------------------------------------------------
# Clustering
# -----------------------------------------------------------------------------


class TestDuplicateClusterer:
    def test_three_similar_one_distinct(self):
        images = [
            FakeImage("logo-1", "0000000000000000", "0000000000000000"),
            FakeImage("logo-2", "0000000000000001", "0000000000000003"),
            FakeImage("photo", "ffffffffffffffff", "ffffffffffffffff"),
            FakeImage("logo-3", "0000000000000003", "000000000000000f"),
        ]

        clusters = DuplicateClusterer().cluster(images)

        assert [c.size for c in clusters] == [3, 1]
        assert clusters[0].is_duplicate
        assert not clusters[1].is_duplicate
        assert {i.name for i in images if i.is_duplicate} == {"logo-1", "logo-2", "logo-3"}

    def test_both_thresholds_must_hold(self):
        images = [
            FakeImage(f"img-{i}", "0000000000000000", phash)
            for i, phash in enumerate(["0000000000000000", "00000000000000ff", "0000000000000000"])
        ]

        clusters = DuplicateClusterer().cluster(images)

        # Second image is 8 bits away on pHash, beyond the default 6
        assert [c.size for c in clusters] == [2, 1]
        assert not any(i.is_duplicate for i in images)

    def test_images_without_hashes_never_cluster(self):
        images = [FakeImage(f"img-{i}", None, None) for i in range(4)]

        clusters = DuplicateClusterer().cluster(images)

        assert len(clusters) == 4
        assert not any(i.is_duplicate for i in images)

    def test_thresholds_are_configurable(self):
        images = [FakeImage(f"img-{i}", "0000000000000000", "0000000000000000") for i in range(2)]

        DuplicateClusterer(DedupSettings(min_cluster_size=2)).cluster(images)

        assert all(i.is_duplicate for i in images)

    def test_clustering_is_idempotent(self):
        images = [
            FakeImage("a", "0000000000000000", "0000000000000000"),
            FakeImage("b", "0000000000000001", "0000000000000000"),
            FakeImage("c", "0000000000000000", "0000000000000001"),
            FakeImage("d", "f0f0f0f0f0f0f0f0", "f0f0f0f0f0f0f0f0"),
        ]
        clusterer = DuplicateClusterer()

        clusterer.cluster(images)
        first = {i.name for i in images if i.is_duplicate}
        clusterer.cluster(list(reversed(images)))
        second = {i.name for i in images if i.is_duplicate}

        assert first == second == {"a", "b", "c"}


# -----------------------------------------------------------------------------
# Extraction
# -----------------------------------------------------------------------------


class TestImageExtractor:
    def test_extracts_images_page_by_page(self, tmp_path):
        logo = block_pattern(11)
        photo = block_pattern(99)
        pdf = make_image_pdf(tmp_path / "report.pdf", [[logo, photo], [near_copy(logo)]])

        images = ImageExtractor().extract_images(pdf)

        assert [(i.page_number, i.image_index) for i in images] == [(1, 1), (1, 2), (2, 1)]
        assert re.match(r"^report_images/page_1_img_1\.\w+$", images[0].relative_path)
        assert re.match(r"^report_images/page_2_img_1\.\w+$", images[2].relative_path)
        for image in images:
            assert image.file_path.exists()
            assert image.byte_size == image.file_path.stat().st_size
            assert image.width and image.height
            assert image.has_hashes
            assert image.media_type.startswith("image/")

    def test_repeated_logo_is_flagged_duplicate(self, tmp_path):
        logo = block_pattern(11)
        photo = block_pattern(99)
        pdf = make_image_pdf(
            tmp_path / "report.pdf",
            [[logo, photo], [near_copy(logo)], [logo]],
        )

        images = ImageExtractor().extract_images(pdf)
        clusters = DuplicateClusterer().cluster(images)

        assert len(images) == 4
        assert [c.size for c in clusters] == [3, 1]
        assert sum(i.is_duplicate for i in images) == 3

    def test_relative_to_base_dir(self, tmp_path):
        pdf = make_image_pdf(tmp_path / "studentA" / "docs" / "scan.pdf", [[block_pattern(1)]])

        images = ImageExtractor().extract_images(pdf, base_dir=tmp_path / "studentA")

        assert images[0].relative_path.startswith("docs/scan_images/page_1_img_1.")
