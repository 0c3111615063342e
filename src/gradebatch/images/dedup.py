"""
Duplicate image clustering.

Repeated non-content imagery (letterheads, logos, form headers) shows
up as many near-identical images in a submission. Images are grouped
greedily by perceptual-hash distance and large groups are flagged so
they can be left out of grading inputs.
"""

from dataclasses import dataclass, field
from typing import Protocol

from ..config.models import DedupSettings
from ..utils.logging import get_logger
from .hashing import hamming_distance

logger = get_logger(__name__)


class HashedImage(Protocol):
    """Anything carrying perceptual hashes and a duplicate flag."""

    dhash: str | None
    phash: str | None
    is_duplicate: bool


@dataclass
class ImageCluster:
    """Images judged mutually similar; the first member is the representative."""

    members: list[HashedImage] = field(default_factory=list)
    is_duplicate: bool = False

    @property
    def representative(self) -> HashedImage:
        return self.members[0]

    @property
    def size(self) -> int:
        return len(self.members)


class DuplicateClusterer:
    """Greedy single-pass clustering on dHash and pHash distance."""

    def __init__(self, settings: DedupSettings | None = None):
        self.settings = settings or DedupSettings()

    def is_similar(self, a: HashedImage, b: HashedImage) -> bool:
        """Both hash distances must be within their thresholds; missing hashes never match."""
        if not (a.dhash and a.phash and b.dhash and b.phash):
            return False
        return (
            hamming_distance(a.dhash, b.dhash) <= self.settings.dhash_max_distance
            and hamming_distance(a.phash, b.phash) <= self.settings.phash_max_distance
        )

    def cluster(self, images: list[HashedImage]) -> list[ImageCluster]:
        """
        Group images and flag large groups as duplicates.

        Each image joins the first existing cluster whose representative
        is similar, otherwise it starts a new cluster. Every member of a
        cluster with at least `min_cluster_size` images gets
        `is_duplicate = True`. Flags are never cleared here.

        Args:
            images: Images to cluster (mutated in place)

        Returns:
            Clusters sorted by descending size
        """
        clusters: list[ImageCluster] = []

        for image in images:
            for cluster in clusters:
                if self.is_similar(cluster.representative, image):
                    cluster.members.append(image)
                    break
            else:
                clusters.append(ImageCluster(members=[image]))

        duplicates = 0
        for cluster in clusters:
            if cluster.size >= self.settings.min_cluster_size:
                cluster.is_duplicate = True
                for image in cluster.members:
                    image.is_duplicate = True
                duplicates += cluster.size

        clusters.sort(key=lambda c: c.size, reverse=True)

        logger.info(
            f"Clustered {len(images)} images into {len(clusters)} clusters "
            f"({duplicates} marked duplicate)"
        )
        return clusters
