"""Pluggable one-way digests for request correlation ids."""

import hashlib
from collections.abc import Callable

from ..utils.logging import get_logger

logger = get_logger(__name__)

Digest = Callable[[str], str]

DEFAULT_ALGORITHM = "sha1"
SUPPORTED_ALGORITHMS = ("sha1", "sha256", "sha512", "md5")


class DigestError(Exception):
    """Unknown digest algorithm or hashing failure."""

    pass


def _hashlib_digest(algorithm: str) -> Digest:
    def digest(value: str) -> str:
        return hashlib.new(algorithm, value.encode("utf-8")).hexdigest()

    digest.__name__ = f"{algorithm}_digest"
    return digest


def get_digest(algorithm: str = DEFAULT_ALGORITHM) -> Digest:
    """
    Get a digest function by name.

    Args:
        algorithm: One of SUPPORTED_ALGORITHMS (case-insensitive)

    Returns:
        Function mapping a string to its lowercase hex digest

    Raises:
        DigestError: If the algorithm is not supported
    """
    name = algorithm.lower().replace("-", "")
    if name not in SUPPORTED_ALGORITHMS:
        raise DigestError(
            f"Unsupported digest algorithm '{algorithm}'. Choose one of: {', '.join(SUPPORTED_ALGORITHMS)}"
        )
    return _hashlib_digest(name)
