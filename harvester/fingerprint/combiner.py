from collections.abc import Callable, Sequence
from dataclasses import dataclass

from harvester.processor.exceptions import FingerprintError

MAX_FULLY_HASHED = 5
_MASK_64 = (1 << 64) - 1


@dataclass(frozen=True)
class CombinedFingerprint:
    """Perceptual fingerprint of a whole book built from its image hashes."""

    image_count: int
    first_hash: int
    combined_hash: int

    @property
    def first_image_hash(self) -> str:
        return f"{self.first_hash:016X}"

    @property
    def book_hash(self) -> str:
        return f"{self.image_count}-{self.combined_hash:016X}"


def select_sample_indices(count: int) -> list[int]:
    """Indices of the images hashed for a book with count images."""
    if count <= MAX_FULLY_HASHED:
        return list(range(count))
    return [0, 1, count // 2, count - 2, count - 1]


def combine_fingerprint(
    images: Sequence[str],
    hash_image: Callable[[str], int],
) -> CombinedFingerprint | None:
    """Fold the sampled image hashes into one order-sensitive 64-bit value.

    Returns None when there are no images. Any failure hashing an image is
    raised as FingerprintError; no partial result is produced.
    """
    if not images:
        return None

    hashes: list[int] = []
    for index in select_sample_indices(len(images)):
        try:
            hashes.append(hash_image(images[index]) & _MASK_64)
        except Exception as exc:
            raise FingerprintError(f"Could not hash image {images[index]}: {exc}") from exc

    combined = hashes[0]
    for value in hashes[1:]:
        combined = ((combined << 1) ^ value) & _MASK_64
    return CombinedFingerprint(len(images), hashes[0], combined)
