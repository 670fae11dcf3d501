from pathlib import Path
from urllib.parse import unquote

import imagehash
from PIL import Image


def compute_image_hash(path: Path) -> int:
    """64-bit perceptual hash of an image file.

    Images whose colour channels are entirely black (line art drawn only in
    the alpha channel) are hashed from their alpha channel instead.
    """
    with Image.open(path) as image:
        rgba = image.convert("RGBA")
    red, green, blue, alpha = rgba.split()
    if all(channel.getextrema()[1] == 0 for channel in (red, green, blue)):
        source = alpha
    else:
        source = rgba.convert("RGB")
    return int(str(imagehash.phash(source)), 16)


class FolderImageHasher:
    """Hashes image sources relative to one book folder."""

    def __init__(self, book_dir: Path) -> None:
        self._book_dir = book_dir

    def __call__(self, src: str) -> int:
        return compute_image_hash(self._book_dir / unquote(src))
