import re
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class Version:
    """A MAJOR.MINOR version, ordered component-wise."""

    major: int = 0
    minor: int = 0

    @classmethod
    def parse(cls, text: str | None) -> "Version":
        """Parse the first 'N.N' found in text; anything unparseable is 0.0."""
        match = re.search(r"(\d+)\.(\d+)", text or "")
        if match is None:
            return cls()
        return cls(int(match.group(1)), int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


# Generator versions that changed how books are published.
PUBLISH_SETTINGS_INTRODUCED = Version(5, 3)
FIXED_EPUB_MODE_DEFAULT = Version(5, 4)
UPLOADED_COLLECTION_SETTINGS = Version(5, 5)
