from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from harvester.analysis.versioning import Version


class HarvestState(str, Enum):
    """Processing state of a catalog book."""

    NEW = "New"
    UPDATED = "Updated"
    REQUESTED = "Requested"
    UNKNOWN = "Unknown"
    IN_PROGRESS = "InProgress"
    DONE = "Done"
    ABORTED = "Aborted"
    FAILED = "Failed"
    FAILED_PERMANENTLY = "FailedIndefinitely"

    @classmethod
    def parse(cls, value: str | None) -> "HarvestState":
        """Map a stored state string to the enum. Empty means Unknown."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid harvest state: {value!r}") from None


# Catalog field name -> books table column.
CATALOG_COLUMNS: dict[str, str] = {
    "objectId": "object_id",
    "title": "title",
    "bookInstanceId": "book_instance_id",
    "baseUrl": "base_url",
    "license": "license",
    "inCirculation": "in_circulation",
    "draft": "draft",
    "harvestState": "harvest_state",
    "harvesterId": "harvester_id",
    "harvesterMajorVersion": "harvester_major_version",
    "harvesterMinorVersion": "harvester_minor_version",
    "harvestStartedAt": "harvest_started_at",
    "lastUploaded": "last_uploaded",
    "tags": "tags",
    "show": "show",
    "harvestLog": "harvest_log",
    "features": "features",
    "phashOfFirstContentImage": "phash_of_first_content_image",
    "bookHashFromImages": "book_hash_from_images",
    "bloomPUBVersion": "bloompub_version",
    "subscriptionDescriptor": "subscription_descriptor",
}

JSON_COLUMNS = frozenset({"show"})


@dataclass
class DocumentRecord:
    """Represents a row from the books table."""

    object_id: str
    title: str = ""
    book_instance_id: str = ""
    base_url: str | None = None
    license: str | None = None
    in_circulation: bool = True
    draft: bool = False
    harvest_state: str = HarvestState.NEW.value
    harvester_id: str | None = None
    harvester_major_version: int | None = None
    harvester_minor_version: int | None = None
    harvest_started_at: datetime | None = None
    last_uploaded: datetime | None = None
    tags: list[str] = field(default_factory=list)
    show: dict[str, Any] = field(default_factory=dict)
    harvest_log: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)
    phash_of_first_content_image: str | None = None
    book_hash_from_images: str | None = None
    bloompub_version: int | None = None
    subscription_descriptor: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "DocumentRecord":
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in row.items() if key in known}
        for name in ("tags", "harvest_log", "features"):
            if values.get(name) is None:
                values[name] = []
        if values.get("show") is None:
            values["show"] = {}
        return cls(**values)

    @property
    def state(self) -> HarvestState:
        return HarvestState.parse(self.harvest_state)

    @property
    def harvester_version(self) -> Version:
        """Version of the harvester that last touched the book (0.0 if none)."""
        return Version(self.harvester_major_version or 0, self.harvester_minor_version or 0)

    def diff(self, original: "DocumentRecord") -> dict[str, Any]:
        """Catalog fields whose value differs from original, keyed by catalog name."""
        changes: dict[str, Any] = {}
        for catalog_name, column in CATALOG_COLUMNS.items():
            if column == "object_id":
                continue
            new_value = getattr(self, column)
            if new_value != getattr(original, column):
                changes[catalog_name] = new_value
        return changes
