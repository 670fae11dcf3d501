from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from harvester.database.models import DocumentRecord

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def make_record() -> Callable[..., DocumentRecord]:
    """Factory for catalog records with sensible defaults."""

    def _factory(**overrides: Any) -> DocumentRecord:
        values: dict[str, Any] = {
            "object_id": "book1",
            "title": "The Moon and the Cap",
            "book_instance_id": "a3e5f0c2-7b2d-4b61-9d0e-0b9c1f0d8e11",
            "base_url": (
                "https://s3.amazonaws.com/BloomLibraryBooks/"
                "uploader%40example.com%2fa3e5f0c2-7b2d-4b61-9d0e-0b9c1f0d8e11%2f"
                "The+Moon+and+the+Cap%2f"
            ),
            "harvest_state": "New",
            "last_uploaded": NOW - timedelta(days=30),
        }
        values.update(overrides)
        return DocumentRecord(**values)

    return _factory
