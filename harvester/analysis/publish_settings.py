import json
from pathlib import Path
from typing import Any

from harvester.analysis.versioning import (
    FIXED_EPUB_MODE_DEFAULT,
    PUBLISH_SETTINGS_INTRODUCED,
    Version,
)
from harvester.logging.logger import Log

PUBLISH_SETTINGS_FILE = "publish-settings.json"
FLOWABLE = "flowable"
FIXED = "fixed"


def load_publish_settings(book_dir: Path | None, generator: Version) -> dict[str, Any] | None:
    """Load the book's publish settings, adding the legacy epub mode where needed.

    Books made before the fixed epub layout became the default are rendered
    flowable: an existing file gets ``epub.mode`` filled in, and a missing file
    is synthesized. Changes are saved back when a folder is given.
    """
    path = book_dir / PUBLISH_SETTINGS_FILE if book_dir is not None else None
    settings: dict[str, Any] | None = None
    needs_save = False

    if path is not None and path.is_file() and generator >= PUBLISH_SETTINGS_INTRODUCED:
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            Log.debug(f"Ignoring unreadable {path}: {exc}")
            loaded = None
        if isinstance(loaded, dict):
            settings = loaded
            if generator < FIXED_EPUB_MODE_DEFAULT:
                epub = settings.setdefault("epub", {})
                if isinstance(epub, dict) and not epub.get("mode"):
                    epub["mode"] = FLOWABLE
                    needs_save = True

    if settings is None and generator < FIXED_EPUB_MODE_DEFAULT:
        settings = {"epub": {"mode": FLOWABLE}}
        needs_save = True

    if needs_save and path is not None and path.parent.is_dir():
        path.write_text(json.dumps(settings, indent=2), encoding="utf-8")

    return settings


def epub_mode(settings: dict[str, Any] | None) -> str:
    epub = (settings or {}).get("epub")
    if not isinstance(epub, dict):
        return ""
    return str(epub.get("mode") or "")
