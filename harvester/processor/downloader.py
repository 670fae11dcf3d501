import shutil
from datetime import datetime, timezone
from pathlib import Path

from harvester.database.models import DocumentRecord, HarvestState
from harvester.logging.logger import Log
from harvester.processor.exceptions import DownloadError
from harvester.storage.s3_client import BookLocation, S3Storage

# Books uploaded before last-uploaded times were tracked count as uploaded here.
DEFAULT_LAST_UPLOADED = datetime(2020, 4, 6, 23, 59, 59, tzinfo=timezone.utc)


class BookDownloader:
    """Fetches book folders into this instance's local cache."""

    def __init__(
        self,
        storage: S3Storage,
        cache_dir: Path,
        force_download: bool = False,
        skip_download: bool = False,
    ) -> None:
        self._storage = storage
        self._cache_dir = cache_dir
        self._force_download = force_download
        self._skip_download = skip_download

    def cache_path(self, record: DocumentRecord) -> Path:
        return self._cache_dir / record.object_id

    def can_reuse(self, record: DocumentRecord, cached: Path) -> bool:
        """Whether a cached download is known to match the catalog's upload.

        record must be the book as selected, before this attempt touched it.
        """
        if self._force_download:
            return False
        if self._skip_download:
            return cached.is_dir()
        if record.harvest_started_at is None:
            return False
        last_uploaded = record.last_uploaded or DEFAULT_LAST_UPLOADED
        if record.harvest_started_at <= last_uploaded:
            return False
        if HarvestState.parse(record.harvest_state) in (
            HarvestState.REQUESTED,
            HarvestState.UPDATED,
        ):
            return False
        return cached.is_dir()

    def fetch(self, record: DocumentRecord) -> Path:
        """Return the local folder of the book, downloading it unless the cache is good."""
        location = BookLocation.from_base_url(record.base_url) if record.base_url else None
        cached = self.cache_path(record)

        if self.can_reuse(record, cached):
            Log.info(f"Using cached download of book {record.object_id}")
        elif location is None:
            raise DownloadError(f"Book {record.object_id} has no base URL to download from")
        else:
            if cached.exists():
                shutil.rmtree(cached)
            cached.mkdir(parents=True)
            self._storage.download_directory(location.bucket, location.book_prefix, cached)
        return book_folder(cached, location.title if location else "")

    def pdf_exists(self, record: DocumentRecord) -> bool:
        """Whether the uploader's PDF of the book is in the download bucket."""
        if not record.base_url:
            return False
        location = BookLocation.from_base_url(record.base_url)
        if not location.title:
            return False
        return self._storage.file_exists(location.pdf_key)


def book_folder(download_dir: Path, title: str) -> Path:
    """The folder holding the book files inside a download."""
    if title and (download_dir / title).is_dir():
        return download_dir / title
    subdirs = [path for path in download_dir.iterdir() if path.is_dir()]
    if len(subdirs) == 1:
        return subdirs[0]
    return download_dir


def find_book_html(book_dir: Path) -> Path | None:
    """The book's main HTML file: the one named after the folder, else the first found."""
    candidates = sorted(
        path
        for path in book_dir.iterdir()
        if path.is_file() and path.suffix.lower() in (".htm", ".html")
    )
    for path in candidates:
        if path.stem == book_dir.name:
            return path
    return candidates[0] if candidates else None


def free_cache_space(cache_dir: Path, min_free_bytes: int) -> int:
    """Remove the least recently used cached books until enough disk is free.

    Returns the number of cached books removed.
    """
    if not cache_dir.is_dir():
        return 0
    entries = sorted(
        (path for path in cache_dir.iterdir() if path.is_dir()),
        key=lambda path: path.stat().st_mtime,
    )
    removed = 0
    for entry in entries:
        if shutil.disk_usage(cache_dir).free >= min_free_bytes:
            break
        shutil.rmtree(entry, ignore_errors=True)
        removed += 1
    if removed:
        Log.info(f"Removed {removed} cached books from {cache_dir} to free disk space")
    return removed
