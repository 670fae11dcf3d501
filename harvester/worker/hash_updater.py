from collections.abc import Callable
from pathlib import Path

from harvester.analysis.analyzer import DocumentAnalyzer
from harvester.database.filters import Filter
from harvester.database.models import DocumentRecord
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.fingerprint.combiner import combine_fingerprint
from harvester.logging.logger import Log
from harvester.processor.downloader import BookDownloader, find_book_html
from harvester.processor.exceptions import DocumentNotFoundError


class HashUpdateRunner:
    """Recomputes image fingerprints without rendering or changing harvest state."""

    def __init__(
        self,
        doc_repo: DocumentRepository,
        downloader: BookDownloader,
        hasher_for: Callable[[Path], Callable[[str], int]],
        dry_run: bool = False,
    ) -> None:
        self._doc_repo = doc_repo
        self._downloader = downloader
        self._hasher_for = hasher_for
        self._dry_run = dry_run

    def run(self, filter_: Filter, limit: int | None = None) -> int:
        """Update fingerprints of matching books; returns how many changed."""
        changed = 0
        for record in self._doc_repo.query(filter_, limit=limit):
            try:
                if self.update_book(record):
                    changed += 1
            except DocumentNotFoundError as exc:
                Log.warning(f"Book {record.object_id} no longer exists: {exc}")
            except Exception as exc:
                Log.error(f"Could not update fingerprint of book {record.object_id}: {exc}")
        Log.info(f"Fingerprints changed for {changed} books")
        return changed

    def update_book(self, record: DocumentRecord) -> bool:
        book_dir = self._downloader.fetch(record)
        html_path = find_book_html(book_dir)
        if html_path is None:
            Log.warning(f"Book {record.object_id} has no HTML file; skipping")
            return False
        # Markup only: with no folder the analyzer writes nothing into the cache.
        analyzer = DocumentAnalyzer(html_path.read_text(encoding="utf-8"), "")
        fingerprint = combine_fingerprint(
            analyzer.select_fingerprint_images(), self._hasher_for(book_dir)
        )
        changes = {
            "phashOfFirstContentImage": fingerprint.first_image_hash if fingerprint else None,
            "bookHashFromImages": fingerprint.book_hash if fingerprint else None,
        }
        if (
            changes["phashOfFirstContentImage"] == record.phash_of_first_content_image
            and changes["bookHashFromImages"] == record.book_hash_from_images
        ):
            return False
        if self._dry_run:
            Log.info(f"Dry run: book {record.object_id} fingerprint would become {changes}")
        else:
            self._doc_repo.update(record.object_id, changes)
        return True
