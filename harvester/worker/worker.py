import random
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from types import FrameType

from harvester.analysis.versioning import Version
from harvester.config.settings import Settings
from harvester.database.filters import parse_filter
from harvester.database.models import DocumentRecord, HarvestState
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.logging.logger import Log
from harvester.processor.downloader import free_cache_space
from harvester.selection.policy import FontPresence, HarvestMode, prioritize, should_process
from harvester.selection.query import build_query
from harvester.worker.job_runner import JobRunner

FAILED_ID_SAMPLE_SIZE = 10


@dataclass
class RoundStats:
    success: int = 0
    failed: int = 0
    skipped: int = 0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.failed + self.skipped

    @property
    def attempted(self) -> int:
        return self.success + self.failed


class Worker:
    """Harvest loop: query -> prioritize -> select -> process -> (sleep)."""

    def __init__(
        self,
        doc_repo: DocumentRepository,
        job_runner: JobRunner,
        fonts: FontPresence,
        settings: Settings,
        cache_dir: Path | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._doc_repo = doc_repo
        self._job_runner = job_runner
        self._fonts = fonts
        self._settings = settings
        self._cache_dir = cache_dir
        self._rng = rng or random.Random()
        self._mode = HarvestMode(settings.harvest_mode)
        self._version = Version.parse(settings.harvester_version)
        self.cumulative_failed_ids: set[str] = set()

    def run(self, max_rounds: int | None = None) -> None:
        """Run one round, or keep going in loop mode until interrupted.

        If max_rounds is set, stop after that many rounds (for testing).
        """
        signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)
        Log.info(f"Harvester {self._version} started in {self._mode.value} mode")
        rounds = 0
        try:
            while True:
                stats = self.run_round()
                rounds += 1
                if not self._settings.loop or (max_rounds is not None and rounds >= max_rounds):
                    break
                if stats.attempted == 0:
                    Log.info(f"Nothing processed, sleeping {self._settings.loop_wait_seconds}s")
                    time.sleep(self._settings.loop_wait_seconds)
        except KeyboardInterrupt:
            self._job_runner.abort_in_flight()
            Log.info("Harvester shutting down gracefully")

    def run_round(self) -> RoundStats:
        stats = RoundStats()
        if self._cache_dir is not None:
            free_cache_space(self._cache_dir, self._settings.min_free_disk_bytes)
        records = self._try_query()
        if records is None:
            return stats

        limit = self._settings.max_documents
        for record in prioritize(records, self._rng):
            if limit is not None and stats.attempted >= limit:
                break
            try:
                decision = should_process(record, self._mode, self._version, self._fonts)
            except ValueError as exc:
                Log.error(f"Book {record.object_id}: {exc}")
                stats.skipped += 1
                continue
            Log.debug(f"Book {record.object_id}: {decision.reason}")
            if not decision:
                stats.skipped += 1
                if record.state is HarvestState.DONE:
                    self.cumulative_failed_ids.discard(record.object_id)
                continue
            Log.info(f"Book {record.object_id}: {decision.reason}")
            if self._job_runner.run(record):
                stats.success += 1
                self.cumulative_failed_ids.discard(record.object_id)
            else:
                stats.failed += 1
                stats.failed_ids.append(record.object_id)

        self.cumulative_failed_ids.update(stats.failed_ids)
        self._log_summary(stats)
        return stats

    def _try_query(self) -> list[DocumentRecord] | None:
        """Fetch candidate books. Gracefully handle catalog errors."""
        try:
            user_filter = parse_filter(self._settings.query_filter)
            query = build_query(self._mode, self._version, user_filter)
            return self._doc_repo.query(query)
        except Exception as exc:
            Log.warning(f"Catalog query failed, will retry: {exc}")
            return None

    def _log_summary(self, stats: RoundStats) -> None:
        Log.info(
            f"Success={stats.success}, Failed={stats.failed}, "
            f"Skipped={stats.skipped}, Total={stats.total}"
        )
        if stats.attempted:
            Log.info(f"Failure rate: {100.0 * stats.failed / stats.attempted:.1f}%")
        if self.cumulative_failed_ids:
            sample = sorted(self.cumulative_failed_ids)[:FAILED_ID_SAMPLE_SIZE]
            Log.info(
                f"Books with outstanding errors (sample of {len(sample)}): {', '.join(sample)}"
            )


def _raise_keyboard_interrupt(signum: int, frame: FrameType | None) -> None:
    raise KeyboardInterrupt(f"Received signal {signum}")
