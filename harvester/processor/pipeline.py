import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from harvester.analysis.analyzer import DocumentAnalyzer
from harvester.database.models import DocumentRecord, HarvestState
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.logging.logger import Log
from harvester.processor.log_entries import LogEntry, LogLevel, LogType


@dataclass(slots=True)
class PipelineContext:
    record: DocumentRecord
    original: DocumentRecord
    flushed: DocumentRecord
    work_dir: Path | None = None
    book_dir: Path | None = None
    analyzer: DocumentAnalyzer | None = None
    image_sources: list[str] = field(default_factory=list)
    log_entries: list[LogEntry] = field(default_factory=list)
    is_successful: bool = True
    any_font_errors: bool = False
    render_succeeded: bool = False
    epub_suitable: bool = False
    epub_exists: bool = False
    pdf_exists: bool = False
    social_thumbnail: bool | None = None
    error_message: str = ""

    @classmethod
    def start(cls, record: DocumentRecord) -> "PipelineContext":
        """Context for a fresh attempt; record is copied, never mutated."""
        return cls(
            record=copy.deepcopy(record),
            original=copy.deepcopy(record),
            flushed=copy.deepcopy(record),
        )

    @property
    def object_id(self) -> str:
        return self.record.object_id

    @property
    def initial_state(self) -> HarvestState:
        return self.original.state

    def add_log(self, level: LogLevel, log_type: LogType, message: str) -> None:
        """Record an entry for the book's harvest log and echo it to the app log."""
        self.log_entries.append(LogEntry(level, log_type, message))
        text = f"Book {self.object_id}: {log_type.value} - {message}"
        if level is LogLevel.ERROR:
            Log.error(text)
        elif level is LogLevel.WARN:
            Log.warning(text)
        else:
            Log.info(text)

    def flush(self, repo: DocumentRepository) -> None:
        """Write fields changed since the last flush to the catalog."""
        changes = self.record.diff(self.flushed)
        if not changes:
            return
        repo.update(self.object_id, changes)
        self.flushed = copy.deepcopy(self.record)


class PipelineStep(ABC):
    @abstractmethod
    def run(self, context: PipelineContext) -> PipelineContext:
        raise NotImplementedError
