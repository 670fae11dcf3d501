from harvester.database.models import DocumentRecord, HarvestState
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.issues.reporter import IssueReporter
from harvester.logging.logger import Log
from harvester.processor.exceptions import DocumentNotFoundError
from harvester.processor.pipeline import PipelineContext
from harvester.processor.processor import Processor


class JobRunner:
    """Run one book, contain its failures, and remember what is in flight."""

    def __init__(
        self,
        processor: Processor,
        doc_repo: DocumentRepository,
        reporter: IssueReporter,
    ) -> None:
        self._processor = processor
        self._doc_repo = doc_repo
        self._reporter = reporter
        self._in_flight: PipelineContext | None = None

    def run(self, record: DocumentRecord) -> bool:
        """Process a book; True only if it ended in the Done state."""
        context = PipelineContext.start(record)
        self._in_flight = context
        try:
            self._processor.process(context)
        except DocumentNotFoundError as exc:
            self._in_flight = None
            Log.warning(f"Book {record.object_id} no longer exists: {exc}")
            return False
        except Exception as exc:
            self._in_flight = None
            Log.exception(f"Book {record.object_id} failed: {exc}")
            self._reporter.report_error(
                f"Unhandled exception processing book {record.object_id}",
                context.error_message,
                record.object_id,
                exc,
            )
            return False
        # left set on KeyboardInterrupt so the shutdown handler can mark the book
        self._in_flight = None
        return context.record.state is HarvestState.DONE

    def abort_in_flight(self) -> None:
        """Best effort: mark the book being processed as aborted before exit."""
        context = self._in_flight
        if context is None:
            return
        state = (
            HarvestState.FAILED_PERMANENTLY
            if context.initial_state is HarvestState.FAILED_PERMANENTLY
            else HarvestState.ABORTED
        )
        try:
            self._doc_repo.update(context.object_id, {"harvestState": state.value})
            Log.warning(f"Book {context.object_id} marked {state.value} on shutdown")
        except Exception as exc:
            Log.error(f"Could not mark book {context.object_id} as {state.value}: {exc}")
        finally:
            self._in_flight = None
