import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from harvester.analysis.analyzer import DocumentAnalyzer
from harvester.analysis.metadata import BookMetadata
from harvester.analysis.versioning import Version
from harvester.database.models import HarvestState
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.fingerprint.combiner import combine_fingerprint
from harvester.fonts.checker import FontProblemLedger
from harvester.issues.reporter import IssueReporter
from harvester.logging.logger import Log
from harvester.processor.book import (
    EPUB_UNSUITABLE_REASON,
    LICENSE_RESTRICTION_REASON,
    add_tag,
    set_harvester_evaluation,
    set_show_value,
    set_tag,
)
from harvester.processor.downloader import BookDownloader, find_book_html
from harvester.processor.exceptions import AnalysisError, FingerprintError
from harvester.processor.log_entries import LogLevel, LogType
from harvester.processor.pipeline import PipelineContext, PipelineStep
from harvester.renderer.artifacts import (
    ArtifactPaths,
    CreateArtifactsExitCode,
    create_artifacts_arguments,
    describe_exit_code,
    find_incomplete_upload,
    read_problem_fonts,
)
from harvester.renderer.invoker import RendererInvoker
from harvester.storage.s3_client import BookLocation, S3Storage

SOCIAL_THUMBNAIL_NAME = "thumbnail-300x300"
COLLECTION_SETTINGS_FILE = "collection.bloomCollection"


def artifact_prefix(context: PipelineContext) -> str:
    """Key prefix of the book's harvested artifacts in the harvest bucket."""
    location = BookLocation.from_base_url(context.record.base_url or "")
    return location.book_prefix.rstrip("/")


class MarkInProgressStep(PipelineStep):
    def __init__(self, doc_repo: DocumentRepository, harvester_id: str, version: Version) -> None:
        self._doc_repo = doc_repo
        self._harvester_id = harvester_id
        self._version = version

    def run(self, context: PipelineContext) -> PipelineContext:
        record = context.record
        record.harvest_state = HarvestState.IN_PROGRESS.value
        record.harvester_id = self._harvester_id
        record.harvester_major_version = self._version.major
        record.harvester_minor_version = self._version.minor
        record.harvest_started_at = datetime.now(timezone.utc)
        context.flush(self._doc_repo)
        Log.info(f"Book {context.object_id} marked as in progress")
        return context


class DownloadStep(PipelineStep):
    """Fetches the book into the cache and copies it into a private work folder.

    Later steps only touch the copy, so the cached download stays as uploaded.
    """

    def __init__(self, downloader: BookDownloader, work_root: Path) -> None:
        self._downloader = downloader
        self._work_root = work_root

    def run(self, context: PipelineContext) -> PipelineContext:
        if not context.record.base_url:
            context.add_log(LogLevel.WARN, LogType.MISSING_BASE_URL, "Missing baseUrl")
        cached = self._downloader.fetch(context.original)
        context.work_dir = self._work_root / context.object_id
        if context.work_dir.exists():
            shutil.rmtree(context.work_dir)
        context.book_dir = context.work_dir / "collection" / cached.name
        shutil.copytree(cached, context.book_dir)
        context.pdf_exists = self._downloader.pdf_exists(context.original)
        Log.info(f"Book {context.object_id} copied from {cached} to {context.book_dir}")
        return context


class AnalyzeStep(PipelineStep):
    def run(self, context: PipelineContext) -> PipelineContext:
        if context.book_dir is None or context.work_dir is None:
            raise ValueError("PipelineContext.book_dir must be set before analysis")
        html_path = find_book_html(context.book_dir)
        if html_path is None:
            raise AnalysisError(f"No HTML file found in {context.book_dir}")

        analyzer = DocumentAnalyzer.from_folder(context.book_dir, html_path)
        context.analyzer = analyzer
        settings_path = context.work_dir / COLLECTION_SETTINGS_FILE
        settings_path.write_text(analyzer.settings_document(), encoding="utf-8")

        context.epub_suitable = analyzer.is_epub_suitable()
        for entry in analyzer.log_entries:
            context.add_log(entry.level, entry.type, entry.message)
        context.image_sources = analyzer.select_fingerprint_images()

        level = analyzer.compute_level()
        set_tag(context.record, "computedLevel", str(level))
        if analyzer.bookshelf:
            add_tag(context.record, "bookshelf", analyzer.bookshelf)
        Log.info(
            f"Analyzed book {context.object_id}: language {analyzer.language1_code}, "
            f"level {level}, {len(context.image_sources)} images"
        )
        return context


class RenderStep(PipelineStep):
    """Runs createArtifacts and uploads whatever it produced."""

    def __init__(
        self,
        renderer: RendererInvoker,
        storage: S3Storage,
        reporter: IssueReporter,
        ledger: FontProblemLedger,
        timeout_seconds: int,
        upload_kinds: dict[str, bool],
        read_only: bool = False,
        testing: bool = False,
    ) -> None:
        self._renderer = renderer
        self._storage = storage
        self._reporter = reporter
        self._ledger = ledger
        self._timeout_seconds = timeout_seconds
        self._upload_kinds = upload_kinds
        self._read_only = read_only
        self._testing = testing

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.book_dir is None or context.work_dir is None:
            raise ValueError("PipelineContext.book_dir must be set before rendering")
        paths = ArtifactPaths.for_book(
            context.work_dir / "artifacts",
            context.book_dir.name,
            bloom_digital=self._upload_kinds.get("bloom_digital", True),
            epub=self._upload_kinds.get("epub", True),
            bloom_source=self._upload_kinds.get("bloom_source", True),
            json_texts=self._upload_kinds.get("json_texts", True),
            thumbnails=self._upload_kinds.get("thumbnails", True),
        )
        paths.work_dir.mkdir(parents=True, exist_ok=True)
        args = create_artifacts_arguments(
            context.book_dir,
            context.work_dir / COLLECTION_SETTINGS_FILE,
            paths,
            testing=self._testing,
        )
        result = self._renderer.run(args, timeout_seconds=self._timeout_seconds)

        if result.timed_out:
            message = (
                f"Renderer was terminated because it exceeded {self._timeout_seconds} seconds."
            )
            context.add_log(LogLevel.ERROR, LogType.TIMEOUT_ERROR, message)
            self._reporter.report_error(
                message, self._output_details(result.stdout, result.stderr), context.object_id
            )
            context.is_successful = False
            return context

        exit_code = result.exit_code or 0
        if exit_code & CreateArtifactsExitCode.FONT_PROBLEMS:
            self._record_font_problems(context, paths)

        failure_bits = exit_code & ~int(CreateArtifactsExitCode.FONT_PROBLEMS)
        if failure_bits:
            message = (
                f"CreateArtifacts failed with exit code: {exit_code} "
                f"({', '.join(describe_exit_code(exit_code))})"
            )
            missing = find_incomplete_upload(result.stderr)
            if missing:
                message = f"Incomplete upload: missing {missing}"
            context.add_log(LogLevel.ERROR, LogType.BLOOM_CLI_ERROR, message)
            self._reporter.report_error(
                message, self._output_details(result.stdout, result.stderr), context.object_id
            )
            context.is_successful = False
            return context

        context.render_succeeded = True
        if self._read_only:
            Log.info(f"Read-only run: not uploading artifacts of book {context.object_id}")
        else:
            self._upload(context, paths)
        self._update_metadata(context, paths)
        return context

    def _record_font_problems(self, context: PipelineContext, paths: ArtifactPaths) -> None:
        problems = read_problem_fonts(paths.problem_fonts)
        if not problems:
            Log.warning(f"Book {context.object_id}: font problems reported but none listed")
        for name in problems.missing:
            context.add_log(LogLevel.ERROR, LogType.MISSING_FONT, name)
            if self._ledger.first_report_of_missing(name):
                self._reporter.report_missing_font(name, context.object_id)
        for name in problems.invalid:
            context.add_log(LogLevel.ERROR, LogType.INVALID_FONT, name)
            if self._ledger.first_report_of_invalid(name):
                self._reporter.report_invalid_font(name, context.object_id)
        context.any_font_errors = True

    def _upload(self, context: PipelineContext, paths: ArtifactPaths) -> None:
        prefix = artifact_prefix(context)

        if not context.any_font_errors and paths.bloom_digital is not None:
            if paths.bloompub is not None and paths.bloompub.is_file():
                self._storage.upload_file(paths.bloompub, prefix)
            if (paths.bloom_digital / "index.htm").is_file():
                self._storage.upload_directory(paths.bloom_digital, f"{prefix}/bloomdigital")
            else:
                context.add_log(
                    LogLevel.ERROR,
                    LogType.MISSING_BLOOM_DIGITAL_INDEX,
                    "Missing index.htm in bloomdigital output",
                )
                context.is_successful = False

        if not context.any_font_errors and paths.epub is not None:
            if paths.epub.is_file():
                self._storage.upload_directory(paths.epub.parent, f"{prefix}/epub")
                context.epub_exists = True
            else:
                self._storage.delete_directory(f"{prefix}/epub")
                context.add_log(
                    LogLevel.WARN,
                    LogType.ARTIFACT_SUITABILITY,
                    "Missing ePUB artifact: likely a comic book",
                )

        for artifact in (paths.bloom_source, paths.json_texts):
            if artifact is not None and artifact.is_file():
                self._storage.upload_file(artifact, prefix)

        if paths.thumbnail_info is not None and paths.thumbnail_info.is_file():
            thumbnails = [
                Path(line.strip())
                for line in paths.thumbnail_info.read_text(encoding="utf-8").splitlines()
                if line.strip()
            ]
            self._storage.delete_directory(f"{prefix}/thumbnails")
            context.social_thumbnail = False
            for thumbnail in thumbnails:
                if not thumbnail.is_file():
                    continue
                self._storage.upload_file(thumbnail, f"{prefix}/thumbnails")
                if thumbnail.stem == SOCIAL_THUMBNAIL_NAME:
                    context.social_thumbnail = True

    def _update_metadata(self, context: PipelineContext, paths: ArtifactPaths) -> None:
        if paths.bloom_digital is None:
            return
        meta_path = paths.bloom_digital / "meta.json"
        if not meta_path.is_file():
            return
        meta = BookMetadata.parse(meta_path.read_text(encoding="utf-8"))
        record = context.record
        features = meta.get("features")
        if features.present:
            record.features = list(features.value or [])
        subscription = meta.get("subscription_descriptor")
        if subscription.present:
            record.subscription_descriptor = subscription.value
        bloompub_version = meta.get("bloom_pub_version")
        if bloompub_version.present:
            record.bloompub_version = bloompub_version.value

    @staticmethod
    def _output_details(stdout: str, stderr: str) -> str:
        return f"Standard output:\n{stdout}\n\nStandard error:\n{stderr}"


class FingerprintStep(PipelineStep):
    def __init__(
        self,
        reporter: IssueReporter,
        hasher_for: Callable[[Path], Callable[[str], int]],
    ) -> None:
        self._reporter = reporter
        self._hasher_for = hasher_for

    def run(self, context: PipelineContext) -> PipelineContext:
        if context.book_dir is None:
            raise ValueError("PipelineContext.book_dir must be set before fingerprinting")
        record = context.record
        try:
            fingerprint = combine_fingerprint(
                context.image_sources, self._hasher_for(context.book_dir)
            )
        except FingerprintError as exc:
            record.phash_of_first_content_image = None
            record.book_hash_from_images = None
            context.add_log(LogLevel.ERROR, LogType.PHASH_ERROR, f"Exception thrown. {exc}")
            self._reporter.report_error(
                "Fingerprint computation failed", str(exc), context.object_id, exc
            )
            return context

        if fingerprint is None:
            record.phash_of_first_content_image = None
            record.book_hash_from_images = None
        else:
            record.phash_of_first_content_image = fingerprint.first_image_hash
            record.book_hash_from_images = fingerprint.book_hash
        return context


class EvaluateArtifactsStep(PipelineStep):
    """Decides which artifacts the library may show for this book.

    Artifacts whose upload was skipped keep their previous evaluation, except
    that font errors always hide the epub and BloomPub.
    """

    def __init__(self, upload_kinds: dict[str, bool] | None = None) -> None:
        self._upload_kinds = upload_kinds or {}

    def _uploads(self, kind: str) -> bool:
        return self._upload_kinds.get(kind, True)

    def run(self, context: PipelineContext) -> PipelineContext:
        record = context.record
        analyzer = context.analyzer
        fonts_bad = context.any_font_errors
        succeeded = context.render_succeeded and context.is_successful and not fonts_bad

        if fonts_bad:
            context.add_log(
                LogLevel.INFO,
                LogType.ARTIFACT_SUITABILITY,
                "No ePUB/BloomPub because of missing or invalid font(s)",
            )
        elif not succeeded:
            context.add_log(
                LogLevel.INFO,
                LogType.ARTIFACT_SUITABILITY,
                "No ePUB/BloomPub/bloomSource/jsonTexts because CreateArtifacts failed.",
            )

        language = analyzer.language1_code if analyzer is not None else None
        if self._uploads("epub") or fonts_bad:
            set_show_value(record, "epub", "langTag", language)
            epub_built = succeeded and context.epub_exists
            set_harvester_evaluation(
                record,
                "epub",
                epub_built and context.epub_suitable,
                EPUB_UNSUITABLE_REASON if epub_built and not context.epub_suitable else None,
            )
        if self._uploads("bloom_digital") or fonts_bad:
            set_harvester_evaluation(record, "bloomReader", succeeded)
            set_harvester_evaluation(record, "readOnline", succeeded)
        if self._uploads("bloom_source"):
            set_harvester_evaluation(record, "bloomSource", succeeded)
        if self._uploads("json_texts"):
            set_harvester_evaluation(record, "jsonTexts", succeeded)

        if context.social_thumbnail is not None:
            set_harvester_evaluation(record, "social", context.social_thumbnail)

        set_show_value(record, "pdf", "langTag", language)
        if not context.pdf_exists:
            set_show_value(record, "pdf", "exists", False)

        restrictive = analyzer.is_license_restrictive if analyzer is not None else True
        set_harvester_evaluation(record, "shellbook", not restrictive, LICENSE_RESTRICTION_REASON)
        return context


class FinalizeStep(PipelineStep):
    def __init__(self, doc_repo: DocumentRepository) -> None:
        self._doc_repo = doc_repo

    def run(self, context: PipelineContext) -> PipelineContext:
        record = context.record
        if context.is_successful and not context.any_font_errors:
            record.harvest_state = HarvestState.DONE.value
        else:
            record.harvest_state = failed_state(context).value
        record.harvest_log = [str(entry) for entry in context.log_entries]
        context.flush(self._doc_repo)
        Log.info(f"Book {context.object_id} finished with state {record.harvest_state}")
        return context


class MarkFailedStep(PipelineStep):
    def __init__(
        self, doc_repo: DocumentRepository, evaluation: EvaluateArtifactsStep | None = None
    ) -> None:
        self._doc_repo = doc_repo
        self._evaluation = evaluation or EvaluateArtifactsStep()

    def run(self, context: PipelineContext) -> PipelineContext:
        record = context.record
        record.harvest_state = failed_state(context).value
        context.add_log(LogLevel.ERROR, LogType.PROCESS_BOOK_ERROR, context.error_message)
        # Without a finished analysis nothing is known to be showable.
        context.analyzer = None
        context.render_succeeded = False
        context.any_font_errors = False
        self._evaluation.run(context)
        record.harvest_log = [str(entry) for entry in context.log_entries]
        context.flush(self._doc_repo)
        Log.error(f"Book {context.object_id} marked as failed: {context.error_message}")
        return context


def failed_state(context: PipelineContext) -> HarvestState:
    if context.initial_state is HarvestState.FAILED_PERMANENTLY:
        return HarvestState.FAILED_PERMANENTLY
    return HarvestState.FAILED
