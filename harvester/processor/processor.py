import shutil
import socket
from pathlib import Path

from harvester.analysis.versioning import Version
from harvester.config.settings import Settings
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.fingerprint.image_hash import FolderImageHasher
from harvester.fonts.checker import FontProblemLedger
from harvester.issues.reporter import IssueReporter
from harvester.logging.logger import Log
from harvester.processor.downloader import BookDownloader
from harvester.processor.pipeline import PipelineContext, PipelineStep
from harvester.processor.steps import (
    AnalyzeStep,
    DownloadStep,
    EvaluateArtifactsStep,
    FinalizeStep,
    FingerprintStep,
    MarkFailedStep,
    MarkInProgressStep,
    RenderStep,
)
from harvester.renderer.invoker import RendererInvoker
from harvester.storage.s3_client import S3Storage


class Processor:
    """Runs one book through the harvest pipeline.

    Pipeline: mark in progress -> download -> analyze -> fingerprint -> render
    -> evaluate artifacts -> finalize. A step that raises sends the book to
    the failed step, which still writes the outcome back to the catalog.
    """

    def __init__(self, steps: list[PipelineStep], failed_step: PipelineStep) -> None:
        self._steps = steps
        self._failed_step = failed_step

    def process(self, context: PipelineContext) -> PipelineContext:
        Log.info(f"Processing book {context.object_id}")
        try:
            for step in self._steps:
                context = step.run(context)
        except Exception as exc:
            context.error_message = f"{type(exc).__name__}: {exc}"
            context.is_successful = False
            try:
                self._failed_step.run(context)
            except Exception as write_exc:
                Log.error(f"Could not record failure of book {context.object_id}: {write_exc}")
            raise
        finally:
            if context.work_dir is not None:
                shutil.rmtree(context.work_dir, ignore_errors=True)
        return context


def instance_cache_dir(settings: Settings) -> Path:
    """Local cache folder private to this harvester instance."""
    instance = settings.instance_name or socket.gethostname()
    return Path(settings.cache_root) / settings.app_env / instance


def build_processor(
    settings: Settings,
    doc_repo: DocumentRepository,
    reporter: IssueReporter,
    ledger: FontProblemLedger,
    renderer: RendererInvoker,
) -> Processor:
    """Build a Processor with all required collaborators."""
    cache_dir = instance_cache_dir(settings)
    download_storage = S3Storage(settings.s3_download_bucket, settings.s3_region)
    upload_storage = S3Storage(settings.upload_bucket, settings.s3_region)
    downloader = BookDownloader(
        download_storage,
        cache_dir / "books",
        force_download=settings.force_download,
        skip_download=settings.skip_download,
    )
    upload_kinds = {
        "bloom_digital": not settings.skip_upload_bloom_digital,
        "epub": not settings.skip_upload_epub,
        "bloom_source": not settings.skip_upload_bloom_source,
        "json_texts": not settings.skip_upload_json_texts,
        "thumbnails": not settings.skip_upload_thumbnails,
    }
    steps: list[PipelineStep] = [
        MarkInProgressStep(
            doc_repo,
            harvester_id=instance_cache_dir(settings).name,
            version=Version.parse(settings.harvester_version),
        ),
        DownloadStep(downloader, cache_dir / "work"),
        AnalyzeStep(),
        FingerprintStep(reporter, FolderImageHasher),
        RenderStep(
            renderer,
            upload_storage,
            reporter,
            ledger,
            timeout_seconds=settings.render_timeout_seconds,
            upload_kinds=upload_kinds,
            read_only=settings.read_only,
            testing=settings.app_env != "prod",
        ),
        EvaluateArtifactsStep(upload_kinds),
        FinalizeStep(doc_repo),
    ]
    failed_step = MarkFailedStep(doc_repo, EvaluateArtifactsStep(upload_kinds))
    return Processor(steps=steps, failed_step=failed_step)
