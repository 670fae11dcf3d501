from harvester.analysis.versioning import Version
from harvester.config.settings import Settings
from harvester.database.connection import close_pool, init_pool
from harvester.database.filters import parse_filter
from harvester.database.repositories.document_repository import DocumentRepository
from harvester.fingerprint.image_hash import FolderImageHasher
from harvester.fonts.checker import FontChecker, FontProblemLedger, InstalledFontSource
from harvester.issues.reporter import LogIssueReporter
from harvester.logging.logger import Log
from harvester.processor.downloader import BookDownloader
from harvester.processor.processor import build_processor, instance_cache_dir
from harvester.renderer.invoker import RendererInvoker
from harvester.selection.policy import HarvestMode
from harvester.selection.query import build_query
from harvester.storage.s3_client import S3Storage
from harvester.worker.hash_updater import HashUpdateRunner
from harvester.worker.job_runner import JobRunner
from harvester.worker.worker import Worker


def main() -> None:
    """Entry point: initialize pool -> build dependencies -> run the harvester."""
    settings = Settings()
    Log.configure(settings.log_level, settings.log_file)
    init_pool(settings)

    try:
        doc_repo = DocumentRepository(read_only=settings.read_only)
        if settings.update_hashes_only:
            run_hash_update(settings, doc_repo)
            return

        reporter = LogIssueReporter(disabled=settings.suppress_errors)
        renderer = RendererInvoker(settings.renderer_command)
        fonts = FontChecker(InstalledFontSource())
        processor = build_processor(settings, doc_repo, reporter, FontProblemLedger(), renderer)
        job_runner = JobRunner(processor, doc_repo, reporter)
        worker = Worker(
            doc_repo,
            job_runner,
            fonts,
            settings,
            cache_dir=instance_cache_dir(settings) / "books",
        )
        worker.run()
    finally:
        close_pool()


def run_hash_update(settings: Settings, doc_repo: DocumentRepository) -> None:
    downloader = BookDownloader(
        S3Storage(settings.s3_download_bucket, settings.s3_region),
        instance_cache_dir(settings) / "books",
        force_download=settings.force_download,
        skip_download=settings.skip_download,
    )
    runner = HashUpdateRunner(doc_repo, downloader, FolderImageHasher, dry_run=settings.read_only)
    query = build_query(
        HarvestMode.ALL,
        Version.parse(settings.harvester_version),
        parse_filter(settings.query_filter),
    )
    runner.run(query, limit=settings.max_documents)


if __name__ == "__main__":
    main()
