import re

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

HARVEST_MODES = ("default", "all", "needed-only", "retry-failures", "force-all")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"
    log_file: str = ""

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "bloomlibrary"
    db_username: str = "harvester"
    db_password: str = "secret"

    harvest_mode: str = "default"
    harvester_version: str = "1.0"
    instance_name: str = ""
    query_filter: str = ""
    max_documents: int | None = None
    loop: bool = False
    loop_wait_seconds: int = 300
    update_hashes_only: bool = False

    cache_root: str = "/var/cache/harvester"
    min_free_disk_bytes: int = 2_000_000_000
    force_download: bool = False
    skip_download: bool = False
    read_only: bool = False
    suppress_errors: bool = False

    skip_upload_bloom_digital: bool = False
    skip_upload_epub: bool = False
    skip_upload_bloom_source: bool = False
    skip_upload_json_texts: bool = False
    skip_upload_thumbnails: bool = False

    s3_region: str = "us-east-1"
    s3_download_bucket: str = "BloomLibraryBooks"

    renderer_command: str = "BloomHarvester"
    render_timeout_seconds: int = 600

    @field_validator("harvest_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        mode = value.strip().lower()
        if mode not in HARVEST_MODES:
            raise ValueError(f"Unknown harvest mode '{value}'. Choose from: {list(HARVEST_MODES)}")
        return mode

    @field_validator("harvester_version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not re.fullmatch(r"\d+\.\d+", value.strip()):
            raise ValueError(f"harvester_version must look like MAJOR.MINOR, got '{value}'")
        return value.strip()

    @property
    def upload_bucket(self) -> str:
        """Artifact bucket for the current environment."""
        return {
            "prod": "bloomharvest",
            "test": "bloomharvest-unittests",
        }.get(self.app_env, "bloomharvest-sandbox")
