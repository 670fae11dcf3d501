"""Book download and artifact upload against S3.

Book folders live in the download bucket under
``<uploader>/<book instance id>/<title>/``. Harvested artifacts are written to
the environment's harvest bucket under ``<uploader>/<book instance id>/``.
"""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote_plus, urlparse

import boto3
from botocore.exceptions import ClientError

from harvester.logging.logger import Log
from harvester.processor.exceptions import DocumentNotFoundError, DownloadError

DELETE_BATCH_SIZE = 1000
DEFAULT_CACHE_CONTROL = "no-cache"


@dataclass(frozen=True)
class BookLocation:
    """The parts of a book's base URL."""

    bucket: str
    uploader: str
    book_instance_id: str
    title: str

    @property
    def book_prefix(self) -> str:
        return f"{self.uploader}/{self.book_instance_id}/"

    @property
    def pdf_key(self) -> str:
        """Key of the PDF uploaded alongside the book: <title>/<title>.pdf."""
        return f"{self.book_prefix}{self.title}/{self.title}.pdf"

    @classmethod
    def from_base_url(cls, base_url: str) -> "BookLocation":
        """Split e.g. https://s3.amazonaws.com/Bucket/user%40x.org%2fguid%2fTitle%2f.

        Slashes inside the key are often percent-encoded and spaces may be
        written as "+", so the path is form-decoded before it is split.
        """
        parsed = urlparse(base_url)
        parts = [part for part in unquote_plus(parsed.path).split("/") if part]
        if ".s3" in parsed.netloc:
            parts.insert(0, parsed.netloc.split(".s3")[0])
        if len(parts) < 3:
            raise ValueError(f"Unrecognized book base URL: {base_url}")
        title = parts[3] if len(parts) > 3 else ""
        return cls(bucket=parts[0], uploader=parts[1], book_instance_id=parts[2], title=title)


class S3Storage:
    """Thin wrapper over a boto3 S3 client for one bucket."""

    def __init__(self, bucket: str, region: str, client: Any | None = None) -> None:
        self.bucket = bucket
        self._client = client or boto3.client("s3", region_name=region)

    def download_directory(self, bucket: str, prefix: str, destination: Path) -> Path:
        """Download every object under prefix into destination, keeping the layout below it."""
        paginator = self._client.get_paginator("list_objects_v2")
        count = 0
        try:
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for item in page.get("Contents", []):
                    key = item["Key"]
                    relative = key[len(prefix) :]
                    if not relative or relative.endswith("/"):
                        continue
                    target = destination / relative
                    target.parent.mkdir(parents=True, exist_ok=True)
                    self._client.download_file(bucket, key, str(target))
                    count += 1
        except ClientError as exc:
            if _is_not_found(exc):
                raise DocumentNotFoundError(f"s3://{bucket}/{prefix} not found") from exc
            raise DownloadError(f"Failed to download s3://{bucket}/{prefix}: {exc}") from exc
        if count == 0:
            raise DocumentNotFoundError(f"Nothing to download at s3://{bucket}/{prefix}")
        Log.info(f"Downloaded {count} files from s3://{bucket}/{prefix}")
        return destination

    def upload_file(
        self,
        path: Path,
        key_prefix: str,
        cache_control: str = DEFAULT_CACHE_CONTROL,
    ) -> str:
        """Upload one file as a public attachment; returns its key."""
        key = f"{key_prefix.rstrip('/')}/{path.name}"
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        self._client.upload_file(
            str(path),
            self.bucket,
            key,
            ExtraArgs={
                "ACL": "public-read",
                "CacheControl": cache_control,
                "ContentDisposition": f'attachment; filename="{path.name}"',
                "ContentType": content_type,
            },
        )
        return key

    def upload_directory(self, directory: Path, key_prefix: str) -> int:
        """Replace everything under key_prefix with the contents of directory."""
        key_prefix = key_prefix.rstrip("/")
        self.delete_directory(key_prefix)
        uploaded = 0
        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            relative_parent = path.parent.relative_to(directory).as_posix()
            prefix = key_prefix if relative_parent == "." else f"{key_prefix}/{relative_parent}"
            self.upload_file(path, prefix)
            uploaded += 1
        return uploaded

    def delete_directory(self, key_prefix: str) -> int:
        """Delete all objects under key_prefix in batches of up to 1000."""
        prefix = key_prefix.rstrip("/") + "/"
        paginator = self._client.get_paginator("list_objects_v2")
        deleted = 0
        batch: list[dict[str, str]] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                batch.append({"Key": item["Key"]})
                if len(batch) == DELETE_BATCH_SIZE:
                    deleted += self._delete_batch(batch)
                    batch = []
        if batch:
            deleted += self._delete_batch(batch)
        return deleted

    def _delete_batch(self, batch: list[dict[str, str]]) -> int:
        self._client.delete_objects(Bucket=self.bucket, Delete={"Objects": batch, "Quiet": True})
        return len(batch)

    def file_exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            raise
        return True


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in ("404", "NoSuchKey", "NoSuchBucket", "NotFound")
