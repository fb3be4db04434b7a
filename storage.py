"""S3-compatible object storage: upload, verification and remote retention."""
import base64
import hashlib
import logging
from datetime import date
from pathlib import Path
from typing import Callable, Iterator, Optional

import boto3
from botocore.config import Config as ClientConfig
from botocore.exceptions import BotoCoreError, ClientError

import config
from staging import retention_cutoff

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

# No aws-chunked bodies or checksum trailers: the stored ETag must stay the
# MD5 of the archive.
CLIENT_CONFIG = ClientConfig(
    request_checksum_calculation="when_required",
    response_checksum_validation="when_required",
)


class UploadError(Exception):
    """Raised when the object store rejects an operation."""


class IntegrityError(Exception):
    """Raised when the stored object's digest differs from the local archive."""


def file_digest(path: Path, algorithm: Callable = hashlib.md5):
    digest = algorithm()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest


def create_client(s3_config: config.S3Config):
    try:
        session = boto3.session.Session()
        return session.client(
            service_name="s3",
            endpoint_url=s3_config.endpoint or None,
            aws_access_key_id=s3_config.access_key or None,
            aws_secret_access_key=s3_config.secret_key or None,
            region_name=s3_config.region or None,
            config=CLIENT_CONFIG,
        )
    except (BotoCoreError, ValueError) as e:
        raise config.ConfigError(f"Cannot create S3 client for {s3_config.endpoint}: {e}") from e


def _status(response: dict) -> int:
    return response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)


class CloudStorage:
    # S3 reports the MD5 of the body as ETag for objects uploaded in one part,
    # so uploads always go through a single put_object call.
    etag_digest = staticmethod(hashlib.md5)

    def __init__(self, client):
        self._client = client

    def check_bucket_exists(self, bucket: str) -> None:
        try:
            response = self._client.list_buckets()
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Cannot list buckets: {e}") from e
        names = {b["Name"] for b in response.get("Buckets", [])}
        if bucket not in names:
            raise config.ConfigError(f"Bucket {bucket} does not exist in the cloud")

    def list_objects(self, bucket: str, prefix: str = "") -> Iterator[dict]:
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                yield from page.get("Contents", [])
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Cannot list objects in {bucket}: {e}") from e

    def copy_archive_to_cloud(self, bucket: str, archive: Path) -> str:
        key = archive.name
        content_md5 = base64.b64encode(file_digest(archive, hashlib.md5).digest()).decode("ascii")
        try:
            with open(archive, "rb") as body:
                response = self._client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ContentMD5=content_md5,
                )
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(f"Error uploading {archive} to {bucket}: {e}") from e

        if _status(response) != 200:
            raise UploadError(f"Error uploading {archive} to {bucket}: HTTP {_status(response)}")

        LOGGER.info("Archive %s uploaded to %s", archive, bucket)
        return key

    def compare_checksum(self, bucket: str, archive: Path) -> None:
        key = archive.name
        local = file_digest(archive, self.etag_digest).hexdigest().upper()

        for obj in self.list_objects(bucket, prefix=key):
            if obj["Key"] != key:
                continue
            remote = obj["ETag"].strip('"').upper()
            if remote != local:
                raise IntegrityError(
                    f"Checksum of {archive} ({local}) does not match {key} in {bucket} ({remote})"
                )
            LOGGER.info("Checksum of %s matches %s in %s", archive, key, bucket)
            return

        raise UploadError(f"Object {key} not found in {bucket} after upload")

    def cleanup_cloud(
        self,
        bucket: str,
        prefix: str,
        retention_days: int,
        today: Optional[date] = None,
    ) -> list[str]:
        cutoff = retention_cutoff(retention_days, today).astimezone()
        expired = [
            obj["Key"]
            for obj in self.list_objects(bucket, prefix=prefix)
            if obj["LastModified"] < cutoff
        ]

        for key in expired:
            try:
                response = self._client.delete_object(Bucket=bucket, Key=key)
            except (BotoCoreError, ClientError) as e:
                raise UploadError(f"Error removing {key} from {bucket}: {e}") from e
            if _status(response) != 204:
                raise UploadError(f"Error removing {key} from {bucket}: HTTP {_status(response)}")
            LOGGER.info("Object %s removed from %s", key, bucket)

        return expired
