"""
Shared fixtures: project root on sys.path, in-memory S3 client, configs.
"""

import hashlib
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

import config  # noqa: E402
import notifier  # noqa: E402
import staging  # noqa: E402


class FakeS3Client:
    """Subset of the boto3 S3 client used by CloudStorage."""

    def __init__(self, buckets=("backups-co",)):
        self.objects = {name: {} for name in buckets}
        self.put_status = 200
        self.delete_status = 204
        self.put_calls = []

    def add_object(self, bucket, key, data=b"", etag=None, last_modified=None):
        self.objects[bucket][key] = {
            "ETag": etag or f'"{hashlib.md5(data).hexdigest()}"',
            "LastModified": last_modified or datetime.now(timezone.utc),
            "Size": len(data),
        }

    def list_buckets(self):
        return {"Buckets": [{"Name": name} for name in self.objects]}

    def get_paginator(self, operation):
        assert operation == "list_objects_v2"
        return self

    def paginate(self, Bucket, Prefix=""):
        contents = [
            {"Key": key, **meta}
            for key, meta in sorted(self.objects[Bucket].items())
            if key.startswith(Prefix)
        ]
        yield {"Contents": contents} if contents else {}

    def put_object(self, Bucket, Key, Body, ContentMD5):
        data = Body.read()
        self.put_calls.append((Bucket, Key, ContentMD5))
        self.add_object(Bucket, Key, data)
        return {"ResponseMetadata": {"HTTPStatusCode": self.put_status}}

    def delete_object(self, Bucket, Key):
        self.objects[Bucket].pop(Key, None)
        return {"ResponseMetadata": {"HTTPStatusCode": self.delete_status}}


class RecordingNotifier(notifier.Notifier):
    def __init__(self):
        self.messages = []

    def send_error(self, error_message: str) -> None:
        self.messages.append(error_message)


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def recording_notifier():
    return RecordingNotifier()


@pytest.fixture
def mtime_as_creation(monkeypatch):
    """Use mtime as creation time so tests can move it with os.utime."""
    monkeypatch.setattr(
        staging, "creation_time", lambda path: datetime.fromtimestamp(path.stat().st_mtime)
    )


def make_database(root: Path, name: str, file_name: str = "acct.db", content: bytes = b"data"):
    source_dir = root / f"{name}-source"
    source_dir.mkdir()
    if content is not None:
        (source_dir / file_name).write_bytes(content)
    return config.DatabaseConfig(
        database_path=str(source_dir),
        database_name=file_name,
        backup_path=str(root / "backup"),
        backup_name=name,
    )


@pytest.fixture
def email_config():
    return config.EmailConfig(
        smtp_server="smtp.example.com",
        port=587,
        sender="backup@example.com",
        recipient="admin@example.com",
        username="backup@example.com",
        password="secret",
    )


@pytest.fixture
def backup_config(tmp_path, email_config):
    return config.BackupConfig(
        s3=config.S3Config(endpoint="https://s3.example.com", bucket_name="backups-co"),
        retention_days=7,
        email=email_config,
        databases=[make_database(tmp_path, "Accounting", content=b"ledger contents")],
    )
