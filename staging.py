"""Local side of a backup: staging copy, dated archive and retention."""
import logging
import os
import shutil
import zipfile
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import NamedTuple, Optional

import config

LOGGER = logging.getLogger(__name__)


class NotFoundError(Exception):
    """Raised when an expected local file is absent."""


class FileOperationError(Exception):
    """Raised when a local filesystem operation fails."""


class StagingPaths(NamedTuple):
    source: Path
    staged: Path
    archive_prefix: Path


def check_paths_exist(db: config.DatabaseConfig) -> StagingPaths:
    if not db.database_path:
        raise config.ConfigError("Database directory is not set")
    if not db.database_name:
        raise config.ConfigError("Database file name is not set")
    if not db.backup_path:
        raise config.ConfigError("Backup directory is not set")
    if not db.backup_name:
        raise config.ConfigError("Backup name is not set")

    return StagingPaths(
        source=Path(db.database_path) / db.database_name,
        staged=Path(db.backup_path) / db.database_name,
        archive_prefix=Path(db.backup_path) / db.backup_name,
    )


def creation_time(path: Path) -> datetime:
    """Creation time as reported by the platform.

    Linux has no portable birth time, so the modification time stands in
    for it there.
    """
    st = path.stat()
    if hasattr(st, "st_birthtime"):
        return datetime.fromtimestamp(st.st_birthtime)
    if os.name == "nt":
        return datetime.fromtimestamp(st.st_ctime)
    return datetime.fromtimestamp(st.st_mtime)


def retention_cutoff(retention_days: int, today: Optional[date] = None) -> datetime:
    today = today or date.today()
    return datetime.combine(today - timedelta(days=retention_days), time.min)


def copy_database_to_folder(source: Path, destination: Path) -> None:
    if not source.is_file():
        raise NotFoundError(f"Database file {source} does not exist")

    try:
        if destination.exists():
            destination_time = creation_time(destination)
            if destination_time != creation_time(source):
                destination.unlink()
                LOGGER.info("Removed %s created at %s", destination, destination_time)

        if destination.exists():
            raise FileOperationError(f"Staged copy {destination} already exists")

        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
    except OSError as e:
        raise FileOperationError(f"Cannot copy {source} to {destination}: {e}") from e

    LOGGER.info("Database %s copied to %s", source, destination)


def archive_name(archive_prefix: Path, today: Optional[date] = None) -> Path:
    today = today or date.today()
    return archive_prefix.with_name(f"{archive_prefix.name}-{today:%Y%m%d}.zip")


def archive_to_folder(
    staged: Path,
    archive_prefix: Path,
    entry_name: str,
    today: Optional[date] = None,
) -> Path:
    archive_path = archive_name(archive_prefix, today)
    try:
        if archive_path.exists():
            archive_path.unlink()
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.write(staged, arcname=entry_name)
    except OSError as e:
        raise FileOperationError(f"Cannot create archive {archive_path}: {e}") from e

    LOGGER.info("Database %s archived to %s", staged, archive_path)
    return archive_path


def cleanup_folder(
    db: config.DatabaseConfig,
    retention_days: int,
    today: Optional[date] = None,
) -> list[Path]:
    cutoff = retention_cutoff(retention_days, today)
    backup_dir = Path(db.backup_path)
    removed = []

    for file in sorted(backup_dir.iterdir()):
        if not file.is_file() or not file.name.startswith(db.backup_name):
            continue
        try:
            if creation_time(file) < cutoff:
                file.unlink()
                removed.append(file)
                LOGGER.info("File %s removed from %s", file.name, backup_dir)
        except OSError as e:
            raise FileOperationError(f"Error {e} while removing {file}") from e

    return removed
