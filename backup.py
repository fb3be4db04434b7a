import argparse
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, List, Optional

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

import config
import notifier
import staging
import storage

LOGGER = logging.getLogger(__name__)

CONFIG_PATH = os.environ.get("BACKUP_CONFIG", "config.yaml")


@dataclass
class PassResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    cancelled: bool = False


class Backuper:
    def __init__(
        self,
        cfg: config.BackupConfig,
        cloud: storage.CloudStorage,
        alert: notifier.Notifier,
        only: Optional[Iterable[str]] = None,
    ):
        self._config = cfg
        self._cloud = cloud
        self._notifier = alert
        self._only = {name.lower() for name in only} if only else None
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def run_pass(self, today: Optional[date] = None) -> PassResult:
        """Back up and clean every active database once.

        A failure in one database is logged and mailed, then the next
        database is processed. The stop flag is honoured between databases
        only.
        """
        result = PassResult()
        LOGGER.info("Backup started at %s.", datetime.now())
        if self._only:
            known = {db.backup_name.lower() for db in self._config.databases}
            for name in sorted(self._only - known):
                LOGGER.warning("Database %s is not configured.", name)

        for db in self._config.databases:
            if self._stop.is_set():
                LOGGER.warning("Backup pass cancelled before %s.", db.backup_name)
                result.cancelled = True
                break
            if not db.is_active or (self._only and db.backup_name.lower() not in self._only):
                result.skipped.append(db.backup_name)
                continue

            try:
                self.backup_database(db, today)
                self.cleanup_database(db, today)
            except Exception as e:
                LOGGER.error("%s: %s", db.backup_name or db.database_name, e)
                result.failed.append(db.backup_name)
                self._report(str(e))
            else:
                result.succeeded.append(db.backup_name)

        LOGGER.info("Backup finished at %s.", datetime.now())
        return result

    def backup_database(self, db: config.DatabaseConfig, today: Optional[date] = None):
        bucket = self._config.s3.bucket_name

        paths = staging.check_paths_exist(db)
        self._cloud.check_bucket_exists(bucket)
        staging.copy_database_to_folder(paths.source, paths.staged)
        archive = staging.archive_to_folder(paths.staged, paths.archive_prefix, db.database_name, today)
        self._cloud.copy_archive_to_cloud(bucket, archive)
        self._cloud.compare_checksum(bucket, archive)
        return archive

    def cleanup_database(self, db: config.DatabaseConfig, today: Optional[date] = None):
        days = self._config.retention_days
        staging.cleanup_folder(db, days, today)
        self._cloud.cleanup_cloud(self._config.s3.bucket_name, db.backup_name, days, today)

    def _report(self, message: str) -> None:
        try:
            self._notifier.send_error(message)
        except (notifier.NotificationError, config.ConfigError) as e:
            LOGGER.error("Email: %s", e)


def build_backuper(config_path: str, only: Optional[Iterable[str]] = None) -> Backuper:
    cfg = config.load_config(config_path)
    cfg.email.validate_settings()
    alert = notifier.EmailNotifier(cfg.email)

    try:
        client = storage.create_client(cfg.s3)
    except config.ConfigError as e:
        try:
            alert.send_error(f"Initialization error: {e}")
        except notifier.NotificationError as mail_error:
            LOGGER.error("Email: %s", mail_error)
        raise

    return Backuper(cfg, storage.CloudStorage(client), alert, only)


def run_scheduled(backuper: Backuper, interval_hours: float) -> None:
    scheduler = BlockingScheduler()
    scheduler.add_job(
        backuper.run_pass,
        IntervalTrigger(hours=interval_hours),
        id="backup-pass",
        next_run_time=datetime.now(),
        max_instances=1,
        coalesce=True,
    )

    def shutdown(signum, frame):
        LOGGER.warning("Signal %s received, stopping after the current database.", signum)
        backuper.stop()
        scheduler.shutdown(wait=False)

    previous = signal.signal(signal.SIGTERM, shutdown)
    LOGGER.info("Scheduler: one pass every %s hours.", interval_hours)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        backuper.stop()
        scheduler.shutdown(wait=False)
    finally:
        signal.signal(signal.SIGTERM, previous)


def configure_logging(level: int, log_file: Optional[str] = None) -> None:
    if level >= 2:
        log_level = logging.DEBUG
    elif level == 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up database files to S3-compatible storage.")
    parser.add_argument("--config", default=CONFIG_PATH, help="Path to the YAML configuration.")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Increase logging verbosity (-v info, -vv debug)."
    )
    parser.add_argument("--log-file", help="Also write the log to this file.")
    parser.add_argument(
        "-d",
        "--database",
        action="append",
        dest="databases",
        help="Backup name of a configured database (repeatable).",
    )
    parser.add_argument(
        "--interval",
        type=float,
        help="Run a pass every INTERVAL hours instead of once.",
    )
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")
    configure_logging(args.verbose, args.log_file)

    try:
        backuper = build_backuper(args.config, args.databases)
    except config.ConfigError as e:
        LOGGER.critical("Startup failed: %s", e)
        return 1

    if args.interval:
        run_scheduled(backuper, args.interval)
    else:
        result = backuper.run_pass()
        print(f"Done. {len(result.succeeded)} succeeded, {len(result.failed)} failed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
