import logging
import threading
import zipfile
from collections import namedtuple
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

BackupRecord = namedtuple('BackupRecord', ['key', 'created_at'])

BACKUPS_SUBDIR = "backups"


def parse_timestamp(value: str) -> datetime:
    """
    Parses the backend's timestamp format ('2024-05-01 10:20:30.123Z').
    Unparseable values sort as the oldest possible time.
    """
    text = (value or "").strip().replace(" ", "T")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def backup_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp without sub-seconds, with ':' and '.' replaced by '-'."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H-%M-%S")


class ArchiveBackupStore:
    """
    Offline backup store that zips the backend data directory directly.

    Archives are written to <data_dir>/backups, the same place the backend
    keeps the backups it creates itself, so both kinds show up in listings.
    Only safe while the backend process is not running.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.backups_dir = self.data_dir / BACKUPS_SUBDIR

    def create_backup(self, basename: str) -> BackupRecord:
        name = basename if basename.endswith(".zip") else f"{basename}.zip"
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        target = self.backups_dir / name
        temp_target = target.with_suffix(".zip.tmp")
        try:
            with zipfile.ZipFile(temp_target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for path in sorted(self.data_dir.rglob("*")):
                    if not path.is_file() or self.backups_dir in path.parents:
                        continue
                    archive.write(path, path.relative_to(self.data_dir).as_posix())
            temp_target.replace(target)
        finally:
            temp_target.unlink(missing_ok=True)
        return BackupRecord(key=name, created_at=datetime.fromtimestamp(target.stat().st_mtime, timezone.utc))

    def list_backups(self) -> List[BackupRecord]:
        if not self.backups_dir.is_dir():
            return []
        return [
            BackupRecord(key=path.name, created_at=datetime.fromtimestamp(path.stat().st_mtime, timezone.utc))
            for path in self.backups_dir.iterdir()
            if path.is_file() and path.suffix == ".zip"
        ]

    def delete_backup(self, key: str) -> None:
        target = (self.backups_dir / key).resolve()
        if target.parent != self.backups_dir.resolve():
            raise ValueError(f"Invalid backup key: {key}")
        target.unlink()


class BackupManager:
    """
    Creates, lists, deletes and rotates backups according to the backup config.

    All storage calls go through a store object exposing create_backup,
    list_backups and delete_backup. The primitives here never raise: failures
    turn into None, [] or False.
    """

    def __init__(self, backup_config: Dict[str, Any], store, status=None) -> None:
        self.config = backup_config
        self.store = store
        self.status = status
        self._stop_event = threading.Event()
        self._schedule_thread: Optional[threading.Thread] = None

    @property
    def enabled(self) -> bool:
        return bool(self.config.get("enabled"))

    @property
    def prefix(self) -> str:
        return self.config.get("prefix", "auto_")

    def _warn(self, message: str) -> None:
        if self.status is not None:
            self.status.warn(message)
        else:
            log.warning(message)

    #* --- Primitives ---
    def create(self, basename: str) -> Optional[BackupRecord]:
        try:
            record = self.store.create_backup(basename)
            log.debug(f"Backup created: {record.key}")
            return record
        except Exception as e:
            self._warn(f"Backup creation failed: {e}")
            return None

    def list(self) -> List[BackupRecord]:
        try:
            return list(self.store.list_backups())
        except Exception as e:
            log.debug(f"Failed to list backups: {e}")
            return []

    def delete(self, key: str) -> bool:
        try:
            self.store.delete_backup(key)
            return True
        except Exception as e:
            log.debug(f"Failed to delete backup '{key}': {e}")
            return False

    #* --- Policies ---
    def rotate(self) -> List[str]:
        """
        Keeps the newest keep_last auto-prefixed backups and deletes older ones.
        Backups without the prefix are never touched.

        :return: The keys that were deleted.
        """
        keep_last = self.config.get("keep_last", 0)
        if not self.enabled or keep_last <= 0:
            return []

        auto_backups = sorted(
            (b for b in self.list() if b.key.startswith(self.prefix)),
            key=lambda b: b.created_at,
            reverse=True,
        )

        deleted = []
        for backup in auto_backups[keep_last:]:
            if self.delete(backup.key):
                log.debug(f"Deleted old backup: {backup.key}")
                deleted.append(backup.key)
            else:
                self._warn(f"Backup rotation failed to delete {backup.key}")
        return deleted

    def _create_tagged(self, tag: str) -> Optional[BackupRecord]:
        basename = f"{self.prefix}{tag}_{backup_timestamp()}"
        log.debug(f"Creating {tag} backup...")
        record = self.create(basename)
        if record:
            log.info(f"{tag.capitalize()} backup created: {record.key}")
            self.rotate()
        return record

    def startup_backup(self) -> Optional[BackupRecord]:
        if not self.enabled or not self.config.get("on_startup"):
            return None
        return self._create_tagged("startup")

    def schedule(self) -> bool:
        """
        Starts the recurring backup thread.

        :return: True if a schedule was started.
        """
        interval = self.config.get("schedule", 0)
        if not self.enabled or interval <= 0:
            return False
        if self._schedule_thread and self._schedule_thread.is_alive():
            return True

        self._stop_event.clear()
        self._schedule_thread = threading.Thread(
            target=self._periodic_backup,
            args=(interval,),
            daemon=True,
            name="ScheduledBackupThread",
        )
        self._schedule_thread.start()
        log.info(f"Scheduled backups enabled: every {interval} seconds")
        return True

    def _periodic_backup(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            self._create_tagged("scheduled")
        log.debug("Scheduled backup thread has stopped.")

    def cancel_schedule(self) -> None:
        self._stop_event.set()

    def use_store(self, store) -> None:
        """Switches the storage backend, e.g. from the offline archive to the live API."""
        self.store = store

