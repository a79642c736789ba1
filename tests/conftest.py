"""Shared fixtures for pbkeeper tests.

Provides config-store factories, an in-memory backup store, a fake backend
client and a fake child process, so the supervisor can be driven without the
real PocketBase binary.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

# Ensure project root is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pbkeeper.local.config import ConfigStore
from pbkeeper.local.supervisor.backups import BackupRecord
from pbkeeper.local.supervisor.process_utils import CommandResult
from pbkeeper.local.supervisor.readiness import ClientReady
from pbkeeper.local.supervisor.startup import StartupStatus


def make_result(code=0, stdout="", stderr=""):
    return CommandResult(code, stdout, stderr)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@pytest.fixture
def make_store(tmp_path):
    """Factory: write a config document to disk and return a loaded ConfigStore."""
    def _make(document=None):
        path = tmp_path / "config.yaml"
        if document is not None:
            path.write_text(yaml.safe_dump(document), encoding="utf-8")
        store = ConfigStore(path)
        store.load()
        return store
    return _make


@pytest.fixture
def status():
    return StartupStatus()


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------

class FakeBackupStore:
    """In-memory store with the create/list/delete interface BackupManager expects."""

    def __init__(self, records=None):
        self.records = list(records or [])
        self.fail_create = False
        self.fail_delete = set()
        self.deleted = []

    def create_backup(self, basename):
        if self.fail_create:
            raise OSError("disk full")
        record = BackupRecord(key=f"{basename}.zip", created_at=datetime.now(timezone.utc))
        self.records.append(record)
        return record

    def list_backups(self):
        return list(self.records)

    def delete_backup(self, key):
        if key in self.fail_delete:
            raise OSError("permission denied")
        self.records = [r for r in self.records if r.key != key]
        self.deleted.append(key)


def aged_records(prefix, count, start_hours_ago=10):
    """Records named <prefix>0..n with strictly increasing timestamps (index 0 is oldest)."""
    base = datetime.now(timezone.utc) - timedelta(hours=start_hours_ago)
    return [BackupRecord(key=f"{prefix}{i}.zip", created_at=base + timedelta(minutes=i)) for i in range(count)]


@pytest.fixture
def fake_backup_store():
    return FakeBackupStore()


# ---------------------------------------------------------------------------
# Backend client and child process
# ---------------------------------------------------------------------------

class FakeClient(FakeBackupStore):
    """Stands in for BackendClient: answers the readiness handshake and the settings API."""

    def __init__(self, authenticates=True, acknowledges=True, remote_settings=None):
        super().__init__()
        self.authenticates = authenticates
        self.acknowledges = acknowledges
        self.remote_settings = remote_settings or {}
        self.is_authenticated = False
        self.credentials = None
        self.ready_events = []
        self.settings_updates = []

    def set_credentials(self, email, password):
        self.credentials = (email, password)

    def on_server_ready(self, event, coordinator):
        self.ready_events.append(event)
        self.is_authenticated = self.authenticates
        if self.acknowledges:
            coordinator.acknowledge(ClientReady(authenticated=self.is_authenticated))

    def get_settings(self):
        return self.remote_settings

    def update_settings(self, partial):
        self.settings_updates.append(partial)
        return partial


class FakeProcess:
    """Minimal subprocess.Popen stand-in."""

    def __init__(self, returncode=None, pid=4242):
        self.returncode = returncode
        self.pid = pid

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = 0
        return self.returncode


@pytest.fixture
def fake_client():
    return FakeClient()
