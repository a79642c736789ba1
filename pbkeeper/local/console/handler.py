import logging
from typing import List, Optional

import psutil
import setproctitle

from pbkeeper import settings
from pbkeeper.log import set_console_level
from pbkeeper.local.config import ConfigError, ConfigStore, load_config
from pbkeeper.local.supervisor import ProcessSupervisor
from pbkeeper.local.supervisor.backups import ArchiveBackupStore, BackupManager, backup_timestamp
from pbkeeper.local.supervisor.startup import (
    ConfigValidationError, FatalStartupError, StartupStatus, resolve_executable, validate_configuration,
)

log = logging.getLogger(__name__)


def _load_store() -> Optional[ConfigStore]:
    try:
        return load_config()
    except ConfigError as e:
        log.error(str(e))
        return None

def _is_backend_running() -> bool:
    """True if any process named like the wrapped binary is alive on this machine."""
    names = set(settings.BINARY_NAMES.values())
    for proc in psutil.process_iter(["name"]):
        if proc.info.get("name") in names:
            return True
    return False


def start_supervisor() -> bool:
    """
    Starts PocketBase and blocks until it exits or a termination signal arrives.

    :return: False if startup failed.
    """
    setproctitle.setproctitle(settings.PROCESS_TITLE)
    store = _load_store()
    if store is None:
        return False

    supervisor = ProcessSupervisor(store)
    status = supervisor.start()
    if status.failed:
        return False

    code = supervisor.wait()
    log.debug(f"PocketBase process returned {code}")
    supervisor.stop()
    return True

def check_configuration() -> bool:
    """
    Validates the config file and checks that the wrapped binary is present.

    :return: True if the configuration is usable, otherwise False.
    """
    log.info("Performing configuration and path validation...")
    store = _load_store()
    if store is None:
        return False

    all_ok = True
    try:
        validate_configuration(store)
        log.info(f"Config Check OK: '{store.path}' is valid")
    except ConfigValidationError:
        all_ok = False

    status = StartupStatus()
    try:
        executable = resolve_executable(settings.BASE_DIR, status)
        log.info(f"Config Check OK: Found PocketBase at '{executable}'")
    except FatalStartupError as e:
        log.error(f"CONFIG CHECK FAILED: {e}")
        all_ok = False
    return all_ok


#* --- Backups ---
def _backups_list(manager: BackupManager):
    backups = sorted(manager.list(), key=lambda b: b.created_at, reverse=True)
    if not backups:
        print("No backups found.")
        return
    print(f"\n--- Backups ({len(backups)}) ---")
    for backup in backups:
        marker = "auto" if backup.key.startswith(manager.prefix) else "    "
        print(f"  [{marker}] {backup.key:<48} {backup.created_at:%Y-%m-%d %H:%M:%S} UTC")
    print()

def _backups_create(manager: BackupManager, args: List[str]) -> bool:
    # Manual backups carry no auto prefix, so rotation never removes them.
    basename = args[0] if args else f"manual_{backup_timestamp()}"
    record = manager.create(basename)
    if record is None:
        return False
    print(f"Backup created: {record.key}")
    return True

def _backups_prune(manager: BackupManager):
    if not manager.enabled:
        print("Backups are disabled in the config; nothing to prune.")
        return
    deleted = manager.rotate()
    print(f"Pruned {len(deleted)} backup(s), keeping the newest {manager.config.get('keep_last')}.")

def _backups_help():
    print("\nBackups Command Help:")
    print("  backups list               - List the backups in the data directory.")
    print("  backups create [name]      - Create an offline backup (PocketBase must be stopped).")
    print("  backups prune              - Apply the keep_last rotation to auto backups.")
    print("  backups help               - Show this help message.")

def handle_backups_command(args: List[str]) -> bool:
    """
    Handles all sub-commands for the 'backups' command-line interface.

    :param args: A list of string arguments following the 'backups' command.
    """
    sub_command = args[0].lower() if args else "list"
    if sub_command == "help":
        _backups_help()
        return True

    store = _load_store()
    if store is None:
        return False
    data_dir = settings.BASE_DIR / store.section("advanced")["data_dir"]
    manager = BackupManager(store.section("backup"), ArchiveBackupStore(data_dir))

    if sub_command == "list":
        _backups_list(manager)
    elif sub_command in ("create", "prune"):
        if _is_backend_running():
            print("\nERROR: PocketBase is running. Stop it before managing backups offline.\n")
            return False
        if sub_command == "create":
            return _backups_create(manager, args[1:])
        _backups_prune(manager)
    else:
        print(f"Unknown backups sub-command: '{sub_command}'. Type 'backups help' for available commands.")
        return False
    return True


#* --- Console ---
def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    settings.VERBOSE_LOGGING = not settings.VERBOSE_LOGGING
    new_level = logging.DEBUG if settings.VERBOSE_LOGGING else logging.INFO

    status = "ON" if settings.VERBOSE_LOGGING else "OFF"
    if set_console_level(new_level):
        log.debug(f"Verbose console logging is now {status}.")
    else:
        print("Could not find console handler to modify level.")

def print_help():
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  start                  - Start PocketBase and supervise it until it exits (default).")
    print("  check-config           - Validate config.yaml and the PocketBase executable path.")
    print("  backups <cmd>          - Manage backups. Use 'backups help' for more details.")
    print("  help                   - Show this help message.")
    print("\nAdd --verbose to any command for detailed DEBUG log output.")
    print()
