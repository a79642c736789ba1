import sys
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from pbkeeper import settings
from pbkeeper.local.config import ConfigStore
from pbkeeper.local.supervisor.process_utils import get_os_name, run_command

log = logging.getLogger(__name__)


class FatalStartupError(Exception):
    """A startup failure that aborts the sequence before the server is usable."""


class ConfigValidationError(FatalStartupError):
    """Raised when the configuration violates one or more invariants."""

    def __init__(self, errors: List[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors


class StartupStatus:
    """
    Accumulates the outcome of one startup attempt.

    A fresh instance is created by ProcessSupervisor.start() and handed to
    every step; the status report consumes it at the end.
    """

    def __init__(self) -> None:
        self.executable_path: Optional[Path] = None
        self.bind_address = ""
        self.public_url = ""
        self.expose_admin = False
        self.health_check_passed: Optional[bool] = None
        self.client_authenticated: Optional[bool] = None
        # (email, password) when credentials were generated during this attempt.
        self.generated_credentials: Optional[Tuple[str, str]] = None
        self.errors: List[str] = []
        self.warnings: List[str] = []

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def warn(self, message: str) -> None:
        log.warning(message)
        self.warnings.append(message)

    def __repr__(self) -> str:
        return (
            f"StartupStatus(bind_address={self.bind_address!r}, public_url={self.public_url!r}, "
            f"errors={len(self.errors)}, warnings={len(self.warnings)})"
        )


def validate_configuration(store: ConfigStore) -> None:
    """
    Validates the loaded configuration.

    :raises ConfigValidationError: If any invariant is violated.
    """
    errors = store.validate()
    if errors:
        for error in errors:
            log.error(f"CONFIG CHECK FAILED: {error}")
        raise ConfigValidationError(errors)
    log.debug("Configuration validated.")


def resolve_executable(base_dir: Path, status: StartupStatus) -> Path:
    """
    Locates the platform-specific wrapped binary under <base_dir>/bin.

    :raises FatalStartupError: If the platform is unsupported or the file is missing.
    """
    os_name = get_os_name()
    if os_name is None:
        raise FatalStartupError(f"Unsupported operating system: {sys.platform}")

    executable = base_dir / "bin" / settings.BINARY_NAMES[os_name]
    if not executable.exists():
        log.error(f"PocketBase executable not found at: {executable}")
        raise FatalStartupError("PocketBase executable not found")

    if os_name == "linux":
        try:
            executable.chmod(0o755)
        except OSError as e:
            status.warn(f"Could not set executable permissions: {e}")

    log.info(f"Found PocketBase executable at '{executable}'")
    return executable


def check_for_update(executable: Path, base_dir: Path, enabled: bool, status: StartupStatus) -> None:
    """Runs the binary's self-update subcommand when enabled. Failures only warn."""
    if not enabled:
        return

    log.info("Checking for PocketBase updates...")
    result = run_command([executable, "update"], cwd=base_dir, timeout=settings.UPDATE_TIMEOUT)
    if result.code != 0:
        status.warn("Update check failed, using current version")
    else:
        log.debug(result.stdout.strip())
