import logging
from pathlib import Path

from pbkeeper import settings
from pbkeeper.local.config import ConfigStore
from pbkeeper.local.supervisor.process_utils import run_command

log = logging.getLogger(__name__)


class MigrationRunner:
    """Applies pending schema migrations through the binary's 'migrate up' subcommand."""

    def __init__(self, store: ConfigStore, base_dir: Path) -> None:
        self.store = store
        self.base_dir = base_dir

    def apply(self, executable: Path, status) -> None:
        """
        Runs pending migrations. Failures are recorded as warnings only.

        :param executable: Path to the wrapped binary.
        :param status: The StartupStatus receiving warnings.
        """
        migrations = self.store.section("migrations")
        if not migrations.get("auto_apply"):
            log.debug("Automatic migrations are disabled.")
            return

        data_dir = self.store.section("advanced")["data_dir"]
        try:
            result = run_command(
                [executable, "migrate", "up", "--dir", data_dir],
                cwd=self.base_dir,
                timeout=settings.MIGRATION_TIMEOUT,
            )
        except Exception as e:
            status.warn(f"Migration error: {e}")
            return

        stdout = result.stdout.strip()
        if result.code == 0:
            if stdout and "No migrations" not in stdout and "Applied" in stdout:
                count = stdout.count("Applied")
                log.info(f"Applied {count} migration{'s' if count != 1 else ''}")
            else:
                log.debug("No pending migrations.")
            return

        # Some versions report "nothing to do" with a non-zero exit code.
        if "no migration" in result.stderr or "No migrations" in result.stdout:
            return

        log.debug(f"migrate up failed (code {result.code}): {result.stderr.strip()}")
        status.warn(f"Failed to apply migrations - check {migrations.get('dir', 'pb_migrations')} directory")
