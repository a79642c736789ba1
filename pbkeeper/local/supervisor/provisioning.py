import base64
import logging
import secrets
from pathlib import Path
from typing import Optional, Tuple

from pbkeeper import settings
from pbkeeper.local.config import ConfigStore
from pbkeeper.local.supervisor.process_utils import run_command

log = logging.getLogger(__name__)


def generate_password(length: int = settings.GENERATED_PASSWORD_LENGTH) -> str:
    """Returns `length` printable characters derived from cryptographically strong random bytes."""
    return base64.b64encode(secrets.token_bytes(length)).decode("ascii")[:length]


def generate_credentials(detected_ip: Optional[str]) -> Tuple[str, str]:
    domain = detected_ip or "localhost"
    return f"admin@{domain}.local", generate_password()


class SuperuserProvisioner:
    """
    Makes sure the backend has an administrative account before it is served.

    Persisted credentials are reused as-is. Missing ones are generated, upserted
    through the binary's CLI and written back to the config file.
    """

    def __init__(self, store: ConfigStore, base_dir: Path) -> None:
        self.store = store
        self.base_dir = base_dir

    def provision(self, executable: Path, detected_ip: Optional[str], status) -> bool:
        """
        Upserts the superuser account.

        :param executable: Path to the wrapped binary.
        :param detected_ip: Public IP found during URL resolution, used for generated emails.
        :param status: The StartupStatus for this attempt.
        :return: True on success. On failure a fatal error has been recorded in status.
        """
        superuser = self.store.section("superuser")
        email, password = superuser.get("email") or "", superuser.get("password") or ""
        generated = not (email and password)
        if generated:
            email, password = generate_credentials(detected_ip)
            log.info(f"No superuser credentials configured. Generated account '{email}'.")

        data_dir = self.store.section("advanced")["data_dir"]
        result = run_command(
            [executable, "superuser", "upsert", email, password, "--dir", data_dir],
            cwd=self.base_dir,
            timeout=settings.SUPERUSER_TIMEOUT,
        )

        # Both checks are kept: the binary's exit code alone has not proven reliable.
        if result.code != 0 and settings.SUPERUSER_SUCCESS_MARKER not in result.stdout:
            log.error(f"Superuser upsert failed (code {result.code}): {result.stderr.strip()}")
            status.errors.append(f"Failed to configure superuser (code {result.code})")
            return False

        log.debug(f"Superuser '{email}' is in place.")
        if generated:
            if not self.store.update_superuser_credentials(email, password):
                status.warn("Failed to save credentials to config file")
            status.generated_credentials = (email, password)
        return True
