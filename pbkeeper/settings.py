"""
This module contains the static settings for the pbkeeper supervisor.
It defines paths, timeouts, network endpoints and the wrapped binary layout.
User-editable runtime configuration lives in the YAML ConfigStore instead.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
# The resource directory holds bin/, config.yaml and the backend data dirs.
BASE_DIR = pathlib.Path(os.getenv("PBKEEPER_HOME", pathlib.Path(__file__).resolve().parent.parent))
BIN_DIR = BASE_DIR / "bin"
CONFIG_PATH = pathlib.Path(os.getenv("PBKEEPER_CONFIG", BASE_DIR / "config.yaml"))

#* --- Wrapped Binary ---
BINARY_NAMES = {
    "windows": "pocketbase-win.exe",
    "linux": "pocketbase-linux",
}
PROCESS_NAME = "pocketbase"
PROCESS_TITLE = "PBKeeper - Supervisor"

#* --- Network ---
WILDCARD_HOST = "0.0.0.0"
LOOPBACK_HOST = "127.0.0.1"
PUBLIC_IP_URL = os.getenv("PBKEEPER_PUBLIC_IP_URL", "https://api.ipify.org")
PUBLIC_IP_TIMEOUT = 5  # seconds
HEALTH_CHECK_TIMEOUT = 5  # seconds
BACKEND_REQUEST_TIMEOUT = 5  # seconds

#* --- Subcommand Timeouts ---
SUPERUSER_TIMEOUT = 5  # seconds
MIGRATION_TIMEOUT = 30  # seconds
UPDATE_TIMEOUT = 30  # seconds

#* --- Supervisor Timing ---
SETTLE_DELAY = 1  # seconds between spawn and the server-ready announcement
READINESS_TIMEOUT = 3  # seconds to wait for the client acknowledgment
SETTINGS_SYNC_DELAY = 2  # seconds before pushing SMTP/S3 settings
GRACEFUL_SHUTDOWN_TIMEOUT = 5  # seconds before force-killing

#* --- Client Authentication Retry ---
AUTH_MAX_ATTEMPTS = 10
AUTH_BASE_DELAY = 0.1  # seconds
AUTH_MAX_DELAY = 2.0  # seconds

#* --- Superuser ---
SUPERUSER_SUCCESS_MARKER = "Successfully saved superuser"
GENERATED_PASSWORD_LENGTH = 20

#* --- Output Filtering ---
# Banner lines printed by the binary itself; the status report replaces them.
SUPPRESSED_OUTPUT_CONTAINS = (
    "Server started at",
    "REST API:",
    "Dashboard:",
    # First-run setup hints. Superuser creation is handled via the CLI.
    "Launch the URL below",
    "create your first superuser account",
    "/_/#/pbinstal/",
)
SUPPRESSED_OUTPUT_PREFIXES = ("├─", "└─")

#* --- Application variables ---
VERBOSE_LOGGING = os.getenv("PBKEEPER_VERBOSE", "False").lower() in ('true', '1', 't')
