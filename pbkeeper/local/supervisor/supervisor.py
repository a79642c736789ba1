import sys
import time
import atexit
import signal
import logging
import threading
import subprocess
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pbkeeper import settings
from pbkeeper.local import backend_client
from pbkeeper.local.config import ConfigError, ConfigStore
from pbkeeper.local.supervisor import network, process_utils, shutdown, startup
from pbkeeper.local.supervisor.backups import ArchiveBackupStore, BackupManager
from pbkeeper.local.supervisor.migrations import MigrationRunner
from pbkeeper.local.supervisor.provisioning import SuperuserProvisioner
from pbkeeper.local.supervisor.readiness import ReadinessCoordinator, ServerReady
from pbkeeper.local.supervisor.settings_sync import pull_settings, push_settings
from pbkeeper.local.supervisor.startup import ConfigValidationError, FatalStartupError, StartupStatus
from pbkeeper.local.supervisor.status import report_status

log = logging.getLogger(__name__)


class ProcessState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ProcessSupervisor:
    """
    Owns the lifecycle of the wrapped PocketBase process.

    start() runs the ordered startup sequence and always ends with exactly one
    status report. stop() is idempotent and is wired to every termination
    pathway (signals and interpreter exit) unless install_hooks is False.
    """

    def __init__(
        self,
        store: ConfigStore,
        base_dir: Optional[Path] = None,
        client=None,
        install_hooks: bool = True,
    ) -> None:
        self.store = store
        self.base_dir = Path(base_dir or settings.BASE_DIR)
        self.client = client
        self.process: Optional[subprocess.Popen] = None
        self.state = ProcessState.STOPPED
        self.status: Optional[StartupStatus] = None
        self.backup_manager: Optional[BackupManager] = None
        # Re-entrant: a signal handler may call stop() while the main thread holds it.
        self._lock = threading.RLock()
        if install_hooks:
            self.register_shutdown_hooks()

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    #* --- Startup ---
    def start(self) -> StartupStatus:
        """
        Runs the full startup sequence.

        Fatal failures short-circuit the remaining steps; recoverable ones are
        recorded as warnings. Either way a status report is printed.

        :return: The StartupStatus of this attempt.
        """
        with self._lock:
            if self.state is not ProcessState.STOPPED:
                log.warning(f"Start requested while supervisor is {self.state.value}. Ignoring.")
                return self.status
            self.state = ProcessState.STARTING
            self.status = StartupStatus()

        status = self.status
        log.info("=" * 20 + " PocketBase Starting " + "=" * 20)
        start_time = time.time()
        try:
            self._run_startup_sequence(status)
        except ConfigValidationError as e:
            status.errors.extend(e.errors)
        except FatalStartupError as e:
            log.critical(f"Startup failed: {e}")
            status.errors.append(str(e))
        except Exception as e:
            log.critical(f"Startup failed due to an unexpected error: {e}", exc_info=True)
            status.errors.append(f"Unexpected startup error: {e}")

        with self._lock:
            if self.state is ProcessState.STARTING:
                self.state = ProcessState.RUNNING if self.is_running else ProcessState.STOPPED
        if status.failed and self.is_running:
            self.stop()

        report_status(status)
        # Later warnings (e.g. from scheduled backups) go to the log only.
        if self.backup_manager:
            self.backup_manager.status = None
        log.debug(f"Startup sequence finished in {time.time() - start_time:.2f} seconds.")
        return status

    def _run_startup_sequence(self, status: StartupStatus) -> None:
        try:
            config = self.store.load()
        except ConfigError as e:
            raise FatalStartupError(str(e)) from e
        startup.validate_configuration(self.store)

        executable = startup.resolve_executable(self.base_dir, status)
        status.executable_path = executable
        startup.check_for_update(executable, self.base_dir, config["auto_update"], status)

        net = config["network"]
        port, expose_admin = net["port"], bool(net["expose_admin"])
        status.expose_admin = expose_admin
        bind_address, public_url, detected_ip = network.resolve_bind_and_url(
            expose_admin, net["host"], port, status
        )
        status.bind_address, status.public_url = bind_address, public_url

        if not SuperuserProvisioner(self.store, self.base_dir).provision(executable, detected_ip, status):
            return

        MigrationRunner(self.store, self.base_dir).apply(executable, status)

        data_dir = self.base_dir / config["advanced"]["data_dir"]
        self.backup_manager = BackupManager(config["backup"], ArchiveBackupStore(data_dir), status)
        self.backup_manager.startup_backup()

        self._spawn(executable, bind_address, public_url)

        time.sleep(settings.SETTLE_DELAY)
        code = self.process.poll()
        if code is not None:
            raise FatalStartupError(f"PocketBase exited during startup (code {code})")

        self._await_client(status, public_url, port, expose_admin)

        if expose_admin:
            status.health_check_passed = network.probe_health(public_url)
            if not status.health_check_passed:
                log.warning(f"Health check failed for {public_url}")

        if not self.client.is_authenticated:
            log.warning("Client is not authenticated yet; backend calls will retry authentication.")

        time.sleep(settings.SETTINGS_SYNC_DELAY)
        push_settings(self.client, config["advanced"], status)

        self.backup_manager.use_store(self.client)
        self.backup_manager.schedule()

    def build_serve_args(self, executable: Path, bind_address: str) -> List[str]:
        advanced = self.store.section("advanced")
        args = [
            str(executable),
            "serve",
            f"--http={bind_address}",
            f"--dir={advanced['data_dir']}",
            f"--publicDir={advanced['public_dir']}",
        ]
        if advanced["dev"]:
            args.append("--dev")
        if not advanced["auto_migrate"]:
            args.append("--automigrate=false")
        return args

    def _spawn(self, executable: Path, bind_address: str, public_url: str) -> None:
        args = self.build_serve_args(executable, bind_address)
        try:
            self.process = process_utils.launch_process(args, self.base_dir, settings.PROCESS_NAME, public_url)
        except OSError as e:
            raise FatalStartupError(f"Failed to start PocketBase: {e}") from e
        process_utils.watch_process_exit(self.process, settings.PROCESS_NAME)

    def _await_client(self, status: StartupStatus, public_url: str, port: int, expose_admin: bool) -> None:
        """Announces readiness and records the client's acknowledgment, or False on timeout."""
        if self.client is None:
            self.client = backend_client.BackendClient.for_port(port)

        email, password = status.generated_credentials or (
            self.store.section("superuser")["email"],
            self.store.section("superuser")["password"],
        )
        self.client.set_credentials(email, password)

        coordinator = ReadinessCoordinator()
        coordinator.subscribe(self.client.on_server_ready)
        coordinator.announce(ServerReady(url=public_url, port=port, expose_admin=expose_admin))

        ack = coordinator.wait_for_client(settings.READINESS_TIMEOUT)
        status.client_authenticated = ack.authenticated if ack is not None else False

    #* --- Shutdown ---
    def stop(self) -> bool:
        """
        Stops the supervised process. Safe to call any number of times.

        :return: True if a running process was stopped by this call.
        """
        with self._lock:
            if self.process is None or self.state in (ProcessState.STOPPED, ProcessState.STOPPING):
                return False
            self.state = ProcessState.STOPPING

        try:
            if self.backup_manager:
                self.backup_manager.cancel_schedule()

            if not self.is_running:
                log.debug("PocketBase already exited.")
                return False

            if self.client is not None:
                pull_settings(self.client, self.store)

            # psutil reaps the child; a second Popen.wait() here can deadlock
            # when a signal interrupts the main thread's own wait().
            log.info("Shutting down PocketBase...")
            if shutdown.graceful_shutdown_sequence(self.process.pid):
                log.warning("PocketBase had to be force killed.")
            return True
        finally:
            with self._lock:
                self.state = ProcessState.STOPPED

    def wait(self) -> Optional[int]:
        """Blocks until the supervised process exits. Returns its exit code."""
        if self.process is None:
            return None
        return self.process.wait()

    #* --- Termination Hooks ---
    def register_shutdown_hooks(self) -> None:
        """
        Registers stop() for interpreter exit and, when called from the main
        thread, for SIGINT and SIGTERM.
        """
        atexit.register(self.stop)
        if threading.current_thread() is not threading.main_thread():
            log.debug("Not on the main thread; signal handlers were not installed.")
            return
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        if self.state is ProcessState.STOPPING:
            # Exiting here would abort the running stop() before its forced kill.
            log.info(f"Received {signal.Signals(signum).name} while already shutting down. Please wait...")
            return
        log.info(f"Received {signal.Signals(signum).name}. Shutting down...")
        self.stop()
        sys.exit(0)
