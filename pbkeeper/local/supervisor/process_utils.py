import re
import sys
import logging
import threading
import subprocess
from collections import namedtuple
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pbkeeper import settings

log = logging.getLogger(__name__)

# code is None when the command was killed for exceeding its timeout.
CommandResult = namedtuple('CommandResult', ['code', 'stdout', 'stderr'])

WILDCARD_URL_PATTERN = re.compile(r"http://0\.0\.0\.0:\d+")


#* --- Platform ---
def get_os_name() -> Optional[str]:
    """Returns 'windows' or 'linux', or None on an unsupported platform."""
    if sys.platform == "win32":
        return "windows"
    if sys.platform.startswith("linux"):
        return "linux"
    return None

def get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific keyword arguments for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}

def _decode(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


#* --- One-shot Subcommands ---
def run_command(args: List[str], cwd: Path, timeout: float) -> CommandResult:
    """
    Runs a subcommand to completion, bounded by a timeout.
    Failures are returned as a CommandResult instead of raised.

    :param args: The full command line.
    :param cwd: The working directory.
    :param timeout: Seconds before the command is killed.
    :return: CommandResult(code, stdout, stderr). code is -1 if the command could not be started.
    """
    log.debug(f"Running command: {' '.join(str(a) for a in args[:3])} ... (timeout {timeout}s)")
    try:
        completed = subprocess.run(
            [str(a) for a in args],
            cwd=str(cwd),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout,
            check=False,
            **({"creationflags": subprocess.CREATE_NO_WINDOW} if sys.platform == "win32" else {}),
        )
        return CommandResult(completed.returncode, _decode(completed.stdout), _decode(completed.stderr))
    except subprocess.TimeoutExpired as e:
        log.warning(f"Command '{Path(str(args[0])).name} {args[1] if len(args) > 1 else ''}' timed out after {timeout}s")
        return CommandResult(None, _decode(e.stdout), _decode(e.stderr))
    except OSError as e:
        return CommandResult(-1, "", str(e))


#* --- Output Filtering ---
def rewrite_wildcard_urls(line: str, public_url: str) -> str:
    """Replaces http://0.0.0.0:<port> URLs with the advertised public URL."""
    return WILDCARD_URL_PATTERN.sub(public_url, line)

def is_suppressed_line(line: str) -> bool:
    """True for banner and first-run setup lines printed by the wrapped binary."""
    if line.startswith(settings.SUPPRESSED_OUTPUT_PREFIXES):
        return True
    return any(marker in line for marker in settings.SUPPRESSED_OUTPUT_CONTAINS)

def make_output_filter(public_url: str, process_name: str, level: int) -> Callable[[str], None]:
    """
    Builds a line handler that rewrites wildcard URLs, drops suppressed lines
    and logs the rest to the 'proc.<process_name>' logger.
    """
    proc_logger = logging.getLogger(f"proc.{process_name}")

    def handle_line(line: str) -> None:
        line = rewrite_wildcard_urls(line, public_url)
        if is_suppressed_line(line):
            return
        proc_logger.log(level, line)

    return handle_line


#* --- Output Pumping ---
def _read_pipe(pipe, process_name: str, line_handler: Callable[[str], None]):
    """Target function for reader threads. Feeds each non-empty line to the handler."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            try:
                line_handler(line)
            except Exception as e:
                proc_logger.error(f"Error in line handler: {e}", exc_info=True)
    except Exception as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def log_process_output(
    process: subprocess.Popen,
    process_name: str,
    stdout_handler: Callable[[str], None],
    stderr_handler: Callable[[str], None],
) -> None:
    """
    Starts background daemon threads to consume a process's stdout/stderr,
    so the pipes never fill up and block the child.
    """
    if process.stdout:
        threading.Thread(
            target=_read_pipe,
            args=(process.stdout, process_name, stdout_handler),
            daemon=True,
            name=f"{process_name}-stdout",
        ).start()
    if process.stderr:
        threading.Thread(
            target=_read_pipe,
            args=(process.stderr, process_name, stderr_handler),
            daemon=True,
            name=f"{process_name}-stderr",
        ).start()


#* --- Process Creation ---
def launch_process(args: List[str], cwd: Path, process_name: str, public_url: str) -> subprocess.Popen:
    """
    Launches the long-running server process with filtered output logging.

    :raises OSError: If the executable cannot be started.
    """
    log.info(f"Starting process: {process_name}...")
    p = subprocess.Popen(
        [str(a) for a in args],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=str(cwd),
        **get_popen_creation_flags(),
    )
    log_process_output(
        p,
        process_name,
        stdout_handler=make_output_filter(public_url, process_name, logging.DEBUG),
        stderr_handler=make_output_filter(public_url, process_name, logging.WARNING),
    )
    log.info(f"{process_name.capitalize()} started with PID: {p.pid}")
    return p

def watch_process_exit(process: subprocess.Popen, process_name: str) -> threading.Thread:
    """Starts a daemon thread that logs the exit of the process."""
    def _wait():
        code = process.wait()
        # Negative codes mean the process was stopped by a signal.
        if code > 0:
            log.error(f"{process_name.capitalize()} exited with code {code}")
        else:
            log.info(f"{process_name.capitalize()} stopped")

    thread = threading.Thread(target=_wait, daemon=True, name=f"{process_name}-exit-watcher")
    thread.start()
    return thread
