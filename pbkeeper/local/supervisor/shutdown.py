import psutil
import logging
from typing import List, Set

from pbkeeper import settings

log = logging.getLogger(__name__)


def identify_processes_to_stop(pid: int) -> Set[psutil.Process]:
    """
    Collects the supervised process and all of its children.

    :param pid: The PID of the supervised process.
    :return: A set of psutil.Process objects to be stopped. Empty if the process is gone.
    """
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return set()

    procs: Set[psutil.Process] = {parent}
    try:
        procs.update(parent.children(recursive=True))
    except psutil.NoSuchProcess:
        log.warning(f"Process {pid} no longer exists, skipping children retrieval.")
    return procs


def _terminate_processes(processes: Set[psutil.Process]) -> None:
    """Sends SIGTERM (TerminateProcess on Windows) to all processes."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to {proc.name()} (PID {proc.pid})")
            proc.terminate()
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping termination.")
            continue


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Force killing...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


def graceful_shutdown_sequence(pid: int, timeout: float = None) -> bool:
    """
    Terminates the process tree rooted at pid: graceful signal first,
    forced kill for anything still alive after the grace window.

    :param pid: The PID of the supervised process.
    :param timeout: Grace window in seconds. Defaults to GRACEFUL_SHUTDOWN_TIMEOUT.
    :return: True if a forced kill was needed.
    """
    if timeout is None:
        timeout = settings.GRACEFUL_SHUTDOWN_TIMEOUT

    processes = identify_processes_to_stop(pid)
    if not processes:
        log.debug(f"Process {pid} already exited.")
        return False

    _terminate_processes(processes)

    procs_list = list(processes)
    try:
        _, alive = psutil.wait_procs(procs_list, timeout=timeout)
    except psutil.NoSuchProcess:
        alive = []

    _forceful_kill(alive)
    if alive:
        _, still_alive = psutil.wait_procs(alive, timeout=timeout)
        for proc in still_alive:
            log.error(f"Process {proc.pid} did not exit after kill.")
    return bool(alive)
