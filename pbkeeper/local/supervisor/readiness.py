"""
Readiness handshake between the supervisor and the authenticating client.

The supervisor announces a ServerReady event once the process has settled.
The subscribed client authenticates (with retry-with-backoff) and answers with
a ClientReady acknowledgment. The supervisor waits for that answer for a
bounded time only; a slow or failed client degrades the reported status but
never blocks the server.
"""
import time
import logging
import threading
from collections import namedtuple
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

ServerReady = namedtuple('ServerReady', ['url', 'port', 'expose_admin'])
ClientReady = namedtuple('ClientReady', ['authenticated'])


def retry_with_backoff(
    fn: Callable[[], Any],
    max_attempts: int = 10,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    sleep: Optional[Callable[[float], None]] = None,
) -> Any:
    """
    Calls fn until it succeeds, sleeping between attempts with exponential backoff.

    The delay after attempt k is min(base_delay * 2**(k-1), max_delay).

    :return: The result of the first successful call.
    :raises Exception: The last exception if every attempt failed.
    """
    sleep = sleep or time.sleep
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except Exception as e:
            last_error = e
            if attempt < max_attempts:
                delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                log.debug(f"Attempt {attempt}/{max_attempts} failed: {e}. Retrying in {delay:.2f}s...")
                sleep(delay)
    raise last_error


class ReadinessCoordinator:
    """
    Single-slot rendezvous for one startup attempt.

    `announce` may be called once; it hands the event to the subscribed
    listener on a daemon thread. The first `acknowledge` fills the slot,
    later ones are ignored.
    """

    def __init__(self) -> None:
        self._listener: Optional[Callable[[ServerReady, "ReadinessCoordinator"], None]] = None
        self._announced: Optional[ServerReady] = None
        self._ack: Optional[ClientReady] = None
        self._ack_received = threading.Event()
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[[ServerReady, "ReadinessCoordinator"], None]) -> None:
        """Registers the client that reacts to the server-ready event."""
        self._listener = listener

    def announce(self, event: ServerReady) -> None:
        """
        Emits the server-ready event to the subscribed listener.

        :raises RuntimeError: If called more than once.
        """
        with self._lock:
            if self._announced is not None:
                raise RuntimeError("Server-ready has already been announced for this attempt.")
            self._announced = event

        log.debug(f"Server ready at {event.url} (port {event.port}, exposed={event.expose_admin})")
        if self._listener is None:
            log.debug("No readiness listener subscribed.")
            return

        threading.Thread(
            target=self._run_listener,
            args=(event,),
            daemon=True,
            name="ReadinessHandshakeThread",
        ).start()

    def _run_listener(self, event: ServerReady) -> None:
        try:
            self._listener(event, self)
        except Exception as e:
            log.error(f"Readiness listener failed: {e}", exc_info=True)
            self.acknowledge(ClientReady(authenticated=False))

    def acknowledge(self, ack: ClientReady) -> bool:
        """
        Fills the acknowledgment slot.

        :return: True if this acknowledgment was accepted, False if the slot was already taken.
        """
        with self._lock:
            if self._ack is not None:
                log.debug("Duplicate client-ready acknowledgment ignored.")
                return False
            self._ack = ack
        self._ack_received.set()
        return True

    def wait_for_client(self, timeout: float) -> Optional[ClientReady]:
        """
        Blocks until the client acknowledges or the timeout elapses.

        :return: The acknowledgment, or None on timeout.
        """
        if self._ack_received.wait(timeout):
            return self._ack
        log.debug(f"No client-ready acknowledgment within {timeout}s.")
        return None
