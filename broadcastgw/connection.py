"""
Lifecycle of the single outbound messaging session.

The manager owns the protocol client handle and the pending QR pairing code.
Clients report what happens to the session through typed events, and
`transition` decides the next state without touching the network.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable

from .errors import InternalError, NotFound, ServiceUnavailable

logger = logging.getLogger(__name__)

LOGGED_OUT = "logged_out"
CONNECTION_LOST = "connection_lost"

# Floor for retries after a reconnect attempt itself failed.
MIN_RETRY_DELAY = 1.0


class ConnectionState(Enum):
    IDLE = "idle"
    AWAITING_PAIR = "awaiting_pair"
    CONNECTED = "connected"
    CLOSED_RECOVERABLE = "closed_recoverable"
    CLOSED_TERMINAL = "closed_terminal"


@dataclass(frozen=True)
class PairingCode:
    token: str


@dataclass(frozen=True)
class Opened:
    pass


@dataclass(frozen=True)
class Closed:
    reason: str = CONNECTION_LOST


@dataclass(frozen=True)
class Transition:
    state: ConnectionState
    pairing_code: str | None
    reconnect: bool = False


def transition(state: ConnectionState, pairing_code: str | None, event) -> Transition:
    """Return the state, pairing code and reconnect decision that follow event."""
    if state not in (ConnectionState.AWAITING_PAIR, ConnectionState.CONNECTED):
        # Nothing is open, so the event belongs to a session that is gone.
        return Transition(state, pairing_code)
    if isinstance(event, PairingCode):
        if state is ConnectionState.CONNECTED:
            return Transition(state, None)
        return Transition(ConnectionState.AWAITING_PAIR, event.token)
    if isinstance(event, Opened):
        return Transition(ConnectionState.CONNECTED, None)
    if isinstance(event, Closed):
        if event.reason == LOGGED_OUT:
            return Transition(ConnectionState.CLOSED_TERMINAL, None)
        return Transition(ConnectionState.CLOSED_RECOVERABLE, pairing_code, reconnect=True)
    raise TypeError(f"Unknown connection event: {event!r}")


class ProtocolClient:
    """Session handle the manager drives.

    `open` must return promptly and report progress through the callbacks:
    `on_update` receives PairingCode, Opened and Closed events and
    `on_credentials` receives new credential material to persist.
    """

    def open(self, on_update: Callable, on_credentials: Callable):
        raise NotImplementedError

    def send_text(self, address: str, text: str):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


class ConnectionManager:
    def __init__(
        self,
        client_factory: Callable[[str | None], ProtocolClient],
        credential_store,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
        timer_factory: Callable = threading.Timer,
    ):
        self.client_factory = client_factory
        self.credential_store = credential_store
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = ConnectionState.IDLE
        self._pairing_code = None
        self._client = None
        self._generation = 0
        self._attempts = 0
        self._timer = None

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    def start(self) -> bool:
        """Open the session unless one is already live. Returns False if it was."""
        with self._lock:
            if self._state not in (ConnectionState.IDLE, ConnectionState.CLOSED_TERMINAL):
                logger.info("Connection already started (%s)", self._state.value)
                return False
            previous = self._state
            self._attempts = 0
            try:
                self._open_session()
            except Exception as exc:
                self._state = previous
                self._client = None
                logger.exception("Failed to open messaging session")
                raise InternalError("Failed to connect") from exc
            return True

    def get_pairing_artifact(self) -> str:
        with self._lock:
            if self._state is ConnectionState.CONNECTED or not self._pairing_code:
                raise NotFound("No QR code available")
            return self._pairing_code

    def is_connected(self) -> bool:
        with self._lock:
            return self._state is ConnectionState.CONNECTED and self._client is not None

    def send_text(self, address: str, text: str):
        with self._lock:
            if not self.is_connected():
                raise ServiceUnavailable()
            client = self._client
        return client.send_text(address, text)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "state": self._state.value,
                "connected": self.is_connected(),
                "has_pairing_code": bool(self._pairing_code) and self._state is not ConnectionState.CONNECTED,
            }

    def shutdown(self):
        """Cancel any pending reconnect and close the live handle."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            client = self._client
            self._client = None
            self._generation += 1
            self._state = ConnectionState.IDLE
            self._pairing_code = None
        if client is not None:
            client.close()

    def reconnect_delay(self, attempt: int) -> float:
        if self.reconnect_base_delay <= 0:
            return 0.0
        return min(self.reconnect_max_delay, self.reconnect_base_delay * 2 ** (attempt - 1))

    def _open_session(self):
        credentials = self.credential_store.load()
        self._generation += 1
        generation = self._generation
        self._state = ConnectionState.AWAITING_PAIR
        client = self.client_factory(credentials)
        self._client = client
        client.open(
            on_update=partial(self._on_update, generation),
            on_credentials=partial(self._on_credentials, generation),
        )
        logger.info("Messaging session opened (generation %d)", generation)

    def _on_update(self, generation: int, event):
        with self._lock:
            if generation != self._generation:
                logger.debug("Ignoring %r from a superseded session", event)
                return
            previous = self._state
            result = transition(previous, self._pairing_code, event)
            self._state = result.state
            self._pairing_code = result.pairing_code

            if isinstance(event, PairingCode) and result.state is ConnectionState.AWAITING_PAIR:
                logger.info("QR code updated")
            elif result.state is ConnectionState.CONNECTED and isinstance(event, Opened):
                self._attempts = 0
                logger.info("Messaging connection open")
            elif result.state is ConnectionState.CLOSED_TERMINAL and previous is not result.state:
                self._client = None
                logger.warning("Messaging session logged out; pairing required")
                try:
                    self.credential_store.clear()
                except InternalError:
                    logger.exception("Could not clear stored credentials")
            elif result.reconnect:
                logger.warning("Messaging connection closed (%s)", event.reason)
                self._client = None
                self._schedule_reconnect()

    def _on_credentials(self, generation: int, material: str):
        with self._lock:
            if generation != self._generation:
                logger.debug("Ignoring credentials from a superseded session")
                return
            try:
                self.credential_store.save(material)
            except InternalError:
                logger.exception("Could not persist credential update")

    def _schedule_reconnect(self, allow_immediate: bool = True):
        self._attempts += 1
        delay = self.reconnect_delay(self._attempts)
        if not allow_immediate:
            delay = max(delay, MIN_RETRY_DELAY)
        generation = self._generation
        if delay <= 0:
            logger.info("Reconnecting (attempt %d)", self._attempts)
            self._reconnect(generation)
            return
        logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempts)
        timer = self.timer_factory(delay, self._reconnect, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _reconnect(self, generation: int):
        with self._lock:
            self._timer = None
            if generation != self._generation or self._state is not ConnectionState.CLOSED_RECOVERABLE:
                return
            try:
                self._open_session()
            except Exception:
                logger.exception("Reconnect attempt failed")
                self._state = ConnectionState.CLOSED_RECOVERABLE
                self._client = None
                self._schedule_reconnect(allow_immediate=False)
