import asyncio
import logging
import socket
import threading
import time
from typing import Optional, Set

from .metrics import graphite_connected, graphite_reconnects, samples_dropped

logger = logging.getLogger(__name__)

CONNECTED = "connected"
BROKEN = "broken"


class GraphiteForwarder:
    """
    Single carbon plaintext connection shared by every broker session.

    send() is called from the paho network threads and probe() from the probe
    worker, so every use of the socket happens under one lock. A reconnect
    swaps the socket under that lock and closes the old one.
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout: float = 5.0,
        ping_metric: str = "ping metric",
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.ping_metric = ping_metric
        self._lock = threading.Lock()
        self._sock: Optional[socket.socket] = None
        self._state = BROKEN

    @property
    def state(self) -> str:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == CONNECTED

    def connect(self) -> None:
        """
        Open a fresh connection. Raises OSError if Graphite is unreachable.
        """
        sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        with self._lock:
            old, self._sock = self._sock, sock
            self._set_state(CONNECTED)
        if old is not None:
            _close_quietly(old)
        logger.debug("Connected to graphite at %s:%s", self.host, self.port)

    def send(self, path: str, value: str, record_drop: bool = True) -> bool:
        """
        Write one sample. record_drop=False keeps a failed write out of the
        dropped samples counter.
        """
        line = f"{path} {value} {int(time.time())}\n".encode("utf-8")
        with self._lock:
            sock = self._sock
            if sock is None:
                logger.debug("Error sending metric %s: not connected", path)
                if record_drop:
                    samples_dropped.labels(reason="send_failed").inc()
                return False
            try:
                sock.sendall(line)
            except OSError as exc:
                logger.debug("Error sending metric %s: %s", path, exc)
                if record_drop:
                    samples_dropped.labels(reason="send_failed").inc()
                self._sock = None
                self._set_state(BROKEN)
                _close_quietly(sock)
                return False
        return True

    def probe(self) -> bool:
        """
        Send the ping metric; reconnect if it fails. Returns True when the
        connection is usable afterwards.
        """
        # Graphite has no protocol level no-op, so the ping is a real sample.
        if self.send(self.ping_metric, "", record_drop=False):
            return True

        logger.warning("Ping metric failed, trying to reconnect")
        try:
            self.connect()
        except OSError as exc:
            logger.error("Reconnecting to graphite failed: %s", exc)
            graphite_reconnects.labels(outcome="failure").inc()
            return False
        logger.info("Reconnected to graphite")
        graphite_reconnects.labels(outcome="success").inc()
        return True

    def close(self) -> None:
        with self._lock:
            sock, self._sock = self._sock, None
            self._set_state(BROKEN)
        if sock is not None:
            _close_quietly(sock)

    def _set_state(self, state: str) -> None:
        if state != self._state:
            logger.debug("Graphite connection %s -> %s", self._state, state)
        self._state = state
        graphite_connected.set(1 if state == CONNECTED else 0)


def _close_quietly(sock: socket.socket) -> None:
    try:
        sock.close()
    except OSError as exc:  # pragma: no cover - nothing left to do with it
        logger.debug("Error closing graphite socket: %s", exc)


async def _probe_once(forwarder: GraphiteForwarder) -> None:
    try:
        await asyncio.to_thread(forwarder.probe)
    except Exception as exc:  # pragma: no cover - resilient background job
        logger.warning("Graphite probe failed: %s", exc)


async def probe_worker(forwarder: GraphiteForwarder, interval_seconds: float) -> None:
    """
    Probe Graphite every interval_seconds on a fixed schedule.

    Each probe runs in its own task, so a probe stuck on a silent backend
    never delays the next tick.
    """
    loop = asyncio.get_running_loop()
    running: Set[asyncio.Task] = set()
    next_tick = loop.time() + interval_seconds
    while True:
        try:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
        except asyncio.CancelledError:
            break
        next_tick += interval_seconds
        task = asyncio.create_task(_probe_once(forwarder))
        running.add(task)
        task.add_done_callback(running.discard)
        # ticks missed while the event loop was busy are skipped
        while next_tick < loop.time():
            next_tick += interval_seconds
    for task in list(running):
        task.cancel()
