# Loopback listener - owns the single TCP listener of an authorization session.
# Created: 2026-10-04
#
# The handle is guarded by a threading.Lock so acquire() and release() can
# be called from the event loop and from a UI thread (cancel) alike. The
# lock is only held while binding or closing, never while waiting.

from __future__ import annotations

import logging
import os
import socket
import threading
from collections.abc import Iterable

from melodex.auth.errors import NoPortAvailableError

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
_BACKLOG = 8


class BoundListener:
    """A non-blocking listening socket bound to one loopback port."""

    def __init__(self, sock: socket.socket, host: str, port: int) -> None:
        self._sock = sock
        self.host = host
        self.port = port
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accept_nowait(self) -> socket.socket | None:
        """Return a pending connection, or None if there is none yet.

        Raises OSError if the socket was closed underneath us.
        """
        try:
            conn, _ = self._sock.accept()
        except (BlockingIOError, InterruptedError):
            return None
        return conn

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._sock.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<BoundListener {self.host}:{self.port} {state}>"


def _bind(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        if os.name != "nt":
            # Lets a new attempt rebind while an old callback connection sits in TIME_WAIT.
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(_BACKLOG)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class LoopbackListenerManager:
    """At most one bound listener at a time.

    ``acquire`` closes whatever this manager held before binding anew, so
    repeated attempts never leak ports. ``release`` is idempotent.
    """

    def __init__(self, host: str = LOOPBACK_HOST) -> None:
        self.host = host
        self._lock = threading.Lock()
        self._listener: BoundListener | None = None

    @property
    def current(self) -> BoundListener | None:
        with self._lock:
            return self._listener

    @property
    def bound_port(self) -> int | None:
        listener = self.current
        return listener.port if listener else None

    def acquire(self, candidate_ports: Iterable[int]) -> tuple[BoundListener, int]:
        """Bind the first free port from ``candidate_ports`` (in order).

        Raises:
            NoPortAvailableError: every candidate was taken. Nothing stays bound.
        """
        ports = list(candidate_ports)
        with self._lock:
            self._close_locked()
            for port in ports:
                try:
                    sock = _bind(self.host, port)
                except OSError as e:
                    logger.debug("Cannot bind %s:%d: %s", self.host, port, e)
                    continue
                self._listener = BoundListener(sock, self.host, port)
                logger.debug("Loopback listener bound on %s:%d", self.host, port)
                return self._listener, port
        raise NoPortAvailableError(ports)

    def release(self, listener: BoundListener | None = None) -> None:
        """Close the held listener.

        With ``listener`` given, only closes it if it is still the one held,
        so a finished attempt cannot tear down its successor's listener.
        """
        with self._lock:
            if listener is not None and listener is not self._listener:
                listener.close()
                return
            self._close_locked()

    def _close_locked(self) -> None:
        if self._listener is None:
            return
        logger.debug("Releasing loopback listener on port %d", self._listener.port)
        self._listener.close()
        self._listener = None
