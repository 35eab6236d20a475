"""Registry of live connections, keyed by server-assigned connection id."""

from __future__ import annotations

import threading
from collections.abc import Callable

from .connection import Connection


class ConnectorClosedError(RuntimeError):
    """The connector has been closed and can no longer be used."""

    def __init__(self) -> None:
        super().__init__("yomo: connector closed")


FindConnectionFunc = Callable[[Connection], bool]


class Connector:
    """Stores connections and finds them by id or predicate."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connections: dict[int, Connection] = {}
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectorClosedError()

    def store(self, conn_id: int, conn: Connection) -> None:
        """Store ``conn`` under ``conn_id``, replacing any older one."""
        with self._lock:
            self._ensure_open()
            self._connections[conn_id] = conn

    def remove(self, conn_id: int) -> None:
        """Remove the connection with ``conn_id``; a missing id is ignored."""
        with self._lock:
            self._ensure_open()
            self._connections.pop(conn_id, None)

    def get(self, conn_id: int) -> Connection | None:
        """Return the connection with ``conn_id``, or None if there is none."""
        with self._lock:
            self._ensure_open()
            return self._connections.get(conn_id)

    def find(self, predicate: FindConnectionFunc) -> list[Connection]:
        """Return every stored connection for which ``predicate`` is true."""
        with self._lock:
            self._ensure_open()
            candidates = list(self._connections.values())
        return [conn for conn in candidates if predicate(conn)]

    def close(self) -> None:
        """Drop all connections; closing twice raises ConnectorClosedError."""
        with self._lock:
            self._ensure_open()
            self._closed = True
            self._connections.clear()

    def snapshot(self) -> dict[str, str]:
        """Map each connection id, as a decimal string, to the connection name."""
        with self._lock:
            return {str(conn_id): conn.name for conn_id, conn in self._connections.items()}