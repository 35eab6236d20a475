"""Per-frame context handed to the server's frame handlers."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from .connection import Connection, get_tid
from .frame import DataFrame
from .metadata import Metadata
from .ylog import Logger


@dataclass(eq=False)
class FrameContext:
    """Holds a data frame, its merged metadata and handler-scoped values.

    The context lives as long as the frame it was made for.
    """

    connection: Connection
    frame: DataFrame
    frame_metadata: Metadata
    logger: Logger
    keys: dict[str, Any] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    @classmethod
    def from_frame(cls, connection: Connection, data_frame: DataFrame) -> FrameContext:
        """Decode the frame metadata and merge the connection's metadata into it.

        Raises ValueError if the frame metadata cannot be decoded.
        """
        fmd = Metadata.decode(data_frame.metadata)
        for key, value in (connection.metadata or {}).items():
            fmd.set(key, value)
        logger = connection.logger.bind("tid", get_tid(fmd))
        return cls(connection=connection, frame=data_frame, frame_metadata=fmd, logger=logger)

    def set(self, key: str, value: Any) -> None:
        """Store a value for the lifetime of this context."""
        with self._lock:
            self.keys[key] = value

    def get(self, key: str) -> Any:
        """Return the value stored for ``key``; raise KeyError if absent."""
        with self._lock:
            return self.keys[key]

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self.keys

    def close_with_error(self, message: str) -> None:
        """Close the underlying connection with an error message."""
        self.logger.debug("connection closed", "err", message)
        try:
            self.connection.frame_conn.close_with_error(message)
        except Exception as exc:  # noqa: BLE001 - failures are logged, not raised
            self.logger.error("connection close failed", "err", exc)