"""Connections held by the server, client types and working metadata."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum

from .frame import FrameConn
from .metadata import SOURCE_ID_KEY, TARGET_KEY, TID_KEY, Metadata
from .ylog import Logger, default_logger


class ClientType(IntEnum):
    """Kind of client on a connection."""

    SOURCE = 0x5F
    UPSTREAM_ZIPPER = 0x5E
    STREAM_FUNCTION = 0x5D

    @classmethod
    def _missing_(cls, value: object) -> ClientType | None:
        if isinstance(value, int) and 0 <= value <= 0xFF:
            member = int.__new__(cls, value)
            member._name_ = "UNKNOWN"
            member._value_ = value
            return member
        return None

    def __str__(self) -> str:
        return _CLIENT_TYPE_NAMES.get(self, "Unknown")


_CLIENT_TYPE_NAMES = {
    ClientType.SOURCE: "Source",
    ClientType.UPSTREAM_ZIPPER: "UpstreamZipper",
    ClientType.STREAM_FUNCTION: "StreamFunction",
}


_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def next_connection_id() -> int:
    """Return the next server-wide connection id."""
    with _id_lock:
        return next(_id_counter)


@dataclass(eq=False)
class Connection:
    """A client connection managed by the connector."""

    id: int
    name: str
    client_id: str
    client_type: ClientType
    metadata: Metadata | None = None
    observe_data_tags: list[int] = field(default_factory=list)
    frame_conn: FrameConn | None = None
    logger: Logger | None = None

    def __post_init__(self) -> None:
        self.client_type = ClientType(self.client_type)
        if self.metadata is None:
            self.metadata = Metadata()
        elif not isinstance(self.metadata, Metadata):
            self.metadata = Metadata(self.metadata)
        base = self.logger if self.logger is not None else default_logger()
        self.logger = base.bind("conn_id", self.client_id, "conn_name", self.name)


def new_yomo_metadata(source_id: str, tid: str) -> Metadata:
    """Metadata carrying the source id and transaction id."""
    return Metadata({SOURCE_ID_KEY: source_id, TID_KEY: tid})


def get_tid(md: Mapping[str, str]) -> str:
    """Return the transaction id, or an empty string."""
    return md.get(TID_KEY, "")


def set_metadata_target(md: Metadata, target: str) -> None:
    """Set the routing target in ``md``."""
    md.set(TARGET_KEY, target)