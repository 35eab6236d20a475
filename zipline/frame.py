"""Frames exchanged between clients and the zipper, and the interfaces that carry them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Protocol, runtime_checkable


class FrameType(IntEnum):
    """Wire identifier of a frame."""

    DATA = 0x3F
    HANDSHAKE = 0x31
    HANDSHAKE_ACK = 0x29
    REJECTED = 0x39
    GOAWAY = 0x2E
    CONNECT_TO = 0x3E

    def __str__(self) -> str:
        return _FRAME_TYPE_NAMES.get(self, "UnknownFrame")


_FRAME_TYPE_NAMES = {
    FrameType.DATA: "DataFrame",
    FrameType.HANDSHAKE: "HandshakeFrame",
    FrameType.HANDSHAKE_ACK: "HandshakeAckFrame",
    FrameType.REJECTED: "RejectedFrame",
    FrameType.GOAWAY: "GoawayFrame",
    FrameType.CONNECT_TO: "ConnectToFrame",
}


class Frame:
    """Base of every frame; subclasses fix ``frame_type``."""

    frame_type: ClassVar[FrameType]

    @property
    def type(self) -> FrameType:
        return self.frame_type


@dataclass
class DataFrame(Frame):
    """Tagged payload plus msgpack-encoded metadata."""

    frame_type: ClassVar[FrameType] = FrameType.DATA

    metadata: bytes = b""
    tag: int = 0
    payload: bytes = b""


@dataclass
class HandshakeFrame(Frame):
    """Sent by a client to obtain a connection from the server."""

    frame_type: ClassVar[FrameType] = FrameType.HANDSHAKE

    name: str = ""
    id: str = ""
    client_type: int = 0
    observe_data_tags: list[int] = field(default_factory=list)
    auth_name: str = ""
    auth_payload: str = ""
    version: str = ""
    function_definition: bytes | None = None
    wanted_target: str = ""


@dataclass
class HandshakeAckFrame(Frame):
    """Acknowledges a successful handshake."""

    frame_type: ClassVar[FrameType] = FrameType.HANDSHAKE_ACK


@dataclass
class RejectedFrame(Frame):
    """Rejects a client request."""

    frame_type: ClassVar[FrameType] = FrameType.REJECTED

    message: str = ""


@dataclass
class GoawayFrame(Frame):
    """Evicts a connection."""

    frame_type: ClassVar[FrameType] = FrameType.GOAWAY

    message: str = ""


@dataclass
class ConnectToFrame(Frame):
    """Tells a client to connect to another endpoint."""

    frame_type: ClassVar[FrameType] = FrameType.CONNECT_TO

    endpoint: str = ""


_FRAME_CLASSES: dict[FrameType, type[Frame]] = {
    FrameType.DATA: DataFrame,
    FrameType.HANDSHAKE: HandshakeFrame,
    FrameType.HANDSHAKE_ACK: HandshakeAckFrame,
    FrameType.REJECTED: RejectedFrame,
    FrameType.GOAWAY: GoawayFrame,
    FrameType.CONNECT_TO: ConnectToFrame,
}


def new_frame(frame_type: int) -> Frame:
    """Create an empty frame of the given type."""
    try:
        kind = FrameType(frame_type)
    except ValueError:
        raise ValueError(f"frame: cannot new a frame from {chr(frame_type)}") from None
    return _FRAME_CLASSES[kind]()


class ReservedTagError(ValueError):
    """Raised when a tag in the reserved range is written."""

    def __init__(self) -> None:
        super().__init__("[0xF000, 0xFFFF] is reserved; please do not write within this range")


def check_reserved_tag(tag: int) -> None:
    """Raise ReservedTagError if ``tag`` lies in [0xF000, 0xFFFF]."""
    if 0xF000 <= tag <= 0xFFFF:
        raise ReservedTagError()


class ConnClosedError(Exception):
    """The connection was closed by the remote or the local side."""

    def __init__(self, remote: bool, error_message: str) -> None:
        self.remote = remote
        self.error_message = error_message
        side = "remote" if remote else "local"
        super().__init__(f"{side} conn closed: {error_message}")


@runtime_checkable
class FrameWriter(Protocol):
    """Anything frames can be written to."""

    def write_frame(self, frame: Frame) -> None: ...


@runtime_checkable
class FrameConn(Protocol):
    """A connection that transmits frames."""

    def write_frame(self, frame: Frame) -> None: ...

    def read_frame(self) -> Frame: ...

    def remote_addr(self) -> str: ...

    def local_addr(self) -> str: ...

    def close_with_error(self, message: str) -> None: ...


@runtime_checkable
class Listener(Protocol):
    """Accepts frame connections."""

    def accept(self) -> FrameConn: ...

    def close(self) -> None: ...