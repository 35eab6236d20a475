"""Contexts handed to stream-function handlers, and the handler signatures."""

from __future__ import annotations

import queue
from collections.abc import Callable

from .frame import DataFrame, FrameWriter, check_reserved_tag
from .metadata import TARGET_KEY, Metadata


class ServerlessContext:
    """Context of a stream-function handler invoked for one data frame."""

    def __init__(self, writer: FrameWriter, tag: int, md: Metadata, data: bytes) -> None:
        self._writer = writer
        self._tag = tag
        self._md = md if isinstance(md, Metadata) else Metadata(md)
        self._data = data

    @property
    def tag(self) -> int:
        """Tag of the incoming data frame."""
        return self._tag

    @property
    def data(self) -> bytes:
        """Payload of the incoming data frame."""
        return self._data

    def get_metadata(self, key: str) -> str | None:
        """Return the metadata value for ``key``, or None."""
        return self._md.get(key)

    def write(self, tag: int, data: bytes | None) -> None:
        """Write ``data`` under ``tag``, carrying this frame's metadata.

        Writing None does nothing; a reserved tag raises ReservedTagError.
        """
        if data is None:
            return
        check_reserved_tag(tag)
        self._writer.write_frame(DataFrame(metadata=self._md.encode(), tag=tag, payload=data))

    def write_with_target(self, tag: int, data: bytes | None, target: str) -> None:
        """Like write, but route only to functions that want ``target``."""
        if data is None:
            return
        check_reserved_tag(tag)
        if target:
            self._md.set(TARGET_KEY, target)
        self._writer.write_frame(DataFrame(metadata=self._md.encode(), tag=tag, payload=data))


class CronContext:
    """Context of a stream-function handler invoked on a schedule."""

    def __init__(self, writer: FrameWriter, md: Metadata) -> None:
        self._writer = writer
        self._md = md if isinstance(md, Metadata) else Metadata(md)
        self._md_bytes = self._md.encode()

    def write(self, tag: int, data: bytes | None) -> None:
        """Write ``data`` under ``tag`` with the metadata fixed at creation."""
        if data is None:
            return
        check_reserved_tag(tag)
        self._writer.write_frame(DataFrame(metadata=self._md_bytes, tag=tag, payload=data))

    def write_with_target(self, tag: int, data: bytes | None, target: str) -> None:
        """Write ``data`` to the functions that want ``target``; an empty target writes plainly."""
        if data is None:
            return
        check_reserved_tag(tag)
        if not target:
            self.write(tag, data)
            return
        self._md.set(TARGET_KEY, target)
        self._writer.write_frame(DataFrame(metadata=self._md.encode(), tag=tag, payload=data))


CronHandler = Callable[[CronContext], None]
"""Handler run on a schedule."""

AsyncHandler = Callable[[ServerlessContext], None]
"""Handler run once for each incoming data frame."""

PipeHandler = Callable[["queue.Queue[bytes]", "queue.Queue[DataFrame]"], None]
"""Handler that reads payloads from one queue and puts data frames on another."""