"""String key/value metadata carried by connections and data frames."""

from __future__ import annotations

from collections.abc import Mapping

import msgpack

SOURCE_ID_KEY = "yomo-source-id"
TID_KEY = "yomo-tid"
TRACE_ID_KEY = "yomo-trace-id"
SPAN_ID_KEY = "yomo-span-id"
TARGET_KEY = "yomo-target"
WANTED_TARGET_KEY = "yomo-wanted-target"


class Metadata(dict):
    """A dict of strings with msgpack encoding."""

    def set(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``; an empty key is ignored."""
        if not key:
            return
        self[key] = value

    def clone(self) -> Metadata:
        clone = Metadata()
        for key, value in self.items():
            clone.set(key, value)
        return clone

    def encode(self) -> bytes:
        """Encode as msgpack; an empty mapping encodes to no bytes."""
        if not self:
            return b""
        return msgpack.packb(dict(self), use_bin_type=True)

    @classmethod
    def decode(cls, data: bytes | None) -> Metadata:
        """Decode msgpack bytes; empty input yields empty metadata."""
        if not data:
            return cls()
        try:
            value = msgpack.unpackb(data, raw=False)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"metadata: cannot decode: {exc}") from exc
        if not isinstance(value, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in value.items()
        ):
            raise ValueError("metadata: encoded value is not a map of strings")
        return cls(value)


def new_metadata(*args: Mapping[str, str]) -> Metadata:
    """Merge the given mappings into a new Metadata, later ones winning."""
    md = Metadata()
    for mapping in args:
        for key, value in mapping.items():
            md.set(key, value)
    return md