"""Routing of data frames to stream-function connections."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping

from .metadata import TARGET_KEY, WANTED_TARGET_KEY


class Router(ABC):
    """Decides which connections receive a data frame."""

    @abstractmethod
    def add(self, conn_id: int, observe_data_tags: Iterable[int], md: Mapping[str, str]) -> None:
        """Add a route rule for a connection."""

    @abstractmethod
    def route(self, data_tag: int, md: Mapping[str, str] | None) -> list[int]:
        """Return the connection ids the frame goes to."""

    @abstractmethod
    def remove(self, conn_id: int) -> None:
        """Remove the rules of a connection."""

    @abstractmethod
    def release(self) -> None:
        """Remove all rules."""


class DefaultRouter(Router):
    """Routes by observed tag, honouring a target set in the frame metadata."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._targets: dict[int, str] = {}
        self._data: dict[int, dict[int, None]] = {}

    def add(self, conn_id: int, observe_data_tags: Iterable[int], md: Mapping[str, str]) -> None:
        with self._lock:
            if md is not None and WANTED_TARGET_KEY in md:
                self._targets[conn_id] = md[WANTED_TARGET_KEY]
            for tag in observe_data_tags:
                self._data.setdefault(tag, {})[conn_id] = None

    def route(self, data_tag: int, md: Mapping[str, str] | None) -> list[int]:
        with self._lock:
            conns = self._data.get(data_tag, {})
            if md is None or TARGET_KEY not in md:
                return list(conns)
            target = md[TARGET_KEY]
            return [cid for cid in conns if self._targets.get(cid) == target and cid in self._targets]

    def remove(self, conn_id: int) -> None:
        with self._lock:
            self._targets.pop(conn_id, None)
            for conns in self._data.values():
                conns.pop(conn_id, None)

    def release(self) -> None:
        with self._lock:
            self._targets.clear()
            self._data.clear()