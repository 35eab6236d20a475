"""Spec version and version negotiation."""

from __future__ import annotations

from typing import Callable

VERSION = "2024-01-03"

VersionNegotiateFunc = Callable[[str, str], None]


class RejectedError(Exception):
    """The server rejects the connection."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __eq__(self, other: object) -> bool:
        return isinstance(other, RejectedError) and other.message == self.message

    def __hash__(self) -> int:
        return hash((RejectedError, self.message))


class ConnectToError(Exception):
    """The client should connect to another endpoint."""

    def __init__(self, endpoint: str) -> None:
        super().__init__(endpoint)
        self.endpoint = endpoint

    def __str__(self) -> str:
        return f"connect to {self.endpoint}"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ConnectToError) and other.endpoint == self.endpoint

    def __hash__(self) -> int:
        return hash((ConnectToError, self.endpoint))


def default_version_negotiate(client_version: str, server_version: str) -> None:
    """Raise RejectedError unless both versions are equal."""
    if client_version != server_version:
        raise RejectedError(
            f"version negotiation failed: client={client_version}, server={server_version}"
        )