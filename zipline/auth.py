"""Authentication of client handshakes, with a registry of named strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

from .frame import HandshakeFrame
from .metadata import Metadata


class AuthenticationError(Exception):
    """A client's credential was not accepted."""


class Authentication(ABC):
    """A server-side authentication strategy."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name under which the strategy is registered."""

    @abstractmethod
    def configure(self, *args: str) -> None:
        """Initialise the strategy with its arguments."""

    @abstractmethod
    def authenticate(self, payload: str) -> Metadata:
        """Check a credential payload; raise AuthenticationError if it is refused."""


class TokenAuth(Authentication):
    """Accepts clients whose payload equals a configured token."""

    def __init__(self) -> None:
        self._token = ""

    @property
    def name(self) -> str:
        return "token"

    def configure(self, *args: str) -> None:
        if args:
            self._token = args[0]

    def authenticate(self, payload: str) -> Metadata:
        if self._token == payload:
            return Metadata()
        raise AuthenticationError(f"invalid token: {payload}")


@dataclass(frozen=True)
class Credential:
    """A client credential: strategy name and payload."""

    name: str = "none"
    payload: str = ""

    @classmethod
    def from_payload(cls, payload: str) -> Credential:
        """Split ``name:payload``; without a colon the credential is ``none``."""
        name, sep, rest = payload.partition(":")
        if not sep:
            return cls(name="none", payload="")
        return cls(name=name, payload=rest)


_registry: dict[str, Authentication] = {}


def register(authentication: Authentication) -> None:
    """Register a strategy under its name, replacing any previous one."""
    _registry[authentication.name] = authentication


def get_auth(name: str) -> Authentication | None:
    """Return the registered strategy called ``name``, or None."""
    return _registry.get(name)


def authenticate(
    auths: Mapping[str, Authentication] | None, handshake: HandshakeFrame | None
) -> Metadata:
    """Authenticate a handshake against ``auths``.

    With no strategies configured every client is accepted.
    """
    if not auths:
        return Metadata()
    if handshake is None:
        raise AuthenticationError("handshake frame cannot be nil")
    strategy = auths.get(handshake.auth_name)
    if strategy is None:
        raise AuthenticationError("authentication not found: " + handshake.auth_name)
    return strategy.authenticate(handshake.auth_payload)


register(TokenAuth())