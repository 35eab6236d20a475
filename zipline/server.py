"""The zipper server: handshakes, connection handling and data-frame routing."""

from __future__ import annotations

import contextlib
import os
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .auth import Authentication, authenticate, get_auth
from .connection import ClientType, Connection, next_connection_id
from .connector import Connector, ConnectorClosedError
from .context import FrameContext
from .frame import (
    ConnectToFrame,
    Frame,
    FrameConn,
    FrameWriter,
    HandshakeAckFrame,
    HandshakeFrame,
    Listener,
    RejectedFrame,
)
from .metadata import WANTED_TARGET_KEY, Metadata
from .router import DefaultRouter, Router
from .version import VERSION, ConnectToError, RejectedError, VersionNegotiateFunc, default_version_negotiate
from .ylog import Logger, default_logger

_FUNCTION_DEFINITION_KEY = "function-definition"

FrameHandler = Callable[[FrameContext], None]
FrameMiddleware = Callable[[FrameHandler], FrameHandler]
ConnHandler = Callable[[Connection], None]
ConnMiddleware = Callable[[ConnHandler], ConnHandler]


@runtime_checkable
class Downstream(Protocol):
    """A frame writer that connects to another zipper."""

    @property
    def id(self) -> str: ...

    @property
    def local_name(self) -> str: ...

    @property
    def remote_name(self) -> str: ...

    def write_frame(self, frame: Frame) -> None: ...

    def close(self) -> None: ...

    def connect(self) -> None: ...


@dataclass
class _ServerOptions:
    auths: dict[str, Authentication] = field(default_factory=dict)
    logger: Logger | None = None
    connector: Connector | None = None
    router: Router | None = None
    version_negotiate: VersionNegotiateFunc | None = None
    conn_middlewares: list[ConnMiddleware] = field(default_factory=list)
    frame_middlewares: list[FrameMiddleware] = field(default_factory=list)


_Option = Callable[[_ServerOptions], None]


def with_auth(name: str, *args: str) -> _Option:
    """Option enabling the registered authentication ``name``, configured with ``args``.

    An unknown name leaves the options unchanged.
    """

    def apply(options: _ServerOptions) -> None:
        strategy = get_auth(name)
        if strategy is None:
            return
        strategy.configure(*args)
        options.auths[strategy.name] = strategy

    return apply


def reject_handshake(writer: FrameWriter, err: BaseException | None) -> BaseException | None:
    """Send a RejectedFrame carrying ``err`` and return ``err``; None sends nothing."""
    if err is not None:
        with contextlib.suppress(Exception):
            writer.write_frame(RejectedFrame(message=str(err)))
    return err


def connect_to_new_endpoint(writer: FrameWriter, err: ConnectToError | None) -> ConnectToError | None:
    """Send a ConnectToFrame for ``err`` and return ``err``; None sends nothing."""
    if err is None:
        return None
    with contextlib.suppress(Exception):
        writer.write_frame(ConnectToFrame(endpoint=err.endpoint))
    return err


def compose_frame_handler(handler: FrameHandler, *args: FrameMiddleware) -> FrameHandler:
    """Wrap ``handler`` so that the first middleware runs outermost."""
    for middleware in reversed(args):
        handler = middleware(handler)
    return handler


def compose_conn_handler(handler: ConnHandler, *args: ConnMiddleware) -> ConnHandler:
    """Wrap ``handler`` so that the first middleware runs outermost."""
    for middleware in reversed(args):
        handler = middleware(handler)
    return handler


class Server:
    """Accepts client connections and routes their data frames."""

    def __init__(
        self,
        name: str,
        *options: _Option,
        logger: Logger | None = None,
        router: Router | None = None,
        connector: Connector | None = None,
        version_negotiate: VersionNegotiateFunc | None = None,
        conn_middlewares: Iterable[ConnMiddleware] = (),
        frame_middlewares: Iterable[FrameMiddleware] = (),
    ) -> None:
        opts = _ServerOptions(
            logger=logger,
            router=router,
            connector=connector,
            version_negotiate=version_negotiate,
            conn_middlewares=list(conn_middlewares),
            frame_middlewares=list(frame_middlewares),
        )
        for option in options:
            option(opts)

        base_logger = opts.logger if opts.logger is not None else default_logger()
        self._name = name
        self._logger = base_logger.bind("service", "zipper", "zipper_name", name)
        self._auths = dict(opts.auths)
        self._router = opts.router if opts.router is not None else DefaultRouter()
        self._connector = opts.connector if opts.connector is not None else Connector()
        self._version_negotiate = opts.version_negotiate or default_version_negotiate
        self._downstreams: dict[str, Downstream] = {}
        self._lock = threading.Lock()
        self._counter = 0
        self._counter_lock = threading.Lock()
        self._closed = threading.Event()
        self._listener: Listener | None = None

        self._conn_handler = compose_conn_handler(self.handle_conn, *opts.conn_middlewares)
        self._frame_handler = compose_frame_handler(self.handle_frame, *opts.frame_middlewares)

    @property
    def name(self) -> str:
        return self._name

    @property
    def logger(self) -> Logger:
        return self._logger

    def serve(self, listener: Listener) -> None:
        """Accept connections from ``listener`` until the server is closed."""
        self._listener = listener
        for downstream in self._snapshot_downstreams():
            threading.Thread(target=self._connect_downstream, args=(downstream,), daemon=True).start()

        self._logger.info(
            "zipper is up and running", "pid", os.getpid(), "auth_name", self._auth_names()
        )
        try:
            err_count = 0
            while not self._closed.is_set():
                try:
                    fconn = listener.accept()
                except Exception as exc:  # noqa: BLE001 - accept errors are counted and logged
                    if self._closed.is_set():
                        return
                    err_count += 1
                    self._logger.error(
                        "accepted an error when accepting a connection",
                        "err", exc, "err_count", err_count,
                    )
                    continue
                threading.Thread(target=self.handle_frame_conn, args=(fconn,), daemon=True).start()
        finally:
            self._close_all()

    def _connect_downstream(self, downstream: Downstream) -> None:
        try:
            downstream.connect()
        except Exception as exc:  # noqa: BLE001
            self._logger.error("failed to connect downstream", "err", exc, "downstream_id", downstream.id)

    def handle_frame_conn(self, fconn: FrameConn) -> None:
        """Handshake a new frame connection, then serve it until it ends."""
        try:
            conn = self.handshake(fconn)
        except Exception as exc:  # noqa: BLE001 - a failed handshake only ends this connection
            self._logger.error("handshake failed", "err", exc)
            return

        with contextlib.suppress(Exception):
            fconn.write_frame(HandshakeAckFrame())

        self._conn_handler(conn)

        if conn.client_type == ClientType.STREAM_FUNCTION:
            self._router.remove(conn.id)
        with contextlib.suppress(ConnectorClosedError):
            self._connector.remove(conn.id)

    def handshake(self, fconn: FrameConn) -> Connection:
        """Read and check the client's handshake; raise if it is refused."""
        first = fconn.read_frame()
        if not isinstance(first, HandshakeFrame):
            raise reject_handshake(
                fconn,
                RejectedError(f"yomo: handshake read unexpected frame, read: {first.type}"),
            )
        hf = first

        try:
            self._version_negotiate(hf.version, VERSION)
        except ConnectToError as exc:
            raise connect_to_new_endpoint(fconn, exc) from None
        except Exception as exc:  # noqa: BLE001
            raise reject_handshake(fconn, exc) from None

        try:
            md = self._authenticate(hf)
        except Exception as exc:  # noqa: BLE001
            raise reject_handshake(fconn, exc) from None

        try:
            conn = self._create_connection(hf, md, fconn)
        except Exception as exc:  # noqa: BLE001
            raise reject_handshake(fconn, exc) from None

        if hf.function_definition is not None:
            conn.metadata.set(
                _FUNCTION_DEFINITION_KEY, bytes(hf.function_definition).decode("utf-8", errors="replace")
            )

        try:
            if hf.client_type == ClientType.STREAM_FUNCTION:
                self._router.add(conn.id, hf.observe_data_tags, conn.metadata)
        except Exception as exc:  # noqa: BLE001
            raise reject_handshake(fconn, exc) from None
        return conn

    def _authenticate(self, hf: HandshakeFrame) -> Metadata:
        try:
            return authenticate(self._auths, hf)
        except Exception as exc:
            self._logger.error(
                "authentication failed",
                "err", exc,
                "client_type", str(ClientType(hf.client_type)),
                "client_name", hf.name,
                "auth_name", hf.auth_name,
                "auth_payload", hf.auth_payload,
            )
            raise

    def _create_connection(self, hf: HandshakeFrame, md: Metadata, fconn: FrameConn) -> Connection:
        if not isinstance(md, Metadata):
            md = Metadata(md)
        if hf.wanted_target:
            md.set(WANTED_TARGET_KEY, hf.wanted_target)
        conn = Connection(
            id=next_connection_id(),
            name=hf.name,
            client_id=hf.id,
            client_type=ClientType(hf.client_type),
            metadata=md,
            observe_data_tags=list(hf.observe_data_tags),
            frame_conn=fconn,
            logger=self._logger,
        )
        self._connector.store(conn.id, conn)
        return conn

    def handle_conn(self, conn: Connection) -> None:
        """Read data frames from ``conn`` and hand each one to the frame handler."""
        conn.logger.info("new client connected", "client_type", str(conn.client_type))
        while True:
            try:
                received = conn.frame_conn.read_frame()
            except Exception as exc:  # noqa: BLE001 - a read failure ends the connection
                conn.logger.info("failed to read frame", "err", exc)
                return
            if received.type != received.frame_type.DATA:
                conn.logger.info("unexpected frame", "type", str(received.type))
                return
            try:
                ctx = FrameContext.from_frame(conn, received)
            except ValueError as exc:
                conn.logger.info("failed to new context", "err", exc)
                return
            self._frame_handler(ctx)

    def handle_frame(self, ctx: FrameContext) -> None:
        """Route a data frame to observers, then dispatch it to downstreams."""
        try:
            self._route_data_frame(ctx)
        except Exception as exc:  # noqa: BLE001
            ctx.close_with_error(f"handle dataFrame err: {exc}")
            return
        try:
            self._dispatch_to_downstreams(ctx)
        except Exception as exc:  # noqa: BLE001
            ctx.close_with_error(f"dispatch to downstream err: {exc}")

    def _route_data_frame(self, ctx: FrameContext) -> None:
        data_frame = ctx.frame
        data_length = len(data_frame.payload)

        with self._counter_lock:
            self._counter += 1

        data_frame.metadata = ctx.frame_metadata.encode()

        conn_ids = self._router.route(data_frame.tag, ctx.frame_metadata)
        if not conn_ids:
            ctx.logger.info("no observed", "tag", data_frame.tag, "data_length", data_length)
        ctx.logger.debug(
            "connector snapshot",
            "tag", data_frame.tag, "sfn_conn_ids", conn_ids, "connector", self._connector.snapshot(),
        )

        for to_id in conn_ids:
            try:
                conn = self._connector.get(to_id)
            except ConnectorClosedError:
                continue
            if conn is None:
                ctx.logger.error("can't find forward conn", "to_id", to_id)
                continue
            try:
                conn.frame_conn.write_frame(data_frame)
            except Exception as exc:  # noqa: BLE001
                ctx.logger.error(
                    "failed to route data", "err", exc,
                    "tag", data_frame.tag, "data_length", data_length, "to_id", to_id, "to_name", conn.name,
                )
            else:
                ctx.logger.info(
                    "data routing",
                    "tag", data_frame.tag, "data_length", data_length, "to_id", to_id, "to_name", conn.name,
                )

    def _dispatch_to_downstreams(self, ctx: FrameContext) -> None:
        data_frame = ctx.frame
        if ctx.connection.client_type == ClientType.UPSTREAM_ZIPPER:
            ctx.logger.debug("ignored client", "client_type", str(ctx.connection.client_type))
            return

        data_frame.metadata = ctx.frame_metadata.encode()

        for downstream in self._snapshot_downstreams():
            try:
                downstream.write_frame(data_frame)
            except Exception as exc:  # noqa: BLE001
                ctx.logger.error(
                    "failed to dispatch to downstream", "err", exc,
                    "tag", data_frame.tag, "data_length", len(data_frame.payload),
                    "downstream_id", downstream.id, "downstream_name", downstream.local_name,
                )
            else:
                ctx.logger.info(
                    "dispatching to downstream",
                    "tag", data_frame.tag, "data_length", len(data_frame.payload),
                    "downstream_id", downstream.id, "downstream_name", downstream.local_name,
                )

    def _snapshot_downstreams(self) -> list[Downstream]:
        with self._lock:
            return list(self._downstreams.values())

    def _close_all(self) -> None:
        for downstream in self._snapshot_downstreams():
            with contextlib.suppress(Exception):
                downstream.close()
        with contextlib.suppress(ConnectorClosedError):
            self._connector.close()
        if self._listener is not None:
            with contextlib.suppress(Exception):
                self._listener.close()
        self._router.release()

    def stats_functions(self) -> dict[str, str]:
        """Map connection ids to connection names."""
        return self._connector.snapshot()

    def stats_counter(self) -> int:
        """Number of data frames that have passed through the server."""
        with self._counter_lock:
            return self._counter

    def downstreams(self) -> dict[str, str]:
        """Map each downstream's local name to its id."""
        return {ds.local_name: ds.id for ds in self._snapshot_downstreams()}

    def add_downstream(self, downstream: Downstream) -> None:
        """Add a downstream; every data frame is dispatched to all downstreams."""
        with self._lock:
            self._downstreams[downstream.id] = downstream

    def close(self) -> None:
        """Stop serving; ``serve`` returns and releases its resources."""
        self._closed.set()
        if self._listener is not None:
            with contextlib.suppress(Exception):
                self._listener.close()

    def _auth_names(self) -> list[str]:
        if not self._auths:
            return ["none"]
        return [strategy.name for strategy in self._auths.values()]