import threading

import pytest

from zipline.auth import AuthenticationError
from zipline.connection import ClientType, new_yomo_metadata
from zipline.frame import (
    ConnClosedError,
    ConnectToFrame,
    DataFrame,
    HandshakeAckFrame,
    HandshakeFrame,
    RejectedFrame,
)
from zipline.metadata import TARGET_KEY, WANTED_TARGET_KEY, Metadata, new_metadata
from zipline.router import DefaultRouter
from zipline.server import (
    Server,
    compose_conn_handler,
    compose_frame_handler,
    connect_to_new_endpoint,
    reject_handshake,
    with_auth,
)
from zipline.version import VERSION, ConnectToError, RejectedError
from zipline.ylog import LogConfig, new_logger


class FakeConn:
    def __init__(self, *frames):
        self.incoming = list(frames)
        self.written = []
        self.closed_with = None

    def write_frame(self, frame):
        self.written.append(frame)

    def read_frame(self):
        if not self.incoming:
            raise ConnClosedError(True, "eof")
        return self.incoming.pop(0)

    def remote_addr(self):
        return "127.0.0.1:1"

    def local_addr(self):
        return "127.0.0.1:2"

    def close_with_error(self, message):
        self.closed_with = message


class Recorder:
    def __init__(self, ident, local_name, remote_name):
        self.id = ident
        self.local_name = local_name
        self.remote_name = remote_name
        self.frames = []
        self.closed = False
        self.connected = threading.Event()

    def write_frame(self, frame):
        self.frames.append(frame)

    def close(self):
        self.closed = True

    def connect(self):
        self.connected.set()


class FakeListener:
    def __init__(self):
        self.accepting = threading.Event()
        self.stopped = threading.Event()
        self.close_count = 0

    def accept(self):
        self.accepting.set()
        self.stopped.wait(5)
        raise ConnClosedError(False, "listener closed")

    def close(self):
        self.close_count += 1
        self.stopped.set()


@pytest.fixture
def logger(tmp_path):
    return new_logger(
        LogConfig(output=str(tmp_path / "out.log"), error_output=str(tmp_path / "err.log"))
    )


def handshake_frame(name, client_type, tags=(), **kwargs):
    kwargs.setdefault("version", VERSION)
    return HandshakeFrame(
        name=name,
        id=f"{name}-0",
        client_type=int(client_type),
        observe_data_tags=list(tags),
        **kwargs,
    )


def test_reject_handshake_nil_error():
    writer = FakeConn()
    assert reject_handshake(writer, None) is None
    assert writer.written == []


def test_reject_handshake_error():
    writer = FakeConn()
    err = RuntimeError("some error")
    assert reject_handshake(writer, err) is err
    assert writer.written == [RejectedFrame(message="some error")]


def test_connect_to_new_endpoint_nil_error():
    writer = FakeConn()
    assert connect_to_new_endpoint(writer, None) is None
    assert writer.written == []


def test_connect_to_new_endpoint_error():
    writer = FakeConn()
    result = connect_to_new_endpoint(writer, ConnectToError("11.11.11.11:8000"))
    assert result == ConnectToError("11.11.11.11:8000")
    assert writer.written == [ConnectToFrame(endpoint="11.11.11.11:8000")]


def test_compose_handlers_first_middleware_outermost():
    calls = []

    def middleware(tag):
        def wrap(nxt):
            def handler(x):
                calls.append(tag)
                nxt(x)

            return handler

        return wrap

    frame_handler = compose_frame_handler(lambda x: calls.append(("h", x)), middleware("a"), middleware("b"))
    frame_handler(1)
    assert calls == ["a", "b", ("h", 1)]

    calls.clear()
    conn_handler = compose_conn_handler(lambda x: calls.append(("c", x)), middleware("x"))
    conn_handler(2)
    assert calls == ["x", ("c", 2)]


def test_handshake_stream_function_registers_route(logger):
    server = Server("zipper", logger=logger)
    fconn = FakeConn(handshake_frame("sfn", ClientType.STREAM_FUNCTION, [0x10]))
    conn = server.handshake(fconn)
    assert conn.name == "sfn"
    assert conn.client_id == "sfn-0"
    assert conn.client_type == ClientType.STREAM_FUNCTION
    assert server.stats_functions() == {str(conn.id): "sfn"}
    assert server._router.route(0x10, Metadata()) == [conn.id]


def test_handshake_version_mismatch(logger):
    server = Server("zipper", logger=logger)
    fconn = FakeConn(handshake_frame("src", ClientType.SOURCE, version="2000-01-01"))
    with pytest.raises(RejectedError) as info:
        server.handshake(fconn)
    expected = f"version negotiation failed: client=2000-01-01, server={VERSION}"
    assert str(info.value) == expected
    assert fconn.written == [RejectedFrame(message=expected)]


def test_handshake_connect_to(logger):
    def negotiate(client_version, server_version):
        raise ConnectToError("127.0.0.1:19996")

    server = Server("zipper", logger=logger, version_negotiate=negotiate)
    fconn = FakeConn(handshake_frame("src", ClientType.SOURCE))
    with pytest.raises(ConnectToError) as info:
        server.handshake(fconn)
    assert info.value.endpoint == "127.0.0.1:19996"
    assert fconn.written == [ConnectToFrame(endpoint="127.0.0.1:19996")]


def test_handshake_invalid_token(logger):
    server = Server("zipper", with_auth("token", "token"), logger=logger)
    fconn = FakeConn(handshake_frame("src", ClientType.SOURCE, auth_name="token", auth_payload="error-token"))
    with pytest.raises(AuthenticationError) as info:
        server.handshake(fconn)
    assert str(info.value) == "invalid token: error-token"
    assert fconn.written == [RejectedFrame(message="invalid token: error-token")]


def test_handshake_valid_token(logger):
    server = Server("zipper", with_auth("token", "token"), logger=logger)
    fconn = FakeConn(handshake_frame("src", ClientType.SOURCE, auth_name="token", auth_payload="token"))
    conn = server.handshake(fconn)
    assert conn.name == "src"
    assert fconn.written == []


def test_handshake_unexpected_frame(logger):
    server = Server("zipper", logger=logger)
    fconn = FakeConn(DataFrame(tag=1, payload=b"x"))
    with pytest.raises(RejectedError) as info:
        server.handshake(fconn)
    message = "yomo: handshake read unexpected frame, read: DataFrame"
    assert str(info.value) == message
    assert fconn.written == [RejectedFrame(message=message)]


def test_handshake_stores_wanted_target_and_definition(logger):
    server = Server("zipper", logger=logger)
    fconn = FakeConn(
        handshake_frame(
            "sfn",
            ClientType.STREAM_FUNCTION,
            [1],
            wanted_target="alice",
            function_definition=b'{"name":"f"}',
        )
    )
    conn = server.handshake(fconn)
    assert conn.metadata.get(WANTED_TARGET_KEY) == "alice"
    assert '{"name":"f"}' in conn.metadata.values()


def test_frame_round_trip(logger):
    recorder = Recorder("mockID", "mockClientLocal", "mockClientRemote")
    seen = []

    def frame_middleware(nxt):
        def handler(ctx):
            ctx.set("a", "b")
            nxt(ctx)
            seen.append(ctx.get("a"))

        return handler

    names = []

    def conn_middleware(nxt):
        def handler(conn):
            names.append(conn.name)
            nxt(conn)

        return handler

    server = Server(
        "zipper",
        logger=logger,
        frame_middlewares=[frame_middleware],
        conn_middlewares=[conn_middleware],
    )
    server.add_downstream(recorder)
    assert server.downstreams() == {"mockClientLocal": "mockID"}

    sfn_conn = FakeConn(handshake_frame("sfn-1", ClientType.STREAM_FUNCTION, [0x13]))
    sfn = server.handshake(sfn_conn)

    md = new_metadata(new_yomo_metadata("source-id", "tid"), {"foo": "bar"})
    data = DataFrame(metadata=md.encode(), tag=0x13, payload=b"source -> sfn1")
    source_conn = FakeConn(handshake_frame("source", ClientType.SOURCE), data)
    server.handle_frame_conn(source_conn)

    assert source_conn.written == [HandshakeAckFrame()]
    assert names == ["source"]
    assert seen == ["b"]
    assert server.stats_counter() == 1
    assert [f.payload for f in sfn_conn.written] == [b"source -> sfn1"]
    assert Metadata.decode(sfn_conn.written[0].metadata) == md
    assert len(recorder.frames) == 1
    assert recorder.frames[0].tag == 0x13
    assert Metadata.decode(recorder.frames[0].metadata) == md
    assert server.stats_functions() == {str(sfn.id): "sfn-1"}


def test_stream_function_removed_from_router_on_disconnect(logger):
    server = Server("zipper", logger=logger)
    fconn = FakeConn(handshake_frame("sfn", ClientType.STREAM_FUNCTION, [7]))
    server.handle_frame_conn(fconn)
    assert fconn.written == [HandshakeAckFrame()]
    assert server._router.route(7, Metadata()) == []
    assert server.stats_functions() == {}


def test_routing_honours_target(logger):
    server = Server("zipper", logger=logger)
    alice_conn = FakeConn(handshake_frame("alice", ClientType.STREAM_FUNCTION, [0x33], wanted_target="alice"))
    bob_conn = FakeConn(handshake_frame("bob", ClientType.STREAM_FUNCTION, [0x33], wanted_target="bob"))
    server.handshake(alice_conn)
    server.handshake(bob_conn)

    md = Metadata({TARGET_KEY: "alice"})
    data = DataFrame(metadata=md.encode(), tag=0x33, payload=b"hi")
    server.handle_frame_conn(FakeConn(handshake_frame("src", ClientType.SOURCE), data))

    assert [f.payload for f in alice_conn.written] == [b"hi"]
    assert bob_conn.written == []


def test_upstream_zipper_frames_not_dispatched(logger):
    server = Server("zipper", logger=logger)
    recorder = Recorder("id", "local", "remote")
    server.add_downstream(recorder)
    data = DataFrame(tag=0x10, payload=b"x")
    server.handle_frame_conn(FakeConn(handshake_frame("up", ClientType.UPSTREAM_ZIPPER), data))
    assert server.stats_counter() == 1
    assert recorder.frames == []


def test_routing_error_closes_connection(logger):
    class BrokenRouter(DefaultRouter):
        def route(self, data_tag, md):
            raise RuntimeError("boom")

    server = Server("zipper", logger=logger, router=BrokenRouter())
    source_conn = FakeConn(handshake_frame("src", ClientType.SOURCE), DataFrame(tag=1, payload=b"x"))
    server.handle_frame_conn(source_conn)
    assert source_conn.closed_with == "handle dataFrame err: boom"


def test_serve_stops_on_close_and_releases(logger):
    server = Server("zipper", logger=logger)
    recorder = Recorder("id", "local", "remote")
    server.add_downstream(recorder)
    server.handshake(FakeConn(handshake_frame("sfn", ClientType.STREAM_FUNCTION, [1])))
    listener = FakeListener()

    thread = threading.Thread(target=server.serve, args=(listener,))
    thread.start()
    assert listener.accepting.wait(5)
    server.close()
    thread.join(5)

    assert not thread.is_alive()
    assert recorder.connected.wait(5)
    assert recorder.closed is True
    assert listener.close_count >= 1
    assert server.stats_functions() == {}
    assert server._router.route(1, Metadata()) == []