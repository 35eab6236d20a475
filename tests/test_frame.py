import pytest

from zipline.frame import (
    ConnClosedError,
    ConnectToFrame,
    DataFrame,
    FrameType,
    FrameWriter,
    HandshakeFrame,
    ReservedTagError,
    check_reserved_tag,
    new_frame,
)


def test_frame_type_values_and_names():
    data = new_frame(0x3F)
    handshake = new_frame(0x31)
    connect_to = new_frame(0x3E)
    assert data.type is FrameType.DATA
    assert handshake.type is FrameType.HANDSHAKE
    assert str(data.type) == "DataFrame"
    assert str(connect_to.type) == "ConnectToFrame"


@pytest.mark.parametrize("kind", list(FrameType))
def test_new_frame_has_requested_type(kind):
    frame = new_frame(int(kind))
    assert frame.type is kind


def test_new_frame_unknown_type():
    with pytest.raises(ValueError):
        new_frame(0x01)


def test_frame_fields_roundtrip():
    df = DataFrame(metadata=b"m", tag=0x33, payload=b"hello")
    assert (df.tag, df.payload, df.metadata) == (0x33, b"hello", b"m")
    hf = HandshakeFrame(name="sfn", observe_data_tags=[1, 2])
    assert hf.observe_data_tags == [1, 2]
    assert hf.function_definition is None
    assert ConnectToFrame(endpoint="127.0.0.1:9000").endpoint == "127.0.0.1:9000"


def test_reserved_tags():
    with pytest.raises(ReservedTagError):
        check_reserved_tag(0xF000)
    with pytest.raises(ReservedTagError):
        check_reserved_tag(0xFFFF)
    assert check_reserved_tag(0xEFFF) is None
    assert check_reserved_tag(0x10000) is None


def test_reserved_tag_message():
    with pytest.raises(ValueError, match="reserved"):
        check_reserved_tag(0xF123)


def test_conn_closed_error_message():
    remote = ConnClosedError(True, "boom")
    local = ConnClosedError(False, "boom")
    assert str(remote) == "remote conn closed: boom"
    assert str(local) == "local conn closed: boom"
    assert remote.remote and not local.remote


def test_frame_writer_protocol():
    class Recorder:
        def __init__(self):
            self.frames = []

        def write_frame(self, frame):
            self.frames.append(frame)

    rec = Recorder()
    assert isinstance(rec, FrameWriter)
    rec.write_frame(DataFrame(tag=1))
    assert rec.frames[0].type is FrameType.DATA