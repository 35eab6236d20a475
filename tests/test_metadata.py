import msgpack
import pytest

from zipline.metadata import Metadata, new_metadata


@pytest.fixture
def md():
    m = new_metadata(Metadata({"aaa": "bbb"}))
    m.set("ccc", "ddd")
    return m


def test_get():
    m = new_metadata({"aaa": "bbb"})
    assert m.get("aaa") == "bbb"
    assert "aaa" in m


def test_set(md):
    assert md.get("ccc") == "ddd"


def test_set_empty_key(md):
    md.set("", "eee")
    assert "" not in md
    assert md.get("", "") == ""


def test_range(md):
    md2 = Metadata()
    for k, v in md.items():
        md2.set(k, v)
    assert md == md2


def test_range_one_key(md):
    md2 = Metadata()
    for k, v in md.items():
        if k == "aaa":
            md2.set(k, v)
            break
    assert md2.get("aaa") == "bbb"


def test_clone(md):
    md2 = md.clone()
    assert md == md2
    md2.set("zzz", "yyy")
    assert "zzz" not in md


def test_clone_empty():
    md2 = Metadata()
    assert md2.clone() == md2


def test_encode_decode(md):
    b = md.encode()
    assert Metadata.decode(b) == md


def test_decode_nil_and_encode_empty():
    md2 = Metadata.decode(None)
    assert md2 == Metadata()
    assert md2.encode() == b""


def test_decode_invalid():
    with pytest.raises(ValueError):
        Metadata.decode(msgpack.packb([1, 2]))


def test_new_merges_later_wins():
    m = new_metadata({"a": "1"}, {"a": "2", "b": "3"})
    assert m == {"a": "2", "b": "3"}