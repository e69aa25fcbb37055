from __future__ import annotations

import pytest

from enet_session import Codecs, PacketBuilder, make_engine
from enet_session.transports.loopback import LoopbackEngine, LoopbackNetwork


def test_json_and_msgpack_codecs():
    obj = {"id": 7, "tags": ["a", "b"]}
    for name in ("json", "msgpack"):
        codec = Codecs.get(name)
        assert codec.loads(codec.dumps(obj)) == obj
    assert Codecs.get("json").dumps({"a": 1}) == b'{"a":1}'


def test_unknown_codec():
    with pytest.raises(ValueError):
        Codecs.get("xml")


def test_make_engine_labels_and_instances():
    net = LoopbackNetwork()
    engine = make_engine("loopback", network=net)
    assert isinstance(engine, LoopbackEngine)
    assert engine.network is net
    assert make_engine(engine) is engine
    assert make_engine("LOOPBACK") is not engine


def test_make_engine_rejects_unknown():
    with pytest.raises(ValueError):
        make_engine("carrier-pigeon")
    with pytest.raises(TypeError):
        make_engine(42)


def test_raw_codec_passes_binary_through():
    raw = Codecs.get("raw")
    packet = PacketBuilder(8).write_uint16(0xBEEF)
    assert raw.dumps(packet) == b"\xef\xbe"
    assert raw.dumps(bytearray(b"ab")) == b"ab"
    assert raw.dumps("hé") == "hé".encode("utf-8")
    assert raw.loads(memoryview(b"xy")) == b"xy"
    with pytest.raises(TypeError):
        raw.dumps(5)
