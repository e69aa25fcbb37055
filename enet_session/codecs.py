from __future__ import annotations
from typing import Any, Dict, Protocol as TypingProtocol

import json

import msgpack

from .builder import PacketBuilder


class Codec(TypingProtocol):
    name: str
    def dumps(self, obj: Any) -> bytes: ...
    def loads(self, data: bytes) -> Any: ...


class JSONCodec:
    name = "json"
    def dumps(self, obj: Any) -> bytes:
        return json.dumps(obj, separators=(",", ":")).encode("utf-8")
    def loads(self, data: bytes) -> Any:
        return json.loads(bytes(data).decode("utf-8"))


class MsgPackCodec:
    name = "msgpack"
    def dumps(self, obj: Any) -> bytes:
        return msgpack.packb(obj, use_bin_type=True)
    def loads(self, data: bytes) -> Any:
        return msgpack.unpackb(bytes(data), raw=False)


class RawCodec:
    """Payload is already binary: bytes-like or a PacketBuilder; str goes out as UTF-8."""
    name = "raw"
    def dumps(self, obj: Any) -> bytes:
        if isinstance(obj, str):
            return obj.encode("utf-8")
        if isinstance(obj, PacketBuilder):
            return obj.get_packet_data()
        if isinstance(obj, (bytes, bytearray, memoryview)):
            return bytes(obj)
        raise TypeError(f"raw codec needs bytes-like or str, not {type(obj).__name__}")
    def loads(self, data: bytes) -> bytes:
        return bytes(data)


class Codecs:
    """Named payload codecs for send_object() / ReceiveEvent.decode()."""
    _registry: Dict[str, Codec] = {"json": JSONCodec(), "msgpack": MsgPackCodec(), "raw": RawCodec()}

    @classmethod
    def get(cls, name: str) -> Codec:
        if name not in cls._registry:
            raise ValueError(f"Unknown codec: {name}")
        return cls._registry[name]

    @classmethod
    def register(cls, codec: Codec) -> None:
        cls._registry[codec.name] = codec
