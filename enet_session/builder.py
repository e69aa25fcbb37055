from __future__ import annotations
import struct

from .errors import BufferOverflow, UnsupportedEncoding

DEFAULT_CAPACITY = 1024

_UTF8_NAMES = {"utf-8", "utf8"}


class PacketBuilder:
    """
    Fixed-capacity binary writer for raw payloads:

        data = (PacketBuilder(16)
                .write_uint8(3)
                .write_uint32(0xDEADBEEF)
                .write_string("hi")
                .get_packet_data())

    Every write advances the cursor and returns the builder. A write that does
    not fit raises BufferOverflow and leaves the buffer untouched.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        self._buf = bytearray(capacity)
        self._offset = 0

    @property
    def capacity(self) -> int:
        return len(self._buf)

    # ---- numeric fields ----
    def write_uint8(self, value: int):
        return self._pack("B", value, True)

    def write_uint16(self, value: int, little_endian: bool = True):
        return self._pack("H", value, little_endian)

    def write_uint32(self, value: int, little_endian: bool = True):
        return self._pack("I", value, little_endian)

    def write_float32(self, value: float, little_endian: bool = True):
        return self._pack("f", value, little_endian)

    def write_float64(self, value: float, little_endian: bool = True):
        return self._pack("d", value, little_endian)

    # ---- byte fields ----
    def write_string(self, text: str, encoding: str = "utf-8"):
        if encoding is not None and encoding.lower() not in _UTF8_NAMES:
            raise UnsupportedEncoding(f"PacketBuilder.write_string supports only utf-8, got {encoding!r}")
        return self.write_bytes(text.encode("utf-8"))

    def write_bytes(self, data):
        if not isinstance(data, (bytes, bytearray, memoryview)):
            data = bytes(data)
        view = memoryview(data).cast("B")
        self._reserve(len(view))
        self._buf[self._offset:self._offset + len(view)] = view
        self._offset += len(view)
        return self

    # ---- output ----
    def get_packet_data(self) -> bytes:
        return bytes(self._buf[:self._offset])

    def reset(self):
        self._offset = 0
        return self

    def size(self) -> int:
        return self._offset

    def __len__(self) -> int:
        return self._offset

    def _pack(self, fmt: str, value, little_endian: bool):
        fmt = ("<" if little_endian else ">") + fmt
        width = struct.calcsize(fmt)
        self._reserve(width)
        try:
            struct.pack_into(fmt, self._buf, self._offset, value)
        except struct.error as e:
            raise ValueError(f"{value!r} does not fit field {fmt!r}: {e}") from e
        self._offset += width
        return self

    def _reserve(self, width: int) -> None:
        if self._offset + width > len(self._buf):
            raise BufferOverflow(
                f"write of {width} bytes at offset {self._offset} exceeds capacity {len(self._buf)}"
            )
