"""Peer wire protocol messages and the piece bitfield they carry."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass

__all__ = [
    "PROTOCOL",
    "HANDSHAKE_LEN",
    "Bitfield",
    "KeepAlive",
    "Choke",
    "Unchoke",
    "Interested",
    "Uninterested",
    "Have",
    "BitfieldMessage",
    "Request",
    "Piece",
    "Cancel",
    "Port",
    "Extension",
    "Handshake",
    "Message",
    "encode_message",
]

PROTOCOL = b"BitTorrent protocol"
HANDSHAKE_LEN = 68


class Bitfield:
    """A fixed-length set of piece flags, most significant bit first."""

    __slots__ = ("_length", "_data")
    __hash__ = None  # mutable

    def __init__(self, length: int = 0) -> None:
        if length < 0:
            raise ValueError("bitfield length must not be negative")
        self._length = length
        self._data = bytearray((length + 7) // 8)

    @classmethod
    def from_bytes(cls, data: bytes, length: int) -> "Bitfield":
        """Build a bitfield of ``length`` bits from its packed bytes."""
        needed = (length + 7) // 8
        if len(data) < needed:
            raise ValueError("not enough bytes for the requested bitfield length")
        bitfield = cls()
        bitfield._length = length
        bitfield._data = bytearray(data[:needed])
        return bitfield

    def _check(self, idx: int) -> None:
        if not 0 <= idx < self._length:
            raise IndexError(f"bit {idx} outside bitfield of length {self._length}")

    def set_bit(self, idx: int) -> None:
        self._check(idx)
        self._data[idx >> 3] |= 0x80 >> (idx & 7)

    def unset_bit(self, idx: int) -> None:
        self._check(idx)
        self._data[idx >> 3] &= ~(0x80 >> (idx & 7)) & 0xFF

    def has_bit(self, idx: int) -> bool:
        self._check(idx)
        return bool(self._data[idx >> 3] & (0x80 >> (idx & 7)))

    def cap(self, length: int) -> bool:
        """Shrink to ``length`` bits if the packed size fits and spare bits are clear.

        Returns False, leaving the bitfield unchanged, when it does not fit.
        """
        if (length + 7) // 8 != len(self._data):
            return False
        for spare in range(length, len(self._data) * 8):
            if self._data[spare >> 3] & (0x80 >> (spare & 7)):
                return False
        self._length = length
        return True

    def complete(self) -> bool:
        """Whether every bit is set."""
        return self.count() == self._length

    def count(self) -> int:
        """Number of set bits."""
        return sum(1 for _ in self)

    def to_bytes(self) -> bytes:
        return bytes(self._data)

    def copy(self) -> "Bitfield":
        return Bitfield.from_bytes(bytes(self._data), self._length)

    def __len__(self) -> int:
        return self._length

    def __iter__(self) -> Iterator[int]:
        """Yield the indices of the set bits in ascending order."""
        for byte_idx, byte in enumerate(self._data):
            if not byte:
                continue
            for bit in range(8):
                idx = byte_idx * 8 + bit
                if idx >= self._length:
                    return
                if byte & (0x80 >> bit):
                    yield idx

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitfield):
            return NotImplemented
        return self._length == other._length and self._data == other._data

    def __repr__(self) -> str:
        return f"Bitfield(length={self._length}, set={self.count()})"


@dataclass(frozen=True)
class KeepAlive:
    pass


@dataclass(frozen=True)
class Choke:
    pass


@dataclass(frozen=True)
class Unchoke:
    pass


@dataclass(frozen=True)
class Interested:
    pass


@dataclass(frozen=True)
class Uninterested:
    pass


@dataclass(frozen=True)
class Have:
    index: int


@dataclass(frozen=True)
class BitfieldMessage:
    pieces: Bitfield


@dataclass(frozen=True)
class Request:
    index: int
    begin: int
    length: int


@dataclass(frozen=True)
class Piece:
    """A block of piece data; only the first ``length`` bytes of ``data`` are sent."""

    index: int
    begin: int
    length: int
    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) < self.length:
            raise ValueError("piece data is shorter than its declared length")


@dataclass(frozen=True)
class Cancel:
    index: int
    begin: int
    length: int


@dataclass(frozen=True)
class Port:
    port: int


@dataclass(frozen=True)
class Extension:
    id: int
    payload: bytes


@dataclass(frozen=True)
class Handshake:
    rsv: bytes
    hash: bytes
    id: bytes

    def __post_init__(self) -> None:
        if len(self.rsv) != 8:
            raise ValueError("handshake reserved bytes must be 8 long")
        if len(self.hash) != 20:
            raise ValueError("handshake info hash must be 20 bytes")
        if len(self.id) != 20:
            raise ValueError("handshake peer id must be 20 bytes")


Message = (
    KeepAlive
    | Choke
    | Unchoke
    | Interested
    | Uninterested
    | Have
    | BitfieldMessage
    | Request
    | Piece
    | Cancel
    | Port
    | Extension
    | Handshake
)


def _frame(msg_id: int, body: bytes = b"") -> bytes:
    return struct.pack(">IB", len(body) + 1, msg_id) + body


def encode_message(message) -> bytes:
    """Serialise a message to its wire bytes, length prefix included."""
    match message:
        case KeepAlive():
            return struct.pack(">I", 0)
        case Choke():
            return _frame(0)
        case Unchoke():
            return _frame(1)
        case Interested():
            return _frame(2)
        case Uninterested():
            return _frame(3)
        case Have(index=index):
            return _frame(4, struct.pack(">I", index))
        case BitfieldMessage(pieces=pieces):
            return _frame(5, pieces.to_bytes())
        case Request(index=index, begin=begin, length=length):
            return _frame(6, struct.pack(">III", index, begin, length))
        case Piece(index=index, begin=begin, length=length, data=data):
            return _frame(7, struct.pack(">II", index, begin) + bytes(data[:length]))
        case Cancel(index=index, begin=begin, length=length):
            return _frame(8, struct.pack(">III", index, begin, length))
        case Port(port=port):
            return _frame(9, struct.pack(">H", port))
        case Extension(id=ext_id, payload=payload):
            return _frame(20, struct.pack(">B", ext_id) + bytes(payload))
        case Handshake(rsv=rsv, hash=info_hash, id=peer_id):
            return (
                bytes([len(PROTOCOL)])
                + PROTOCOL
                + bytes(rsv)
                + bytes(info_hash)
                + bytes(peer_id)
            )
    raise TypeError(f"not a peer message: {type(message).__name__}")