"""Non-blocking, resumable reader of peer wire messages."""

from __future__ import annotations

import struct
from enum import Enum, auto

from torrentwire.info import BLOCK_LEN
from torrentwire.messages import (
    HANDSHAKE_LEN,
    PROTOCOL,
    Bitfield,
    BitfieldMessage,
    Cancel,
    Choke,
    Extension,
    Handshake,
    Have,
    Interested,
    KeepAlive,
    Piece,
    Port,
    Request,
    Unchoke,
    Uninterested,
)

__all__ = ["BUF_SIZE", "MAX_EXT_MSG_BYTES", "ReaderError", "Reader"]

BUF_SIZE = BLOCK_LEN
MAX_EXT_MSG_BYTES = 100 * 1000 * 1000

_SIMPLE = {0: Choke, 1: Unchoke, 2: Interested, 3: Uninterested}


class ReaderError(ConnectionError):
    """The peer sent malformed data or the connection failed."""


class _State(Enum):
    HANDSHAKE = auto()
    LEN = auto()
    ID = auto()
    HAVE = auto()
    BITFIELD = auto()
    REQUEST = auto()
    PIECE_PREFIX = auto()
    PIECE = auto()
    CANCEL = auto()
    PORT = auto()
    EXT_ID = auto()
    EXTENSION = auto()


# Size of the fixed prefix (length + id + fields) each state reads up to.
_PREFIX_LEN = {
    _State.LEN: 4,
    _State.ID: 5,
    _State.HAVE: 9,
    _State.REQUEST: 17,
    _State.CANCEL: 17,
    _State.PIECE_PREFIX: 13,
    _State.PORT: 7,
    _State.EXT_ID: 6,
}

_NEXT_STATE = {
    4: _State.HAVE,
    6: _State.REQUEST,
    7: _State.PIECE_PREFIX,
    8: _State.CANCEL,
    9: _State.PORT,
    20: _State.EXT_ID,
}


class Reader:
    """Reads one message at a time from a non-blocking connection.

    ``conn`` offers ``recv(n)`` or ``read(n)``: it returns up to ``n`` bytes,
    ``b""`` at end of stream, and ``None`` or ``BlockingIOError`` when no data
    is available yet. Partial reads are kept and resumed on the next call.
    """

    def __init__(self, expect_handshake: bool = True) -> None:
        self._state = _State.HANDSHAKE if expect_handshake else _State.LEN
        self._prefix = bytearray()
        self._body = bytearray()
        self._body_len = 0
        self._ext_id = 0

    def readable(self, conn):
        """Return the next complete message, or None if the connection blocked.

        Raises ReaderError on malformed input, end of stream or I/O failure.
        """
        msg = self._read(conn)
        if msg is not None:
            self._state = _State.LEN
            self._prefix.clear()
            self._body.clear()
            self._body_len = 0
        return msg

    def _mlen(self) -> int:
        return struct.unpack_from(">I", self._prefix, 0)[0]

    def _read(self, conn):
        read = getattr(conn, "recv", None) or conn.read
        while True:
            state = self._state
            if state is _State.HANDSHAKE:
                if not _fill(self._body, HANDSHAKE_LEN, read):
                    return None
                data = bytes(self._body)
                if data[1:20] != PROTOCOL:
                    raise ReaderError("Handshake was not for 'BitTorrent protocol'")
                return Handshake(rsv=data[20:28], hash=data[28:48], id=data[48:68])

            if state in (_State.BITFIELD, _State.PIECE, _State.EXTENSION):
                if not _fill(self._body, self._body_len, read):
                    return None
                return self._finish_body(state)

            if not _fill(self._prefix, _PREFIX_LEN[state], read):
                return None
            msg = self._advance(state)
            if msg is not None:
                return msg

    def _advance(self, state: _State):
        """Act on a completed prefix: return a message or move to the next state."""
        prefix = self._prefix
        if state is _State.LEN:
            if self._mlen() == 0:
                return KeepAlive()
            self._state = _State.ID
            return None
        if state is _State.ID:
            msg_id = prefix[4]
            if msg_id in _SIMPLE:
                return _SIMPLE[msg_id]()
            if msg_id == 5:
                mlen = self._mlen()
                if mlen > BUF_SIZE:
                    raise ReaderError(f"Invalid bitfield length {mlen}")
                self._start_body(_State.BITFIELD, mlen - 1)
                return None
            if msg_id not in _NEXT_STATE:
                raise ReaderError("Invalid ID used!")
            self._state = _NEXT_STATE[msg_id]
            return None
        if state is _State.HAVE:
            return Have(struct.unpack_from(">I", prefix, 5)[0])
        if state is _State.REQUEST:
            return Request(*struct.unpack_from(">III", prefix, 5))
        if state is _State.CANCEL:
            return Cancel(*struct.unpack_from(">III", prefix, 5))
        if state is _State.PORT:
            return Port(struct.unpack_from(">H", prefix, 5)[0])
        if state is _State.PIECE_PREFIX:
            plen = self._mlen() - 9
            if plen < 0 or plen > BUF_SIZE:
                raise ReaderError(f"Invalid pieces length {plen}")
            self._start_body(_State.PIECE, plen)
            return None
        if state is _State.EXT_ID:
            self._ext_id = prefix[5]
            plen = self._mlen() - 2
            if plen < 0 or plen > MAX_EXT_MSG_BYTES:
                raise ReaderError("Ext message too large")
            self._start_body(_State.EXTENSION, plen)
            return None
        raise AssertionError(f"unexpected reader state {state}")

    def _start_body(self, state: _State, length: int) -> None:
        self._state = state
        self._body.clear()
        self._body_len = length

    def _finish_body(self, state: _State):
        body = bytes(self._body)
        if state is _State.BITFIELD:
            return BitfieldMessage(Bitfield.from_bytes(body, len(body) * 8))
        if state is _State.PIECE:
            index, begin = struct.unpack_from(">II", self._prefix, 5)
            return Piece(index=index, begin=begin, length=len(body), data=body)
        return Extension(id=self._ext_id, payload=body)


def _fill(buf: bytearray, target: int, read) -> bool:
    """Read into ``buf`` until it holds ``target`` bytes; False if blocked."""
    while len(buf) < target:
        try:
            chunk = read(target - len(buf))
        except BlockingIOError:
            return False
        except OSError as exc:
            raise ReaderError(str(exc)) from exc
        if chunk is None:
            return False
        if not chunk:
            raise ReaderError("EOF")
        buf += chunk
    return True