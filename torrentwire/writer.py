"""Non-blocking, resumable writer of peer wire messages."""

from __future__ import annotations

import errno
from collections import deque

from torrentwire.messages import Piece, encode_message

__all__ = ["Writer"]


def _transient(exc: OSError) -> bool:
    return isinstance(exc, (BlockingIOError, BrokenPipeError)) or (
        exc.errno == errno.ENOTCONN
    )


class Writer:
    """Writes messages to a connection, resuming partial writes later.

    ``conn`` is any object whose ``write(data)`` returns the number of bytes
    taken, returns ``None`` or raises ``BlockingIOError`` when it would block.
    Messages that arrive while one is in flight wait in ``write_queue``; the
    most recently queued one is sent next.
    """

    def __init__(self) -> None:
        self.write_queue: deque = deque()
        self.blocks_written = 0
        self._writable = True
        self._pending: memoryview | None = None
        self._idx = 0
        self._is_piece = False

    def writable(self, conn) -> None:
        """The connection can take data again: resume writing."""
        self._writable = True
        self._write(conn)

    def write_message(self, msg, conn) -> None:
        """Start writing ``msg``, or queue it behind the message in flight."""
        if self._pending is None:
            self._setup_write(msg)
        else:
            self.write_queue.append(msg)
        if self._writable:
            self._write(conn)

    def _setup_write(self, msg) -> None:
        self._pending = memoryview(encode_message(msg))
        self._idx = 0
        self._is_piece = isinstance(msg, Piece)

    def _write(self, conn) -> None:
        while self._pending is not None:
            try:
                done = self._write_step(conn)
            except OSError as exc:
                if _transient(exc):
                    return
                raise
            if done is None:
                return
            if done:
                if self.write_queue:
                    self._setup_write(self.write_queue.pop())
                else:
                    self._pending = None
                    self._is_piece = False

    def _write_step(self, conn) -> bool | None:
        """Write once; True when the message is finished, None when blocked."""
        amount = conn.write(self._pending[self._idx :])
        if amount is None:
            return None
        if amount == 0:
            raise EOFError("EOF")
        self._idx += amount
        if self._idx == len(self._pending):
            if self._is_piece:
                self.blocks_written += 1
            return True
        self._writable = False
        return False