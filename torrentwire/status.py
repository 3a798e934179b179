"""Torrent lifecycle status, its RPC view and per-file download progress."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from torrentwire.info import Info

__all__ = ["StatusState", "RpcStatus", "Status", "FileProgress", "progress"]


class StatusState(Enum):
    """Where a torrent is in its lifecycle."""

    MAGNET = "magnet"
    IMPORT = "import"
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"


class RpcStatus(Enum):
    """Status reported to RPC clients."""

    PENDING = "pending"
    MAGNET = "magnet"
    PAUSED = "paused"
    LEECHING = "leeching"
    IDLE = "idle"
    SEEDING = "seeding"
    HASHING = "hashing"
    ERROR = "error"


@dataclass
class Status:
    """Run state of a torrent: paused flag, validation progress and errors."""

    paused: bool = False
    validating: float | None = None
    error: str | None = None
    state: StatusState = StatusState.INCOMPLETE

    def magnet(self) -> bool:
        return self.state is StatusState.MAGNET

    def leeching(self) -> bool:
        return self.state is StatusState.INCOMPLETE

    def stopped(self) -> bool:
        return self.paused or self.error is not None

    def completed(self) -> bool:
        return self.state is StatusState.COMPLETE and self.validating is None

    def should_dl(self) -> bool:
        return self.leeching() and not self.stopped() and self.validating is None

    def as_rpc(self, ul: int, dl: int) -> RpcStatus:
        """The RPC status, given the recent upload and download rates."""
        if self.paused:
            return RpcStatus.PAUSED
        if self.validating is not None:
            return RpcStatus.HASHING
        if self.error is not None:
            return RpcStatus.ERROR
        if self.state in (StatusState.INCOMPLETE, StatusState.IMPORT):
            return RpcStatus.PENDING if dl == 0 else RpcStatus.LEECHING
        if self.state is StatusState.COMPLETE:
            return RpcStatus.IDLE if ul == 0 else RpcStatus.SEEDING
        return RpcStatus.MAGNET


def progress(status: Status, have: int, total: int) -> float:
    """Fraction of the torrent done: validation progress while hashing."""
    if status.magnet():
        return 0.0
    if status.validating is not None:
        return status.validating
    return have / total


@dataclass
class FileProgress:
    """Bytes completed per file, with a set of files changed since the last flush."""

    done: list[int] = field(default_factory=list)
    dirty: set[int] = field(default_factory=set)

    @classmethod
    def for_info(cls, info: Info, pieces: Iterable[int]) -> "FileProgress":
        """Progress of every file in ``info`` given the completed ``pieces``."""
        files = cls()
        files.rebuild(info, pieces)
        return files

    def rebuild(self, info: Info, pieces: Iterable[int]) -> None:
        """Recount every file from the completed piece indices; mark all dirty."""
        self.done = [0] * len(info.files)
        for piece in pieces:
            for loc in info.piece_locations(piece):
                self.done[loc.file] += loc.end - loc.start
        self.dirty.update(range(len(self.done)))

    def update(self, info: Info, piece: int) -> None:
        """Account for one newly completed piece."""
        for loc in info.piece_locations(piece):
            self.done[loc.file] += loc.end - loc.start
            self.dirty.add(loc.file)

    def flush(self) -> list[tuple[int, int]]:
        """Return (file index, bytes done) for every dirty file and clear them."""
        changed = [(idx, self.done[idx]) for idx in sorted(self.dirty)]
        self.dirty.clear()
        return changed