from pathlib import PurePath

import pytest

from torrentwire.info import BLOCK_LEN, Info, TorrentFile, generate_piece_idx
from torrentwire.messages import Bitfield
from torrentwire.status import (
    FileProgress,
    RpcStatus,
    Status,
    StatusState,
    progress,
)


def _two_file_info() -> Info:
    files = [
        TorrentFile(PurePath("a"), 40000),
        TorrentFile(PurePath("b"), 10000),
    ]
    info = Info(
        piece_len=BLOCK_LEN,
        total_len=50000,
        hashes=[bytes(20)] * 4,
        files=files,
    )
    info.piece_idx = generate_piece_idx(4, BLOCK_LEN, files)
    return info


def test_magnet_and_leeching_predicates():
    assert Status(state=StatusState.MAGNET).magnet()
    assert not Status(state=StatusState.MAGNET).leeching()
    assert Status(state=StatusState.INCOMPLETE).leeching()
    assert not Status(state=StatusState.IMPORT).leeching()


def test_stopped_when_paused_or_errored():
    assert Status(paused=True).stopped()
    assert Status(error="disk").stopped()
    assert not Status().stopped()


def test_completed_requires_no_validation():
    assert Status(state=StatusState.COMPLETE).completed()
    assert not Status(state=StatusState.COMPLETE, validating=0.5).completed()
    assert not Status(state=StatusState.INCOMPLETE).completed()


def test_should_dl():
    assert Status().should_dl()
    assert not Status(paused=True).should_dl()
    assert not Status(validating=0.0).should_dl()
    assert not Status(state=StatusState.COMPLETE).should_dl()


@pytest.mark.parametrize(
    "status, ul, dl, expected",
    [
        (Status(paused=True, validating=0.1, error="x"), 5, 5, RpcStatus.PAUSED),
        (Status(validating=0.1, error="x"), 5, 5, RpcStatus.HASHING),
        (Status(error="x"), 5, 5, RpcStatus.ERROR),
        (Status(state=StatusState.INCOMPLETE), 0, 0, RpcStatus.PENDING),
        (Status(state=StatusState.IMPORT), 0, 3, RpcStatus.LEECHING),
        (Status(state=StatusState.COMPLETE), 0, 3, RpcStatus.IDLE),
        (Status(state=StatusState.COMPLETE), 3, 0, RpcStatus.SEEDING),
        (Status(state=StatusState.MAGNET), 3, 3, RpcStatus.MAGNET),
    ],
)
def test_as_rpc(status, ul, dl, expected):
    assert status.as_rpc(ul, dl) is expected


def test_progress():
    assert progress(Status(state=StatusState.MAGNET, validating=0.4), 2, 4) == 0.0
    assert progress(Status(validating=0.25), 1, 4) == 0.25
    assert progress(Status(), 2, 4) == 2 / 4


def test_rebuild_all_pieces_fills_files():
    info = _two_file_info()
    bits = Bitfield(4)
    for i in range(4):
        bits.set_bit(i)
    files = FileProgress.for_info(info, bits)
    assert files.done == [f.length for f in info.files]
    assert files.flush() == [(0, 40000), (1, 10000)]
    assert files.flush() == []


def test_rebuild_no_pieces_marks_dirty_zero():
    info = _two_file_info()
    files = FileProgress.for_info(info, Bitfield(4))
    assert files.flush() == [(0, 0), (1, 0)]


def test_update_spanning_piece():
    info = _two_file_info()
    files = FileProgress.for_info(info, [])
    files.flush()
    files.update(info, 2)
    assert files.done[0] == 7232
    assert sum(files.done) == BLOCK_LEN
    assert [idx for idx, _ in files.flush()] == [0, 1]


def test_update_accumulates_to_rebuild_result():
    info = _two_file_info()
    incremental = FileProgress.for_info(info, [])
    for piece in (0, 3, 1):
        incremental.update(info, piece)
    rebuilt = FileProgress.for_info(info, [0, 1, 3])
    assert incremental.done == rebuilt.done
    assert sum(rebuilt.done) == 2 * BLOCK_LEN + info.piece_length(3)