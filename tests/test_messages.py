import struct

import pytest

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
    encode_message,
)


def test_bitfield_starts_empty():
    bf = Bitfield(10)
    assert len(bf) == 10
    assert bf.count() == 0
    assert list(bf) == []
    assert not bf.complete()


def test_bitfield_set_and_unset_round_trip():
    bf = Bitfield(20)
    for idx in (0, 7, 8, 19):
        bf.set_bit(idx)
    assert list(bf) == [0, 7, 8, 19]
    assert bf.has_bit(7)
    bf.unset_bit(7)
    assert not bf.has_bit(7)
    assert bf.count() == 3


def test_bitfield_out_of_range_raises():
    bf = Bitfield(4)
    with pytest.raises(IndexError):
        bf.set_bit(4)
    with pytest.raises(IndexError):
        bf.has_bit(-1)


def test_bitfield_from_bytes_all_set():
    bf = Bitfield.from_bytes(b"\xff\xff\xff\xff", 32)
    assert all(bf.has_bit(i) for i in range(32))
    assert bf.complete()
    assert bf.to_bytes() == b"\xff\xff\xff\xff"


def test_bitfield_bytes_round_trip():
    bf = Bitfield(13)
    for idx in (1, 5, 12):
        bf.set_bit(idx)
    again = Bitfield.from_bytes(bf.to_bytes(), 13)
    assert again == bf
    assert list(again) == [1, 5, 12]


def test_bitfield_from_bytes_too_short():
    with pytest.raises(ValueError):
        Bitfield.from_bytes(b"\x00", 9)


def test_bitfield_cap_accepts_matching_size():
    bf = Bitfield.from_bytes(bytes([0xFF, 0xF0]), 16)
    assert bf.cap(12)
    assert len(bf) == 12
    assert bf.complete()


def test_bitfield_cap_rejects_wrong_byte_count():
    bf = Bitfield.from_bytes(bytes(4), 32)
    assert not bf.cap(8)
    assert len(bf) == 32


def test_bitfield_cap_rejects_spare_bits():
    bf = Bitfield.from_bytes(bytes([0xFF, 0xFF]), 16)
    assert not bf.cap(12)
    assert len(bf) == 16


def test_bitfield_copy_is_independent():
    bf = Bitfield(8)
    dup = bf.copy()
    dup.set_bit(3)
    assert not bf.has_bit(3)
    assert dup.has_bit(3)


@pytest.mark.parametrize(
    "message, wire",
    [
        (KeepAlive(), bytes([0, 0, 0, 0])),
        (Choke(), bytes([0, 0, 0, 1, 0])),
        (Unchoke(), bytes([0, 0, 0, 1, 1])),
        (Interested(), bytes([0, 0, 0, 1, 2])),
        (Uninterested(), bytes([0, 0, 0, 1, 3])),
        (Have(1), bytes([0, 0, 0, 5, 4, 0, 0, 0, 1])),
        (Request(1, 1, 1), bytes([0, 0, 0, 13, 6, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1])),
        (Cancel(1, 1, 1), bytes([0, 0, 0, 13, 8, 0, 0, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1])),
        (Port(6881), bytes([0, 0, 0, 3, 9, 0x1A, 0xE1])),
    ],
)
def test_fixed_wire_bytes(message, wire):
    assert encode_message(message) == wire


def test_bitfield_message_wire():
    bf = Bitfield(32)
    for i in range(32):
        bf.set_bit(i)
    assert encode_message(BitfieldMessage(bf)) == bytes(
        [0, 0, 0, 5, 5, 0xFF, 0xFF, 0xFF, 0xFF]
    )


def test_piece_wire_prefix_and_body():
    data = bytes([1]) * 16_384
    wire = encode_message(Piece(1, 1, 16_384, data))
    assert wire[:13] == bytes([0, 0, 0x40, 0x09, 7, 0, 0, 0, 1, 0, 0, 0, 1])
    assert wire[13:] == data


def test_piece_sends_only_declared_length():
    data = bytes(range(50))
    wire = encode_message(Piece(0, 0, 20, data))
    (prefix,) = struct.unpack(">I", wire[:4])
    assert prefix == 9 + 20
    assert wire[13:] == data[:20]


def test_piece_data_shorter_than_length_rejected():
    with pytest.raises(ValueError):
        Piece(0, 0, 10, b"abc")


def test_extension_wire_layout():
    payload = b"d1:md11:ut_metadatai3eee"
    wire = encode_message(Extension(3, payload))
    (prefix,) = struct.unpack(">I", wire[:4])
    assert prefix == len(payload) + 2
    assert wire[4] == 20
    assert wire[5] == 3
    assert wire[6:] == payload


def test_handshake_wire_layout():
    rsv = bytes(8)
    info_hash = bytes(range(20))
    peer_id = b"-TW0001-abcdefghijkl"
    wire = encode_message(Handshake(rsv, info_hash, peer_id))
    assert len(wire) == HANDSHAKE_LEN
    assert wire[0] == len(PROTOCOL)
    assert wire[1:20] == PROTOCOL
    assert wire[20:28] == rsv
    assert wire[28:48] == info_hash
    assert wire[48:68] == peer_id


def test_handshake_validates_lengths():
    with pytest.raises(ValueError):
        Handshake(bytes(7), bytes(20), bytes(20))
    with pytest.raises(ValueError):
        Handshake(bytes(8), bytes(19), bytes(20))


def test_messages_compare_by_value():
    assert Have(4) == Have(4)
    assert Piece(1, 2, 3, b"xyz") == Piece(1, 2, 3, b"xyz")
    assert Have(4) != Have(5)


def test_encode_rejects_non_message():
    with pytest.raises(TypeError):
        encode_message("choke")