"""Torrent metainfo: bencoding, .torrent and magnet parsing, piece/block layout."""

from __future__ import annotations

import base64
import binascii
import hashlib
import random
import string
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import PurePath
from urllib.parse import parse_qsl, urlsplit

BLOCK_LEN = 16_384

__all__ = [
    "BLOCK_LEN",
    "InfoError",
    "TorrentFile",
    "Location",
    "Info",
    "encode",
    "decode",
    "generate_piece_idx",
    "iter_locations",
]


class InfoError(ValueError):
    """Raised when torrent metadata or bencoded data is invalid."""


# --------------------------------------------------------------------------
# Bencoding
# --------------------------------------------------------------------------


def encode(value) -> bytes:
    """Bencode a value made of ints, bytes, str, lists and str-keyed dicts."""
    out: list[bytes] = []
    _encode_into(value, out)
    return b"".join(out)


def _encode_into(value, out: list[bytes]) -> None:
    if isinstance(value, bool):
        raise InfoError("booleans cannot be bencoded")
    if isinstance(value, int):
        out.append(b"i%de" % value)
    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        out.append(b"%d:" % len(raw))
        out.append(raw)
    elif isinstance(value, str):
        _encode_into(value.encode("utf-8"), out)
    elif isinstance(value, (list, tuple)):
        out.append(b"l")
        for item in value:
            _encode_into(item, out)
        out.append(b"e")
    elif isinstance(value, dict):
        out.append(b"d")
        keyed = []
        for key, item in value.items():
            raw_key = key.encode("utf-8") if isinstance(key, str) else bytes(key)
            keyed.append((raw_key, item))
        for raw_key, item in sorted(keyed, key=lambda pair: pair[0]):
            _encode_into(raw_key, out)
            _encode_into(item, out)
        out.append(b"e")
    else:
        raise InfoError(f"cannot bencode value of type {type(value).__name__}")


def decode(data: bytes):
    """Decode one bencoded value; dict keys become str, strings stay bytes."""
    data = bytes(data)
    value, end = _decode_at(data, 0)
    if end != len(data):
        raise InfoError("trailing data after bencoded value")
    return value


def _decode_at(data: bytes, pos: int):
    if pos >= len(data):
        raise InfoError("unexpected end of bencoded data")
    lead = data[pos : pos + 1]
    if lead == b"i":
        end = data.find(b"e", pos + 1)
        if end < 0:
            raise InfoError("unterminated integer")
        try:
            return int(data[pos + 1 : end].decode("ascii")), end + 1
        except (UnicodeDecodeError, ValueError) as exc:
            raise InfoError("invalid integer") from exc
    if lead == b"l":
        items = []
        pos += 1
        while data[pos : pos + 1] != b"e":
            item, pos = _decode_at(data, pos)
            items.append(item)
        return items, pos + 1
    if lead == b"d":
        result = {}
        pos += 1
        while data[pos : pos + 1] != b"e":
            raw_key, pos = _decode_at(data, pos)
            if not isinstance(raw_key, bytes):
                raise InfoError("dictionary keys must be strings")
            try:
                key = raw_key.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise InfoError("dictionary keys must be UTF-8") from exc
            result[key], pos = _decode_at(data, pos)
        return result, pos + 1
    if lead.isdigit():
        colon = data.find(b":", pos)
        if colon < 0:
            raise InfoError("unterminated string length")
        try:
            length = int(data[pos:colon].decode("ascii"))
        except ValueError as exc:
            raise InfoError("invalid string length") from exc
        start = colon + 1
        if start + length > len(data):
            raise InfoError("string runs past end of data")
        return data[start : start + length], start + length
    raise InfoError("invalid bencode type marker")


def _as_str(value) -> str | None:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


def _as_int(value) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


_SCHEME_CHARS = set(string.ascii_letters + string.digits + "+-.")


def _parse_url(text: str) -> str | None:
    """Return the URL if it is absolute (has a scheme), else None."""
    try:
        parts = urlsplit(text)
    except ValueError:
        return None
    scheme = parts.scheme
    if not scheme or not scheme[0].isalpha() or not set(scheme) <= _SCHEME_CHARS:
        return None
    return text


def _hash_from_id(text: str) -> bytes | None:
    if len(text) == 40 and all(c in string.hexdigits for c in text):
        return bytes.fromhex(text)
    try:
        raw = base64.b32decode(text, casefold=True)
    except (binascii.Error, ValueError):
        return None
    return raw if len(raw) == 20 else None


# --------------------------------------------------------------------------
# Metainfo
# --------------------------------------------------------------------------


@dataclass
class TorrentFile:
    """A file within a torrent: its relative path and length in bytes."""

    path: PurePath
    length: int


@dataclass(frozen=True)
class Location:
    """Where a span of piece data lives on disk.

    ``offset`` is the position within file ``file``; ``start``/``end`` are the
    span of the block data that maps there.
    """

    file: int
    file_len: int
    offset: int
    start: int
    end: int
    allocate: bool = False


def _file_from_bencode(value) -> TorrentFile:
    if not isinstance(value, dict):
        raise InfoError("File must be a dictionary type!")
    name, path, length = value.get("name"), value.get("path"), value.get("length")
    if name is not None and path is None and length is not None:
        text = _as_str(name)
        if text is None:
            raise InfoError("Path must be a valid string.")
        parsed = PurePath(text)
    elif name is None and path is not None and length is not None:
        if not isinstance(path, list):
            raise InfoError("File path should be a list")
        parts = [_as_str(part) for part in path]
        if any(part is None for part in parts):
            raise InfoError("File path parts should be strings")
        parsed = PurePath(*parts)
    else:
        raise InfoError("File dict must contain length and name or path")
    size = _as_int(length)
    if size is None:
        raise InfoError("File length must be a valid int")
    return TorrentFile(parsed, size)


def _parse_files(info: dict) -> list[TorrentFile]:
    listed = info.pop("files", None)
    if isinstance(listed, list):
        base = _as_str(info.pop("name", None))
        if base is None:
            raise InfoError("Multifile mode must have a name field")
        files = []
        for entry in listed:
            parsed = _file_from_bencode(entry)
            files.append(TorrentFile(PurePath(base) / parsed.path, parsed.length))
        return files
    return [_file_from_bencode(info)]


def generate_piece_idx(
    pieces: int, piece_len: int, files: Sequence[TorrentFile]
) -> list[tuple[int, int]]:
    """Map each piece index to the (file index, file offset) where it starts."""
    result = []
    file_idx = 0
    offset = 0
    for _ in range(pieces):
        result.append((file_idx, offset))
        offset += piece_len
        while file_idx < len(files) and offset >= files[file_idx].length:
            offset -= files[file_idx].length
            file_idx += 1
    return result


def iter_locations(
    info: "Info",
    index: int,
    begin: int,
    length: int,
    priorities: Sequence[int] | None = None,
) -> Iterator[Location]:
    """Yield the file spans covering ``length`` bytes at piece ``index`` + ``begin``."""
    files = info.files
    file_idx, fidx = info.piece_idx[index]
    fidx += begin
    while files[file_idx].length < fidx:
        fidx -= files[file_idx].length
        file_idx += 1

    data_start = 0
    while True:
        if file_idx >= len(files):
            raise InfoError("location runs past the last file")
        f_len = files[file_idx].length
        write_len = min(f_len - fidx, length)
        allocate = priorities[file_idx] != 0 if priorities is not None else False
        yield Location(
            file=file_idx,
            file_len=f_len,
            offset=fidx,
            start=data_start,
            end=data_start + write_len,
            allocate=allocate,
        )
        if write_len == length:
            return
        fidx -= f_len - write_len
        file_idx += 1
        length -= write_len
        data_start += write_len


@dataclass
class Info:
    """Parsed torrent metadata."""

    name: str = ""
    announce: str | None = None
    creator: str | None = None
    comment: str | None = None
    piece_len: int = 0
    total_len: int = 0
    hashes: list[bytes] = field(default_factory=list)
    hash: bytes = bytes(20)
    files: list[TorrentFile] = field(default_factory=list)
    private: bool = False
    be_name: bytes | None = None
    piece_idx: list[tuple[int, int]] = field(default_factory=list)
    url_list: list[list[str]] = field(default_factory=list)

    @classmethod
    def from_magnet(cls, uri: str) -> "Info":
        """Build incomplete metadata (hash, name, trackers) from a magnet URI."""
        try:
            parts = urlsplit(uri)
        except ValueError as exc:
            raise InfoError("Failed to parse magnet URL!") from exc
        if _parse_url(uri) is None:
            raise InfoError("Failed to parse magnet URL!")
        if parts.scheme != "magnet":
            raise InfoError("magnet URL must use magnet URL scheme")

        pairs = parse_qsl(parts.query, keep_blank_values=True)
        xt = next(
            (v for k, v in pairs if k == "xt" and v.startswith("urn:btih:")), None
        )
        info_hash = _hash_from_id(xt[9:]) if xt is not None else None
        if info_hash is None:
            raise InfoError("No hash found in magnet")

        trackers = [v for k, v in pairs if k == "tr" and _parse_url(v) is not None]
        random.shuffle(trackers)
        name = next((v for k, v in pairs if k == "dn"), "")
        return cls(name=name, hash=info_hash, url_list=[trackers])

    @classmethod
    def from_bencode(cls, data) -> "Info":
        """Parse a decoded .torrent dictionary (or its raw bencoded bytes)."""
        if isinstance(data, (bytes, bytearray)):
            data = decode(data)
        if not isinstance(data, dict) or not isinstance(data.get("info"), dict):
            raise InfoError("invalid info field")
        torrent = dict(data)
        info = dict(torrent.pop("info"))
        info_hash = hashlib.sha1(encode(info)).digest()

        announce_text = _as_str(torrent.get("announce"))
        announce = _parse_url(announce_text) if announce_text is not None else None
        comment = _as_str(torrent.get("comment"))
        creator = _as_str(torrent.get("created by"))

        piece_len = _as_int(info.pop("piece length", None))
        if piece_len is None:
            raise InfoError("Info must specify piece length")

        pieces = info.pop("pieces", None)
        if not isinstance(pieces, bytes) or len(pieces) % 20:
            raise InfoError("Info must provide valid hashes")
        hashes = [pieces[i : i + 20] for i in range(0, len(pieces), 20)]

        if "private" in info:
            flag = _as_int(info.pop("private"))
            if flag not in (0, 1):
                raise InfoError(
                    "private key must be an integer equal to 0 or 1 if present!"
                )
            private = flag == 1
        else:
            private = False

        be_name = None
        if "name" in info:
            be_name = info["name"]
            if not isinstance(be_name, bytes):
                raise InfoError("name field must be a bitstring!")

        files = _parse_files(info)
        if not files:
            raise InfoError("Torrent must contain at least one file")
        first = files[0].path
        if first.anchor:
            raise InfoError("File paths must be relative")
        if not first.parts:
            raise InfoError("File path must not be empty")
        name = first.parts[0]

        total_len = sum(f.length for f in files)
        piece_idx = generate_piece_idx(len(hashes), piece_len, files)

        tiers = torrent.get("announce-list")
        url_list = []
        for tier in tiers if isinstance(tiers, list) else []:
            urls = []
            for entry in tier if isinstance(tier, list) else []:
                text = _as_str(entry)
                if text is not None and _parse_url(text) is not None:
                    urls.append(text)
            random.shuffle(urls)
            url_list.append(urls)

        return cls(
            name=name,
            announce=announce,
            creator=creator,
            comment=comment,
            piece_len=piece_len,
            total_len=total_len,
            hashes=hashes,
            hash=info_hash,
            files=files,
            private=private,
            be_name=be_name,
            piece_idx=piece_idx,
            url_list=url_list,
        )

    def complete(self) -> bool:
        """Whether the piece hashes are known (i.e. not a bare magnet)."""
        return bool(self.hashes)

    def pieces(self) -> int:
        return len(self.hashes)

    def to_bencode(self) -> dict:
        """The info dictionary, ready for :func:`encode`."""
        info: dict = {}
        if self.be_name is not None:
            info["name"] = self.be_name
        if self.private:
            info["private"] = 1
        info["piece length"] = self.piece_len
        info["pieces"] = b"".join(self.hashes)
        if len(self.files) == 1:
            info["length"] = self.files[0].length
        else:
            info["files"] = [
                {"length": f.length, "path": str(f.path).encode("utf-8")}
                for f in self.files
            ]
        return info

    def to_torrent_bencode(self) -> dict:
        """A full torrent dictionary holding the announce URL and info."""
        torrent: dict = {}
        if self.announce is not None:
            torrent["announce"] = self.announce.encode("utf-8")
        torrent["info"] = self.to_bencode()
        return torrent

    def block_len(self, idx: int, offset: int) -> int:
        """Length of the block at ``offset`` in piece ``idx``."""
        if idx != self.pieces() - 1:
            return BLOCK_LEN
        last_piece_len = self.piece_length(idx)
        if offset < last_piece_len and last_piece_len - offset <= BLOCK_LEN:
            return last_piece_len - offset
        return BLOCK_LEN

    def piece_length(self, idx: int) -> int:
        """Length of piece ``idx``; the last piece may be shorter."""
        if not self.complete():
            return 0
        if idx != max(self.pieces() - 1, 0):
            return self.piece_len
        return self.total_len - self.piece_len * (self.pieces() - 1)

    def block_locations(
        self, index: int, begin: int, priorities: Sequence[int] | None = None
    ) -> Iterator[Location]:
        """Disk locations of the block at ``index``/``begin``."""
        return iter_locations(
            self, index, begin, self.block_len(index, begin), priorities
        )

    def piece_locations(self, index: int) -> Iterator[Location]:
        """Disk locations of the whole piece at ``index``."""
        return iter_locations(self, index, 0, self.piece_length(index))