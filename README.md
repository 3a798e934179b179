# torrentwire

Building blocks for BitTorrent clients, in pure Python with no dependencies.

## Modules

- `torrentwire.info`: bencoding and torrent metadata.
  - `encode(value)` and `decode(data)` convert between Python values and
    bencoded bytes. Dict keys are decoded to `str` and strings stay `bytes`.
  - `Info.from_bencode(data)` parses a `.torrent` dictionary, or its raw
    bencoded bytes. It computes the SHA-1 info hash, the files, the piece
    hashes and the announce tiers.
  - `Info.from_magnet(uri)` reads the info hash (hex or base32), the display
    name and the trackers from a magnet URI.
  - `Info.piece_length(idx)` and `Info.block_len(idx, offset)` give piece and
    block sizes. Blocks are 16 KiB; the last piece and the last block may be
    shorter.
  - `Info.block_locations(index, begin, priorities)` and
    `Info.piece_locations(index)` yield `Location` spans. Each span maps a
    block or piece to an offset within one of the torrent's `TorrentFile`s.
    `generate_piece_idx` and `iter_locations` are the functions underneath.
  - `Info.to_bencode()` and `Info.to_torrent_bencode()` rebuild the info
    dictionary and the torrent dictionary.
  - Invalid input raises `InfoError`, which is a `ValueError`.
- `torrentwire.messages`: the peer wire messages as frozen dataclasses:
  `Handshake`, `KeepAlive`, `Choke`, `Unchoke`, `Interested`, `Uninterested`,
  `Have`, `BitfieldMessage`, `Request`, `Piece`, `Cancel`, `Port` and
  `Extension`.
  - `encode_message(message)` turns a message into its wire bytes.
  - `Bitfield` is a set of piece flags, stored most significant bit first.
    It has `set_bit`, `unset_bit`, `has_bit`, `cap`, `complete`, `count` and
    `to_bytes`. Iterating over it yields the indices of the set bits.
- `torrentwire.writer`: `Writer` sends messages to a non-blocking connection.
  - The connection needs a `write(data)` method. It returns the number of
    bytes taken, or returns `None` or raises `BlockingIOError` when it would
    block.
  - A partial write is resumed by the next call to `writable(conn)`.
  - Messages that arrive while one is still being written wait in
    `write_queue`. The one queued most recently is sent next.
- `torrentwire.reader`: `Reader` reads messages from a non-blocking
  connection.
  - The connection needs a `recv(n)` or `read(n)` method.
  - `readable(conn)` returns the next complete message, or `None` while the
    data is still incomplete.
  - Malformed data, end of stream and I/O failures raise `ReaderError`.
  - A new `Reader` expects a handshake first. `Reader(expect_handshake=False)`
    starts with length-prefixed messages.
- `torrentwire.status`: `Status` holds a torrent's `StatusState`, whether it
  is paused, its validation progress and its error.
  - `Status.as_rpc(ul, dl)` returns the `RpcStatus` shown to clients.
  - `progress(status, have, total)` gives the fraction completed.
  - `FileProgress` counts the bytes completed per file, using
    `for_info`, `rebuild`, `update` and `flush`.

## Install

```
pip install torrentwire
```

## Example

```python
from torrentwire.info import Info

with open("example.torrent", "rb") as fh:
    info = Info.from_bencode(fh.read())

print(info.name, info.hash.hex(), info.pieces(), info.piece_length(0))
for loc in info.block_locations(0, 0):
    print(loc.file, loc.offset, loc.start, loc.end)
```

Framing messages:

```python
import io

from torrentwire.messages import Have, Interested
from torrentwire.writer import Writer

out = io.BytesIO()
writer = Writer()
writer.write_message(Interested(), out)
writer.write_message(Have(1), out)
print(out.getvalue())  # b'\x00\x00\x00\x01\x02\x00\x00\x00\x05\x04\x00\x00\x00\x01'
```

Reading from a socket:

```python
from torrentwire.reader import Reader

reader = Reader()
message = reader.readable(sock)  # None while the data is still incomplete
```

## What it does not do

torrentwire has no networking loop, no command-line program and no disk
storage. It does not announce to trackers and does not use the DHT. Beyond
framing `Extension` messages, it does not handle the extension protocol
(peer exchange, fetching metadata for magnet links). Choosing peers and
pieces, and reading and writing piece data on disk, are left to the
application.

## Tests

```
pip install -e .[test]
pytest
```