"""BitTorrent metainfo, peer wire message framing and torrent status bookkeeping."""

__version__ = "0.1.0"

__all__ = ["info", "messages", "reader", "status", "writer"]