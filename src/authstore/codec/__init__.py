"""Identity codecs shared across backends."""

from authstore.codec.base import Codec
from authstore.codec.identifiers import PrefixedIdCodec, UuidCodec
from authstore.codec.timestamps import ISO_TIMESTAMPS, IsoTimestampCodec

__all__ = [
    "Codec",
    "ISO_TIMESTAMPS",
    "IsoTimestampCodec",
    "PrefixedIdCodec",
    "UuidCodec",
]
