"""Redis (key-value) backend."""

from authstore.backends.redis.adapter import RedisAdapter
from authstore.backends.redis.keys import RedisKeyOptions, RedisKeyspace
from authstore.backends.redis.records import JsonRecordCodec

__all__ = [
    "JsonRecordCodec",
    "RedisAdapter",
    "RedisKeyOptions",
    "RedisKeyspace",
]
