"""MongoDB (document store) backend."""

from authstore.backends.mongodb.adapter import MongoCollections, MongoDBAdapter
from authstore.backends.mongodb.codec import DocumentCodec, ObjectIdCodec

__all__ = [
    "DocumentCodec",
    "MongoCollections",
    "MongoDBAdapter",
    "ObjectIdCodec",
]
