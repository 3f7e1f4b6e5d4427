"""Change source providers."""

from .mongo_source import MongoChangeSource, MongoChangeStream

__all__ = ["MongoChangeSource", "MongoChangeStream"]
