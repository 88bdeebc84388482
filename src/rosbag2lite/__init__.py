# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Rosbag2 reader and writer for sqlite3 backed bags.

A bag is a directory holding a metadata.yaml document and a single sqlite3
database with the recorded messages. Message payloads are stored as opaque
bytes, together with their topic and a nanosecond timestamp.

"""

from .errors import (
    AlreadyExistsError,
    BackendNotOpenError,
    BagNotOpenError,
    CorruptOrUnsupportedError,
    DuplicateConnectionError,
    ReaderError,
    Rosbag2Error,
    UnknownConnectionError,
    UnsupportedCompressionError,
    UnsupportedSerializationError,
    UnsupportedStorageError,
    UnsupportedVersionError,
    WriterError,
)
from .interfaces import Connection, ConnectionExtRosbag2, TopicInfo
from .reader import Reader
from .writer import Writer

__all__ = [
    'AlreadyExistsError',
    'BackendNotOpenError',
    'BagNotOpenError',
    'Connection',
    'ConnectionExtRosbag2',
    'CorruptOrUnsupportedError',
    'DuplicateConnectionError',
    'Reader',
    'ReaderError',
    'Rosbag2Error',
    'TopicInfo',
    'UnknownConnectionError',
    'UnsupportedCompressionError',
    'UnsupportedSerializationError',
    'UnsupportedStorageError',
    'UnsupportedVersionError',
    'Writer',
    'WriterError',
]
