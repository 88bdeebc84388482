# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Rosbag2 errors."""

from __future__ import annotations


class Rosbag2Error(Exception):
    """Rosbag2 Error."""


class BagNotOpenError(Rosbag2Error):
    """Operation requires an open bag."""


class WriterError(Rosbag2Error):
    """Writer Error."""


class AlreadyExistsError(WriterError):
    """Write target is occupied already."""


class DuplicateConnectionError(WriterError):
    """Connection was registered before."""


class UnknownConnectionError(WriterError):
    """Connection was not issued by this writer."""


class ReaderError(Rosbag2Error):
    """Reader Error."""


class UnsupportedVersionError(ReaderError):
    """Bag version is newer than supported."""


class UnsupportedCompressionError(ReaderError):
    """Bag is compressed."""


class UnsupportedSerializationError(ReaderError):
    """Topic serialization format is not cdr."""


class UnsupportedStorageError(ReaderError):
    """Storage identifier is not supported."""


class CorruptOrUnsupportedError(ReaderError):
    """Database file is unreadable or misses required tables."""


class BackendNotOpenError(ReaderError):
    """Storage backend was not opened."""
