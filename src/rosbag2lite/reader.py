# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Rosbag2 reader."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from .errors import (
    BackendNotOpenError,
    ReaderError,
    UnsupportedCompressionError,
    UnsupportedSerializationError,
    UnsupportedStorageError,
    UnsupportedVersionError,
)
from .interfaces import Connection, ConnectionExtRosbag2, TopicInfo
from .storage_sqlite3 import ReaderSqlite3

if TYPE_CHECKING:
    from types import TracebackType
    from typing import Callable, Generator, Iterable, Literal, Optional, Type, Union

    from .metadata import FileInformation, Metadata

logger = logging.getLogger(__name__)


class StorageProtocol(Protocol):
    """Storage Protocol."""

    def __init__(self, paths: Iterable[Path], connections: Iterable[Connection]):
        """Initialize."""
        raise NotImplementedError  # pragma: no cover

    def open(self) -> None:
        """Open file."""
        raise NotImplementedError  # pragma: no cover

    def close(self) -> None:
        """Close file."""
        raise NotImplementedError  # pragma: no cover

    def rows(
        self,
        connections: Iterable[Connection] = (),
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> Generator[tuple[int, int, bytes], None, None]:
        """Get raw message rows from file."""
        raise NotImplementedError  # pragma: no cover

    def messages(
        self,
        connections: Iterable[Connection] = (),
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> Generator[tuple[Connection, int, bytes], None, None]:
        """Get messages from file."""
        raise NotImplementedError  # pragma: no cover


class Reader:
    """Reader for rosbag2 files.

    It implements all necessary features to access metadata and message
    streams of uncompressed, cdr serialized, sqlite3 backed bags.

    Creating a reader only loads and validates the metadata. The storage
    files are opened by open(), or by entering the reader as contextmanager,
    which has to happen before messages() or handle_messages() are used.
    Unreadable or corrupt database files are reported at that point.

    Version history:

        - Version 1: Initial format.
        - Version 2: Changed field sizes in C++ implementation.
        - Version 3: Added compression.
        - Version 4: Added QoS metadata to topics, changed relative file paths
        - Version 5: Added per file metadata

    """

    # pylint: disable=too-many-instance-attributes

    MAX_VERSION = 5

    STORAGE_PLUGINS: dict[str, Type[StorageProtocol]] = {
        'sqlite3': ReaderSqlite3,
    }

    def __init__(self, path: Union[Path, str], *, abort_on_callback_error: bool = False):
        """Open rosbag and check metadata.

        Args:
            path: Filesystem path to bag.
            abort_on_callback_error: Stop handle_messages on first failing
                callback instead of logging and continuing.

        Raises:
            ReaderError: Bag not readable or bag metadata.

        """
        path = Path(path)
        yamlpath = path / 'metadata.yaml'
        self.path = path
        self.abort_on_callback_error = abort_on_callback_error
        try:
            yaml = YAML(typ='safe')
            dct = yaml.load(yamlpath.read_text())
        except OSError as err:
            raise ReaderError(f'Could not read metadata at {yamlpath}: {err}.') from None
        except YAMLError as exc:
            raise ReaderError(f'Could not load YAML from {yamlpath}: {exc}') from None

        try:
            self.metadata: Metadata = dct['rosbag2_bagfile_information']
            if (ver := self.metadata['version']) > self.MAX_VERSION:
                raise UnsupportedVersionError(
                    f'Rosbag2 version {ver} not supported; please report issue.',
                )

            if self.compression_mode or self.compression_format:
                raise UnsupportedCompressionError(
                    f'Compression {self.compression_format!r} in mode '
                    f'{self.compression_mode!r} is not supported.',
                )

            self.connections = [
                Connection(
                    id=idx + 1,
                    topic=x['topic_metadata']['name'],
                    msgtype=x['topic_metadata']['type'],
                    msgcount=x['message_count'],
                    ext=ConnectionExtRosbag2(
                        serialization_format=x['topic_metadata']['serialization_format'],
                        offered_qos_profiles=x['topic_metadata'].get('offered_qos_profiles', ''),
                    ),
                    owner=self,
                ) for idx, x in enumerate(self.metadata['topics_with_message_count'])
            ]
            noncdr = next(
                (
                    fmt for x in self.connections
                    if (fmt := x.ext.serialization_format) != 'cdr'
                ),
                None,
            )
            if noncdr is not None:
                raise UnsupportedSerializationError(
                    f'Serialization format {noncdr!r} is not supported.',
                )

            if (storageid := self.metadata['storage_identifier']) not in self.STORAGE_PLUGINS:
                raise UnsupportedStorageError(
                    f'Storage plugin {storageid!r} not supported; please report issue.',
                )

            self.paths = [path / x for x in self.metadata['relative_file_paths']]
            if not self.paths:
                raise ReaderError(f'Metadata at {yamlpath} lists no database files.')
            if missing := [x for x in self.paths if not x.exists()]:
                raise ReaderError(f'Some database files are missing: {[str(x) for x in missing]!r}')

            self.files: list[FileInformation] = self.metadata.get('files', [])[:]
            self.custom_data: dict[str, str] = self.metadata.get('custom_data', {})

            self.storage: Optional[StorageProtocol] = None
        except KeyError as exc:
            raise ReaderError(f'A metadata key is missing {exc!r}.') from None
        except TypeError:
            raise ReaderError(f'Metadata at {yamlpath} is malformed.') from None

    @property
    def duration(self) -> int:
        """Duration in nanoseconds between earliest and latest messages."""
        nsecs: int = self.metadata['duration']['nanoseconds']
        return nsecs + 1 if self.message_count else 0

    @property
    def start_time(self) -> int:
        """Timestamp in nanoseconds of the earliest message."""
        nsecs: int = self.metadata['starting_time']['nanoseconds_since_epoch']
        return nsecs if self.message_count else 2**63 - 1

    @property
    def end_time(self) -> int:
        """Timestamp in nanoseconds after the latest message."""
        return self.start_time + self.duration

    @property
    def message_count(self) -> int:
        """Total message count."""
        return self.metadata['message_count']

    @property
    def compression_format(self) -> Optional[str]:
        """Compression format."""
        return self.metadata.get('compression_format', None) or None

    @property
    def compression_mode(self) -> Optional[str]:
        """Compression mode."""
        mode = (self.metadata.get('compression_mode', None) or '').lower()
        return mode if mode not in ('', 'none') else None

    @property
    def ros_distro(self) -> str:
        """Distribution tag of the bag producer."""
        return self.metadata.get('ros_distro', '')

    @property
    def topics(self) -> dict[str, TopicInfo]:
        """Topic information."""
        topics: dict[str, TopicInfo] = {}
        for conn in self.connections:
            if info := topics.get(conn.topic):
                topics[conn.topic] = TopicInfo(
                    info.msgtype,
                    info.msgcount + conn.msgcount,
                    [*info.connections, conn],
                )
            else:
                topics[conn.topic] = TopicInfo(conn.msgtype, conn.msgcount, [conn])
        return topics

    def open(self) -> None:
        """Open rosbag2."""
        storage = self.STORAGE_PLUGINS[self.metadata['storage_identifier']](
            self.paths[:],
            self.connections,
        )
        storage.open()
        self.storage = storage

    def close(self) -> None:
        """Close rosbag2."""
        if not self.storage:
            raise BackendNotOpenError('Rosbag is not open.')
        self.storage.close()
        self.storage = None

    def messages(
        self,
        connections: Iterable[Connection] = (),
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> Generator[tuple[Connection, int, bytes], None, None]:
        """Read messages from bag.

        Args:
            connections: Iterable with connections to filter for. An empty
                iterable disables filtering on connections.
            start: Yield only messages at or after this timestamp (ns).
            stop: Yield only messages before this timestamp (ns).

        Yields:
            tuples of connection, timestamp (ns), and rawdata.

        Raises:
            BackendNotOpenError: If reader was not opened.

        """
        if not self.storage:
            raise BackendNotOpenError('Rosbag is not open.')

        yield from self.storage.messages(connections, start, stop)

    def handle_messages(
        self,
        callback: Callable[[int, int, bytes], object],
        start: Optional[int] = None,
        stop: Optional[int] = None,
        *,
        connections: Iterable[Connection] = (),
    ) -> int:
        """Pass messages to callback in timestamp order.

        Failing callbacks are logged and the scan continues with the next
        message, unless the reader was created with abort_on_callback_error.

        Args:
            callback: Called with topic id, timestamp (ns), and rawdata.
            start: Handle only messages at or after this timestamp (ns).
            stop: Handle only messages before this timestamp (ns).
            connections: Connections to filter for, defaults to all.

        Returns:
            Number of messages whose callback failed.

        Raises:
            BackendNotOpenError: If reader was not opened.

        """
        if not self.storage:
            raise BackendNotOpenError('Rosbag is not open.')

        failures = 0
        for topic_id, timestamp, data in self.storage.rows(
            list(connections) or self.connections,
            start,
            stop,
        ):
            try:
                callback(topic_id, timestamp, data)
            except Exception:  # pylint: disable=broad-except
                if self.abort_on_callback_error:
                    raise
                failures += 1
                logger.warning(
                    'Callback failed for message on topic %d at %d.',
                    topic_id,
                    timestamp,
                    exc_info=True,
                )
        return failures

    def __enter__(self) -> Reader:
        """Open rosbag2 when entering contextmanager."""
        self.open()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> Literal[False]:
        """Close rosbag2 when exiting contextmanager."""
        self.close()
        return False
