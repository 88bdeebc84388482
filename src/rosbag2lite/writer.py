# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Rosbag2 writer."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ruamel.yaml import YAML

from .errors import (
    AlreadyExistsError,
    BagNotOpenError,
    DuplicateConnectionError,
    UnknownConnectionError,
    WriterError,
)
from .interfaces import Connection, ConnectionExtRosbag2
from .storage_sqlite3 import WriterSqlite3

if TYPE_CHECKING:
    from types import TracebackType
    from typing import Literal, Optional, Type, Union

    from .metadata import BagFileInformation

logger = logging.getLogger(__name__)


class Writer:  # pylint: disable=too-many-instance-attributes
    """Rosbag2 writer.

    This class implements writing of rosbag2 files in version 5 with a single
    sqlite3 storage file. It should be used as a contextmanager.

    A writer is single use, it moves from created to opened to closed and
    cannot be reopened.

    """

    VERSION = 5
    ROS_DISTRO = 'rosbag2lite'
    EMPTY_START = 2**63 - 1

    def __init__(self, path: Union[Path, str]):
        """Initialize writer.

        Args:
            path: Filesystem path to bag.

        """
        path = Path(path)
        self.path = path
        self.metapath = path / 'metadata.yaml'
        self.dbpath = path / f'{path.name}.db3'
        self.compression_mode = ''
        self.compression_format = ''
        self.connections: list[Connection] = []
        self.counts: dict[int, int] = {}
        self.storage: Optional[WriterSqlite3] = None
        self.custom_data: dict[str, str] = {}
        self.used = False

    def set_custom_data(self, key: str, value: str) -> None:
        """Set key value pair in custom_data.

        Args:
            key: Key to set.
            value: Value to set.

        Raises:
            WriterError: If value has incorrect type.

        """
        if not isinstance(value, str):
            raise WriterError(f'Cannot set non-string value {value!r} in custom_data.')
        self.custom_data[key] = value

    def open(self) -> None:
        """Open rosbag2 for writing.

        Create base directory and database with empty schema.

        Raises:
            AlreadyExistsError: Database exists or writer was opened before.

        """
        if self.used:
            raise AlreadyExistsError(f'Writer for {self.path} was opened before.')
        storage = WriterSqlite3(self.dbpath, self.ROS_DISTRO)
        storage.open()
        self.storage = storage
        self.used = True

    def _get_storage(self) -> WriterSqlite3:
        if not self.storage:
            raise BagNotOpenError('Bag was not opened.')
        return self.storage

    def add_connection(
        self,
        topic: str,
        msgtype: str,
        *,
        serialization_format: str = 'cdr',
        offered_qos_profiles: str = '',
    ) -> Connection:
        """Add a connection.

        This function can only be called after opening a bag.

        Args:
            topic: Topic name.
            msgtype: Message type.
            serialization_format: Serialization format.
            offered_qos_profiles: QOS Profile.

        Returns:
            Connection object.

        Raises:
            BagNotOpenError: Bag not open.
            DuplicateConnectionError: Topic and type previously registered.

        """
        storage = self._get_storage()

        for conn in self.connections:
            if conn.topic == topic and conn.msgtype == msgtype:
                raise DuplicateConnectionError(f'Connection can only be added once: {conn!r}.')

        connection = Connection(
            id=len(self.connections) + 1,
            topic=topic,
            msgtype=msgtype,
            msgcount=0,
            ext=ConnectionExtRosbag2(
                serialization_format=serialization_format,
                offered_qos_profiles=offered_qos_profiles,
            ),
            owner=self,
        )
        storage.add_topic(connection)
        self.connections.append(connection)
        self.counts[connection.id] = 0
        return connection

    def write(self, connection: Connection, timestamp: int, data: bytes) -> None:
        """Write message to rosbag2.

        Args:
            connection: Connection to write message to.
            timestamp: Message timestamp (ns).
            data: Serialized message data.

        Raises:
            BagNotOpenError: Bag not open.
            UnknownConnectionError: Connection not issued by this writer.

        """
        storage = self._get_storage()
        if connection not in self.connections:
            raise UnknownConnectionError(f'Tried to write to unknown connection {connection!r}.')

        storage.add_message(connection.id, timestamp, data)
        self.counts[connection.id] += 1

    def close(self) -> None:
        """Close rosbag2 after writing.

        Closes open database transactions and writes metadata.yaml.

        Raises:
            BagNotOpenError: Bag not open.

        """
        storage = self._get_storage()
        span, first, count = storage.finalize()
        storage.close()
        self.storage = None

        duration: int
        start: int
        if span is None or first is None:
            duration, start = 0, self.EMPTY_START
        else:
            duration, start = span, first

        metadata: BagFileInformation = {
            'rosbag2_bagfile_information': {
                'version': self.VERSION,
                'storage_identifier': 'sqlite3',
                'relative_file_paths': [self.dbpath.name],
                'duration': {
                    'nanoseconds': duration,
                },
                'starting_time': {
                    'nanoseconds_since_epoch': start,
                },
                'message_count': count,
                'topics_with_message_count': [
                    {
                        'topic_metadata': {
                            'name': x.topic,
                            'type': x.msgtype,
                            'serialization_format': x.ext.serialization_format,
                            'offered_qos_profiles': x.ext.offered_qos_profiles,
                        },
                        'message_count': self.counts[x.id],
                    } for x in self.connections
                ],
                'compression_format': self.compression_format,
                'compression_mode': self.compression_mode,
                'files': [
                    {
                        'path': self.dbpath.name,
                        'starting_time': {
                            'nanoseconds_since_epoch': start,
                        },
                        'duration': {
                            'nanoseconds': duration,
                        },
                        'message_count': count,
                    },
                ],
                'custom_data': self.custom_data,
                'ros_distro': self.ROS_DISTRO,
            },
        }
        with self.metapath.open('w') as metafile:
            yaml = YAML(typ='safe')
            yaml.default_flow_style = False
            yaml.dump(metadata, metafile)
        logger.debug('Wrote %d messages to %s.', count, self.path)

    def __enter__(self) -> Writer:
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
