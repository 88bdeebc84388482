# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Sqlite3 storage."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from .errors import (
    AlreadyExistsError,
    BackendNotOpenError,
    BagNotOpenError,
    CorruptOrUnsupportedError,
)

if TYPE_CHECKING:
    from pathlib import Path
    from typing import Any, Callable, Generator, Iterable, Optional

    from .interfaces import Connection

logger = logging.getLogger(__name__)


def _schema_from_table(conn: sqlite3.Connection) -> Optional[int]:
    """Read explicit version from schema table."""
    cur = conn.execute(
        "SELECT count(*) FROM sqlite_master WHERE type='table' AND name='schema'",
    )
    if not cur.fetchone()[0]:
        return None
    row = conn.execute('SELECT schema_version FROM schema').fetchone()
    return int(row[0]) if row else None


def _schema_from_qos_column(conn: sqlite3.Connection) -> Optional[int]:
    """Detect version 2 by its QoS column."""
    columns = {row[1] for row in conn.execute('PRAGMA table_info(topics)')}
    return 2 if 'offered_qos_profiles' in columns else None


def _schema_fallback(_: sqlite3.Connection) -> Optional[int]:
    """Oldest layout."""
    return 1


SCHEMA_RULES: tuple[Callable[[sqlite3.Connection], Optional[int]], ...] = (
    _schema_from_table,
    _schema_from_qos_column,
    _schema_fallback,
)


def detect_schema(conn: sqlite3.Connection) -> int:
    """Detect schema version of database.

    Rules are evaluated in order, the first one to return a version wins.

    Args:
        conn: Open database connection.

    Returns:
        Schema version.

    """
    for rule in SCHEMA_RULES:
        if (version := rule(conn)) is not None:
            return version
    raise AssertionError('Schema rules exhausted.')  # pragma: no cover


class ReaderSqlite3:
    """Sqlite3 storage reader."""

    def __init__(
        self,
        paths: Iterable[Path],
        connections: Iterable[Connection],
    ):
        """Set up storage reader.

        Args:
            paths: Paths of storage files.
            connections: List of connections.

        """
        self.opened = False
        self.dbconns: list[sqlite3.Connection] = []
        self.schema = 0
        self.paths = list(paths)
        self.connections = list(connections)

    def open(self) -> None:
        """Open rosbag2.

        Raises:
            CorruptOrUnsupportedError: Database is unreadable or misses tables.
            NotImplementedError: Bag consists of multiple database files.

        """
        if len(self.paths) > 1:
            raise NotImplementedError('Bags with multiple database files are not supported.')

        for path in self.paths:
            try:
                conn = sqlite3.connect(f'{path.resolve().as_uri()}?mode=ro', uri=True)
            except sqlite3.Error as err:
                raise CorruptOrUnsupportedError(f'Cannot open database {path}: {err}') from None
            try:
                cur = conn.execute(
                    "SELECT count(*) FROM sqlite_master "
                    "WHERE type='table' AND name IN ('messages', 'topics')",
                )
                tables = cur.fetchone()[0]
                if tables == 2:
                    self.schema = detect_schema(conn)
            except sqlite3.DatabaseError as err:
                conn.close()
                raise CorruptOrUnsupportedError(f'Cannot open database {path}: {err}') from None
            if tables != 2:
                conn.close()
                raise CorruptOrUnsupportedError(
                    f'Cannot open database {path} or database missing tables.',
                )
            logger.debug('Opened %s with schema version %d.', path, self.schema)
            self.dbconns.append(conn)
        self.opened = True

    def close(self) -> None:
        """Close rosbag2."""
        if not self.opened:
            raise BackendNotOpenError('Rosbag has not been opened.')
        for conn in self.dbconns:
            conn.close()
        self.dbconns = []
        self.opened = False

    def build_query(
        self,
        connections: Iterable[Connection] = (),
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> tuple[str, list[Any]]:
        """Build message query.

        Args:
            connections: Iterable with connections to filter for. An empty
                iterable disables filtering on connections.
            start: Select only messages at or after this timestamp (ns).
            stop: Select only messages before this timestamp (ns).

        Returns:
            Query string and bound arguments.

        Raises:
            BackendNotOpenError: Bag not open.

        """
        if not self.dbconns:
            raise BackendNotOpenError('Rosbag has not been opened.')

        query = [
            'SELECT topics.id,messages.timestamp,messages.data',
            'FROM messages JOIN topics ON messages.topic_id=topics.id',
        ]
        args: list[Any] = []
        clause = 'WHERE'

        if topics := sorted({x.topic for x in connections}):
            query.append(f'{clause} topics.name IN ({",".join("?" for _ in topics)})')
            args += topics
            clause = 'AND'

        if start is not None:
            query.append(f'{clause} messages.timestamp >= ?')
            args.append(start)
            clause = 'AND'

        if stop is not None:
            query.append(f'{clause} messages.timestamp < ?')
            args.append(stop)

        query.append('ORDER BY messages.timestamp')
        return ' '.join(query), args

    def rows(
        self,
        connections: Iterable[Connection] = (),
        start: Optional[int] = None,
        stop: Optional[int] = None,
    ) -> Generator[tuple[int, int, bytes], None, None]:
        """Read raw message rows from bag.

        Args:
            connections: Iterable with connections to filter for. An empty
                iterable disables filtering on connections.
            start: Yield only messages at or after this timestamp (ns).
            stop: Yield only messages before this timestamp (ns).

        Yields:
            tuples of database topic id, timestamp (ns), and rawdata.

        """
        querystr, args = self.build_query(connections, start, stop)
        yield from self.dbconns[0].execute(querystr, args)

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
            BackendNotOpenError: Bag not open.

        """
        if not self.dbconns:
            raise BackendNotOpenError('Rosbag has not been opened.')

        connmap: dict[int, Connection] = {}
        for name, msgtype, cid in self.dbconns[0].execute('SELECT name,type,id FROM topics'):
            match = next(
                (x for x in self.connections if x.topic == name and x.msgtype == msgtype),
                None,
            )
            if match:
                connmap[cid] = match

        # Rows of topics absent from metadata are not part of the bag.
        for cid, timestamp, data in self.rows(connections, start, stop):
            if (connection := connmap.get(cid)) is not None:
                yield connection, timestamp, data


class WriterSqlite3:
    """Sqlite3 storage writer."""

    SQLITE_SCHEMA = """
    CREATE TABLE schema(
      schema_version INTEGER PRIMARY KEY,
      ros_distro TEXT NOT NULL
    );
    CREATE TABLE metadata(
      id INTEGER PRIMARY KEY,
      metadata_version INTEGER NOT NULL,
      metadata TEXT NOT NULL
    );
    CREATE TABLE topics(
      id INTEGER PRIMARY KEY,
      name TEXT NOT NULL,
      type TEXT NOT NULL,
      serialization_format TEXT NOT NULL,
      offered_qos_profiles TEXT NOT NULL
    );
    CREATE TABLE messages(
      id INTEGER PRIMARY KEY,
      topic_id INTEGER NOT NULL,
      timestamp INTEGER NOT NULL,
      data BLOB NOT NULL
    );
    CREATE INDEX timestamp_idx ON messages (timestamp ASC);
    """

    SCHEMA_VERSION = 3

    def __init__(self, path: Path, ros_distro: str = 'rosbag2lite'):
        """Set up storage writer.

        Args:
            path: Path of database file to create.
            ros_distro: Provenance tag stored in schema table.

        """
        self.path = path
        self.ros_distro = ros_distro
        self.conn: Optional[sqlite3.Connection] = None

    def open(self) -> None:
        """Create database file and schema.

        Raises:
            AlreadyExistsError: Database file exists already.

        """
        if self.path.exists():
            raise AlreadyExistsError(f'{self.path} exists already, not overwriting.')
        self.path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        conn = sqlite3.connect(self.path)
        try:
            conn.executescript(self.SQLITE_SCHEMA)
            conn.execute(
                'INSERT INTO schema(schema_version, ros_distro) VALUES(?, ?)',
                (self.SCHEMA_VERSION, self.ros_distro),
            )
        except sqlite3.Error:
            conn.close()
            self.path.unlink(missing_ok=True)
            raise
        self.conn = conn
        logger.debug('Created database %s.', self.path)

    def _get_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise BagNotOpenError('Bag was not opened.')
        return self.conn

    def add_topic(self, connection: Connection) -> None:
        """Insert topic row for connection.

        Args:
            connection: Connection to insert.

        """
        self._get_conn().execute(
            'INSERT INTO topics VALUES(?, ?, ?, ?, ?)',
            (
                connection.id,
                connection.topic,
                connection.msgtype,
                connection.ext.serialization_format,
                connection.ext.offered_qos_profiles,
            ),
        )

    def add_message(self, connection_id: int, timestamp: int, data: bytes) -> None:
        """Insert message row.

        Args:
            connection_id: Topic id of message.
            timestamp: Message timestamp (ns).
            data: Serialized message data.

        """
        self._get_conn().execute(
            'INSERT INTO messages (topic_id, timestamp, data) VALUES(?, ?, ?)',
            (connection_id, timestamp, data),
        )

    def finalize(self) -> tuple[Optional[int], Optional[int], int]:
        """Commit data and compute aggregates.

        Returns:
            Duration between earliest and latest message, earliest timestamp,
            and message count. Duration and timestamp are None for empty bags.

        """
        conn = self._get_conn()
        # Subtract in python, sqlite turns overflowing integer arithmetic into REAL.
        start, end, count = conn.execute(
            'SELECT min(timestamp), max(timestamp), count(*) FROM messages',
        ).fetchone()
        conn.commit()
        conn.execute('PRAGMA optimize')
        if not count:
            return None, None, 0
        return end - start, start, count

    def close(self) -> None:
        """Close database connection."""
        conn = self._get_conn()
        conn.close()
        self.conn = None
        logger.debug('Closed database %s.', self.path)
