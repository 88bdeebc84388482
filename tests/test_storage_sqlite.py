# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Sqlite3 storage tests."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from rosbag2lite.errors import (
    AlreadyExistsError,
    BackendNotOpenError,
    BagNotOpenError,
    CorruptOrUnsupportedError,
)
from rosbag2lite.interfaces import Connection, ConnectionExtRosbag2
from rosbag2lite.storage_sqlite3 import ReaderSqlite3, WriterSqlite3

if TYPE_CHECKING:
    from pathlib import Path

SQLITE_SCHEMA_V1 = """
CREATE TABLE topics(
  id INTEGER PRIMARY KEY,
  name TEXT NOT NULL,
  type TEXT NOT NULL,
  serialization_format TEXT NOT NULL
);
CREATE TABLE messages(
  id INTEGER PRIMARY KEY,
  topic_id INTEGER NOT NULL,
  timestamp INTEGER NOT NULL,
  data BLOB NOT NULL
);
CREATE INDEX timestamp_idx ON messages (timestamp ASC);
"""

SQLITE_SCHEMA_V2 = """
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

SQLITE_SCHEMA_V3 = WriterSqlite3.SQLITE_SCHEMA + """
INSERT INTO schema(schema_version, ros_distro) VALUES (3, 'rosbags');
"""

SQLITE_SCHEMA_V4 = WriterSqlite3.SQLITE_SCHEMA + """
INSERT INTO schema(schema_version, ros_distro) VALUES (4, 'rosbags');
"""


def make_connection(cid: int, topic: str, msgtype: str = 'std_msgs/msg/Int8') -> Connection:
    """Create reader side connection."""
    return Connection(cid, topic, msgtype, 0, ConnectionExtRosbag2('cdr', ''), None)


def make_db(path: Path, rows: list[tuple[int, int, bytes]]) -> None:
    """Create database with two topics and given messages."""
    con = sqlite3.connect(path)
    con.executescript(SQLITE_SCHEMA_V3)
    with con:
        con.execute(
            'INSERT INTO topics VALUES(?, ?, ?, ?, ?)',
            (1, '/a', 'std_msgs/msg/Int8', 'cdr', ''),
        )
        con.execute(
            'INSERT INTO topics VALUES(?, ?, ?, ?, ?)',
            (2, "/it's", 'std_msgs/msg/Int8', 'cdr', ''),
        )
        con.executemany('INSERT INTO messages (topic_id, timestamp, data) VALUES(?, ?, ?)', rows)
    con.close()


def test_detects_schema_version(tmp_path: Path) -> None:
    """Test schema version is detected."""
    for index, version in enumerate(
        [
            SQLITE_SCHEMA_V1,
            SQLITE_SCHEMA_V2,
            SQLITE_SCHEMA_V3,
            SQLITE_SCHEMA_V4,
        ],
    ):
        dbpath = tmp_path / 'db.db3'
        dbpath.unlink(missing_ok=True)
        con = sqlite3.connect(dbpath)
        con.executescript(version)
        con.close()
        reader = ReaderSqlite3([dbpath], [])
        reader.open()
        assert reader.schema == index + 1
        reader.close()


def test_missing_tables(tmp_path: Path) -> None:
    """Test databases without required tables are refused."""
    dbpath = tmp_path / 'db.db3'
    con = sqlite3.connect(dbpath)
    con.execute('CREATE TABLE topics(id INTEGER PRIMARY KEY)')
    con.close()
    with pytest.raises(CorruptOrUnsupportedError, match='missing tables'):
        ReaderSqlite3([dbpath], []).open()

    dbpath.write_bytes(b'this is not a database at all, just some bytes' * 100)
    with pytest.raises(CorruptOrUnsupportedError, match='Cannot open database'):
        ReaderSqlite3([dbpath], []).open()


def test_multiple_files_unsupported(tmp_path: Path) -> None:
    """Test multi file bags are refused."""
    make_db(tmp_path / 'a.db3', [])
    make_db(tmp_path / 'b.db3', [])
    with pytest.raises(NotImplementedError, match='multiple database files'):
        ReaderSqlite3([tmp_path / 'a.db3', tmp_path / 'b.db3'], []).open()


def test_raises_on_closed_reader(tmp_path: Path) -> None:
    """Test closed reader refuses queries."""
    dbpath = tmp_path / 'db.db3'
    make_db(dbpath, [])

    reader = ReaderSqlite3([dbpath], [])

    with pytest.raises(BackendNotOpenError):
        reader.build_query()

    with pytest.raises(BackendNotOpenError):
        next(reader.rows())

    with pytest.raises(BackendNotOpenError):
        next(reader.messages())

    with pytest.raises(BackendNotOpenError):
        reader.close()


def test_build_query(tmp_path: Path) -> None:
    """Test query construction."""
    dbpath = tmp_path / 'db.db3'
    make_db(dbpath, [])
    reader = ReaderSqlite3([dbpath], [])
    reader.open()

    query, args = reader.build_query()
    assert query == (
        'SELECT topics.id,messages.timestamp,messages.data '
        'FROM messages JOIN topics ON messages.topic_id=topics.id '
        'ORDER BY messages.timestamp'
    )
    assert args == []

    query, args = reader.build_query([make_connection(1, '/a')], 3, 7)
    assert 'WHERE topics.name IN (?) AND messages.timestamp >= ? AND messages.timestamp < ?' in query
    assert query.endswith('ORDER BY messages.timestamp')
    assert args == ['/a', 3, 7]

    query, args = reader.build_query(stop=5)
    assert 'WHERE messages.timestamp < ?' in query
    assert args == [5]
    reader.close()


def test_rows(tmp_path: Path) -> None:
    """Test row iteration, ordering and filters."""
    dbpath = tmp_path / 'db.db3'
    make_db(dbpath, [(1, ts, bytes([ts])) for ts in (9, 3, 0, 7, 1, 5, 2, 8, 6, 4)])

    reader = ReaderSqlite3([dbpath], [])
    reader.open()
    assert [x[1] for x in reader.rows()] == list(range(10))
    assert [x[1] for x in reader.rows(start=3, stop=7)] == [3, 4, 5, 6]
    assert [x[1] for x in reader.rows(start=8)] == [8, 9]
    assert [x[1] for x in reader.rows(stop=2)] == [0, 1]
    assert not list(reader.rows(start=5, stop=5))
    assert not list(reader.rows([make_connection(2, "/it's")]))
    assert [x[2] for x in reader.rows([make_connection(1, '/a')], stop=2)] == [b'\x00', b'\x01']
    reader.close()


def test_messages_map_connections(tmp_path: Path) -> None:
    """Test rows are mapped to reader connections."""
    dbpath = tmp_path / 'db.db3'
    make_db(dbpath, [(2, 1, b'\x01'), (1, 2, b'\x02'), (3, 3, b'\x03')])

    conns = [make_connection(1, "/it's"), make_connection(2, '/a')]
    reader = ReaderSqlite3([dbpath], conns)
    reader.open()
    messages = list(reader.messages())
    assert [(x[0].topic, x[1], x[2]) for x in messages] == [
        ("/it's", 1, b'\x01'),
        ('/a', 2, b'\x02'),
    ]
    assert [x[0] for x in messages] == conns
    reader.close()


def test_writer_storage(tmp_path: Path) -> None:
    """Test storage writer."""
    dbpath = tmp_path / 'sub' / 'dir' / 'db.db3'
    writer = WriterSqlite3(dbpath)

    with pytest.raises(BagNotOpenError):
        writer.add_message(1, 1, b'')

    writer.open()
    assert writer.finalize() == (None, None, 0)

    writer.add_topic(make_connection(1, '/a'))
    writer.add_message(1, 10, b'\x0a')
    writer.add_message(1, 4, b'\x04')
    writer.add_message(1, 12, b'\x0c')
    assert writer.finalize() == (8, 4, 3)
    writer.close()

    with pytest.raises(BagNotOpenError):
        writer.close()

    with pytest.raises(AlreadyExistsError):
        WriterSqlite3(dbpath).open()

    reader = ReaderSqlite3([dbpath], [])
    reader.open()
    assert reader.schema == 3
    assert [x[1] for x in reader.rows()] == [4, 10, 12]
    reader.close()


def test_reader_without_files() -> None:
    """Test closing a reader that opened no files."""
    reader = ReaderSqlite3([], [])
    reader.open()
    with pytest.raises(BackendNotOpenError):
        reader.build_query()
    reader.close()
    with pytest.raises(BackendNotOpenError):
        reader.close()


def test_failed_writer_setup_is_removed(tmp_path: Path) -> None:
    """Test a failing schema setup leaves no database behind."""
    dbpath = tmp_path / 'db.db3'
    writer = WriterSqlite3(dbpath)
    writer.SQLITE_SCHEMA = 'CREATE TABLE broken('  # type: ignore
    with pytest.raises(sqlite3.OperationalError):
        writer.open()
    assert not dbpath.exists()
    with pytest.raises(BagNotOpenError):
        writer.close()

    writer = WriterSqlite3(dbpath)
    writer.open()
    assert writer.finalize() == (None, None, 0)
    writer.close()


def test_uri_characters_in_path(tmp_path: Path) -> None:
    """Test database paths are not parsed as uri components."""
    (tmp_path / 'run').write_bytes(b'unrelated')
    dbpath = tmp_path / 'run#1' / 'run#1.db3'
    writer = WriterSqlite3(dbpath)
    writer.open()
    writer.add_topic(make_connection(1, '/a'))
    writer.add_message(1, 5, b'\x05')
    writer.finalize()
    writer.close()
    assert dbpath.exists()
    assert (tmp_path / 'run').read_bytes() == b'unrelated'

    reader = ReaderSqlite3([dbpath], [])
    reader.open()
    assert [x[1] for x in reader.rows()] == [5]
    reader.close()
