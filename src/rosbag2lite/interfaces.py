# Copyright 2020-2023  Ternaris.
# SPDX-License-Identifier: Apache-2.0
"""Shared interfaces."""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from typing import Any


class ConnectionExtRosbag2(NamedTuple):
    """Rosbag2 specific connection extensions."""

    serialization_format: str
    offered_qos_profiles: str


class Connection(NamedTuple):
    """Connection information.

    A connection binds a topic to a message type and serialization settings.
    Connections are created by a Writer or Reader and carry a reference to
    their owner, so connections of different bags never compare equal.

    """

    id: int
    topic: str
    msgtype: str
    msgcount: int
    ext: ConnectionExtRosbag2
    owner: Any


class TopicInfo(NamedTuple):
    """Topic information."""

    msgtype: str
    msgcount: int
    connections: list[Connection]
