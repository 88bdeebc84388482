"""Example: Create a bag with a latched topic and read it back."""

from pathlib import Path

from rosbag2lite import Reader, Writer

LATCH = """
- history: 3
  depth: 0
  reliability: 1
  durability: 1
  deadline:
    sec: 2147483647
    nsec: 4294967295
  lifespan:
    sec: 2147483647
    nsec: 4294967295
  liveliness: 1
  liveliness_lease_duration:
    sec: 2147483647
    nsec: 4294967295
  avoid_ros_namespace_conventions: false
""".strip()

# Little endian cdr header followed by (int32)10795.
DATA = b'\x00\x01\x00\x00\x2b\x2a\x00\x00'

path = Path('example_bag')

with Writer(path) as writer:
    connection = writer.add_connection(
        '/example_topic',
        'std_msgs/msg/Int32',
        offered_qos_profiles=LATCH,
    )
    for i in range(50):
        writer.write(connection, 1_000_000_000 * i, DATA)


def show(topic_id: int, timestamp: int, rawdata: bytes) -> None:
    """Print a single message."""
    print(topic_id, timestamp, rawdata.hex())  # noqa: T201


with Reader(path) as reader:
    print(reader.topics)  # noqa: T201
    reader.handle_messages(show, start=10_000_000_000, stop=20_000_000_000)
