"""
Tests for the auto-position pre-flight check.
"""

from gtidfix.consistency import auto_position_consistent, auto_position_violations
from gtidfix.model import Node, Topology

ROOT = "root-uuid"


def make_topology(flags, deep_flag=True):
    nodes = {ROOT: Node(uuid=ROOT, host="db-root", port=3306, level=0)}
    for i, flag in enumerate(flags):
        uuid = f"src-{i}"
        nodes[uuid] = Node(uuid=uuid, host=f"db-src{i}", port=3306, level=1,
                           parent_uuid=ROOT, channel_name=f"ch{i}", auto_position=flag)
    nodes["deep"] = Node(uuid="deep", host="db-deep", port=3306, level=2,
                         parent_uuid="src-0", auto_position=deep_flag, is_top=True)
    return Topology(root_uuid=ROOT, nodes=nodes, tops=("deep",))


def test_uniform_auto_position_passes():
    topology = make_topology([True, True, True])
    assert auto_position_consistent(topology) is True
    assert auto_position_violations(topology) == []


def test_single_channel_without_auto_position_fails():
    topology = make_topology([True, False, True])
    assert auto_position_consistent(topology) is False
    assert [n.channel_name for n in auto_position_violations(topology)] == ["ch1"]


def test_channels_not_touched_by_repair_are_ignored():
    # only the root's own channels are stopped and reset
    topology = make_topology([True, True], deep_flag=False)
    assert auto_position_consistent(topology) is True


def test_root_without_sources_is_consistent():
    topology = Topology(root_uuid=ROOT, nodes={ROOT: Node(uuid=ROOT, host="db-root", port=3306)})
    assert auto_position_consistent(topology) is True
