"""
Auto-position pre-flight check.

STOP/RESET/START touch every channel of the root. A channel that is not using
GTID auto-positioning cannot find its restart point after gtid_purged is
rewritten, so a single such channel blocks the repair.
"""

from typing import List

from gtidfix.model import Node, Topology


def auto_position_violations(topology: Topology) -> List[Node]:
    """Return the root's sources whose channel has auto-position disabled."""
    return [n for n in topology.sources_of(topology.root_uuid) if not n.auto_position]


def auto_position_consistent(topology: Topology) -> bool:
    return not auto_position_violations(topology)
