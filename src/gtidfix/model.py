"""
Snapshot types shared by the walker, the calculator and the orchestrator.

A Topology is built fresh on every discovery pass and is only valid for the
instant it was read.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Set, Tuple

from gtidfix.gtid_set import GtidInterval, GtidSet


@dataclass
class Node:
    """One MySQL server in the replication tree.

    Attributes:
        uuid: @@server_uuid, the node identity
        host: Host used to connect to the node
        port: Port used to connect to the node
        server_id: @@server_id (None until resolved)
        report_host: Host the node announces (None until resolved)
        channel_name: Channel through which the parent node reads from this one
        auto_position: Whether that channel uses GTID auto-positioning
        io_running: Whether the receiver thread of that channel runs
        sql_running: Whether the applier thread of that channel runs
        executed_gtid_set: The node's own executed set, as text
        level: Distance from the root (root is 0)
        parent_uuid: UUID of the replica that reported this node as its source
        is_top: True when the node has no replication source of its own
    """
    uuid: str
    host: str
    port: int
    server_id: Optional[int] = None
    report_host: Optional[str] = None
    channel_name: str = ""
    auto_position: bool = False
    io_running: bool = False
    sql_running: bool = False
    executed_gtid_set: str = ""
    level: int = 0
    parent_uuid: Optional[str] = None
    is_top: bool = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def label(self) -> str:
        return self.report_host or self.host

    @property
    def executed(self) -> GtidSet:
        return GtidSet.parse(self.executed_gtid_set)


@dataclass(frozen=True)
class Topology:
    """Flat table of nodes keyed by UUID, with parent back-references."""
    root_uuid: str
    nodes: Mapping[str, Node]
    tops: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "nodes", MappingProxyType(dict(self.nodes)))

    @property
    def root(self) -> Node:
        return self.nodes[self.root_uuid]

    def get(self, uuid: str) -> Optional[Node]:
        return self.nodes.get(uuid)

    def sources_of(self, uuid: str) -> List[Node]:
        return [n for n in self.nodes.values() if n.parent_uuid == uuid]

    def uuids(self) -> Set[str]:
        return set(self.nodes)

    def edges(self) -> Set[Tuple[str, Optional[str]]]:
        return {(n.uuid, n.parent_uuid) for n in self.nodes.values()}

    def top_nodes(self) -> List[Node]:
        return [self.nodes[uuid] for uuid in self.tops]


@dataclass(frozen=True)
class ErrantEntry:
    """Errant intervals of one origin UUID, with the owner for display."""
    origin_uuid: str
    intervals: Tuple[GtidInterval, ...]
    server_id: Optional[int] = None
    host: Optional[str] = None

    @property
    def gtid_text(self) -> str:
        return ":".join([self.origin_uuid] + [str(i) for i in self.intervals])


@dataclass(frozen=True)
class ErrantReport:
    """Result of comparing the root's executed set with its sources."""
    entries: Tuple[ErrantEntry, ...] = ()
    gtid_set: GtidSet = field(default_factory=GtidSet)

    def is_empty(self) -> bool:
        return not self.entries


@dataclass(frozen=True)
class RepairPlan:
    """Purge set computed from the executed set frozen after STOP."""
    node_uuid: str
    executed: GtidSet
    errant: GtidSet
    purge: GtidSet

    @property
    def purge_text(self) -> str:
        return str(self.purge)
