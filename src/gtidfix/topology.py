"""
Replication topology discovery.

Starting at the node being repaired (the root, level 0), every channel in a
node's replication status names a source; each source becomes a node one
level deeper whose parent_uuid points back at the replica that reported it.
Discovery recurses until it reaches nodes that have no source of their own
(topology tops).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from rich.tree import Tree

from gtidfix.errors import QueryError
from gtidfix.model import Node, Topology
from gtidfix.mysql_client import NodeClient, NodeConnector

logger = logging.getLogger("gtidfix.topology")


@dataclass
class _TopologyBuilder:
    """Accumulates one discovery pass. Never shared between passes."""
    root_uuid: str
    nodes: Dict[str, Node] = field(default_factory=dict)
    tops: List[str] = field(default_factory=list)

    def register(self, node: Node) -> bool:
        """Register a node; the first node seen for a UUID wins."""
        existing = self.nodes.get(node.uuid)
        if existing is not None:
            logger.warning(
                "%s (%s) already discovered at level %d via %s; ignoring path via %s",
                node.uuid, node.address, existing.level, existing.parent_uuid, node.parent_uuid
            )
            return False
        self.nodes[node.uuid] = node
        return True

    def mark_top(self, node: Node) -> None:
        node.is_top = True
        if node.uuid not in self.tops:
            self.tops.append(node.uuid)

    def merge_identity(self, server_id: int, host: str, uuid: str) -> None:
        node = self.nodes.get(uuid)
        if node is None:
            logger.debug("registered replica %s (%s) is outside the walked tree", uuid, host)
            return
        node.server_id = server_id
        if host:
            node.report_host = host

    def build(self) -> Topology:
        return Topology(root_uuid=self.root_uuid, nodes=self.nodes, tops=tuple(self.tops))


def _visit(node: Node, client: NodeClient, connector: NodeConnector,
           builder: _TopologyBuilder) -> None:
    statuses = client.read_own_status()

    if not statuses:
        identity = client.read_server_identity()
        node.server_id = identity.server_id
        node.report_host = identity.report_host or node.report_host
        node.executed_gtid_set = client.read_global_executed_set()
        builder.mark_top(node)
        logger.debug("%s is a topology top", node.address)
        return

    node.executed_gtid_set = statuses[0].executed_gtid_set

    discovered = []
    for status in statuses:
        if not status.source_uuid:
            raise QueryError(
                f"channel '{status.channel_name}' reports no source UUID "
                f"(source {status.source_host}:{status.source_port} never connected?)",
                node=node.address
            )
        source = Node(
            uuid=status.source_uuid,
            host=status.source_host,
            port=status.source_port,
            channel_name=status.channel_name,
            auto_position=status.auto_position,
            io_running=status.io_running,
            sql_running=status.sql_running,
            level=node.level + 1,
            parent_uuid=node.uuid,
        )
        if builder.register(source):
            discovered.append(source)

    for source in discovered:
        logger.debug("visiting %s (level %d, channel '%s')",
                     source.address, source.level, source.channel_name)
        with connector.open(source.host, source.port) as source_client:
            for replica in source_client.read_registered_replicas():
                builder.merge_identity(replica.server_id, replica.host, replica.uuid)
            _visit(source, source_client, connector, builder)


def discover(root_client: NodeClient, connector: NodeConnector) -> Topology:
    """
    Walk the replication topology upstream of root_client.

    Args:
        root_client: Open client for the node being repaired
        connector: Opens connections to every other node with monitor credentials

    Returns:
        A complete Topology for this pass

    Raises:
        NodeConnectionError: A node could not be reached
        QueryError: A node rejected a statement or reported unusable status
    """
    identity = root_client.read_server_identity()
    root = Node(
        uuid=identity.server_uuid,
        host=root_client.host,
        port=root_client.port,
        server_id=identity.server_id,
        report_host=identity.report_host,
        level=0,
    )
    builder = _TopologyBuilder(root_uuid=root.uuid)
    builder.register(root)

    _visit(root, root_client, connector, builder)

    topology = builder.build()
    logger.info("discovered %d node(s), %d top(s) from %s",
                len(topology.nodes), len(topology.tops), root_client.address)
    return topology


def _node_label(node: Node) -> str:
    parts = [f"[bold]{node.label}[/bold] ({node.address})"]
    if node.server_id is not None:
        parts.append(f"server_id={node.server_id}")
    parts.append(f"uuid={node.uuid}")
    if node.level > 0:
        channel = node.channel_name or "default"
        flags = []
        flags.append("auto_position" if node.auto_position else "[red]no auto_position[/red]")
        flags.append(f"io={'yes' if node.io_running else 'no'}")
        flags.append(f"sql={'yes' if node.sql_running else 'no'}")
        parts.append(f"channel={channel} " + " ".join(flags))
    if node.is_top:
        parts.append("[green]top[/green]")
    return " ".join(parts)


def render_topology(topology: Topology) -> Tree:
    """Render the topology as a rich Tree, root first, sources below."""
    def add_sources(tree: Tree, uuid: str) -> None:
        for source in topology.sources_of(uuid):
            branch = tree.add(_node_label(source))
            add_sources(branch, source.uuid)

    tree = Tree(_node_label(topology.root))
    add_sources(tree, topology.root_uuid)
    return tree
