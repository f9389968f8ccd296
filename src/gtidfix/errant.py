"""
Errant GTID detection.

A GTID is errant when the root executed it but none of the root's sources
did. Source sets are read live from each source because their appliers keep
running; the subtraction is done by the server with GTID_SUBTRACT().
"""

import logging
from typing import List

from gtidfix.errors import QueryError
from gtidfix.gtid_set import GtidSet
from gtidfix.model import ErrantEntry, ErrantReport, Topology
from gtidfix.mysql_client import NodeClient, NodeConnector

logger = logging.getLogger("gtidfix.errant")


def read_source_sets(topology: Topology, connector: NodeConnector) -> List[str]:
    """Read @@GLOBAL.gtid_executed from each of the root's sources."""
    source_sets = []
    for source in topology.sources_of(topology.root_uuid):
        with connector.open(source.host, source.port) as client:
            executed = client.read_global_executed_set()
        logger.debug("%s gtid_executed=%s", source.address, executed)
        if executed:
            source_sets.append(executed)
    return source_sets


def find_errant_gtids(topology: Topology, root_client: NodeClient,
                      connector: NodeConnector) -> ErrantReport:
    """
    Compute the GTIDs the root executed that no source ever produced.

    Args:
        topology: Snapshot from the current discovery pass
        root_client: Open client for the root, used for GTID_SUBTRACT()
        connector: Opens connections to the root's sources

    Returns:
        ErrantReport grouped by origin UUID; empty when nothing is errant
    """
    if not topology.sources_of(topology.root_uuid):
        logger.warning("%s has no replication source; nothing to compare against",
                       topology.root.address)
        return ErrantReport()

    source_sets = read_source_sets(topology, connector)
    errant_text = root_client.gtid_subtract(
        topology.root.executed_gtid_set, ",".join(source_sets)
    )

    try:
        errant = GtidSet.parse(errant_text)
    except ValueError as e:
        raise QueryError(
            f"cannot parse GTID_SUBTRACT() result '{errant_text}': {e}",
            node=root_client.address,
        ) from e

    entries = []
    for entry in errant:
        owner = topology.get(entry.uuid)
        entries.append(ErrantEntry(
            origin_uuid=entry.uuid,
            intervals=entry.intervals,
            server_id=owner.server_id if owner else None,
            host=owner.label if owner else None,
        ))
    return ErrantReport(entries=tuple(entries), gtid_set=errant)


def format_errant(report: ErrantReport) -> List[str]:
    lines = []
    for entry in report.entries:
        server_id = entry.server_id if entry.server_id is not None else "unknown"
        host = entry.host or "unknown"
        lines.append(f" errant_gtid {entry.gtid_text}: server_id: {server_id}, host {host}")
    return lines
