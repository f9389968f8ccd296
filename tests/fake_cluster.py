"""
In-memory MySQL topology for tests.

FakeCluster holds servers keyed by host:port. Replication status rows and
registered-replica rows are derived from each server's declared sources, so a
fixture only lists who replicates from whom.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from gtidfix.errors import NodeConnectionError
from gtidfix.gtid_set import GtidSet
from gtidfix.mysql_client import (
    LEGACY_DIALECT,
    RegisteredReplica,
    ReplicationStatus,
    ServerIdentity,
)

DESTRUCTIVE_OPS = ("reset_replica", "reset_source", "set_gtid_purged")


@dataclass
class FakeServer:
    uuid: str
    host: str
    port: int = 3306
    server_id: int = 1
    report_host: Optional[str] = None
    executed: str = ""
    # (source uuid, channel, auto_position)
    sources: List[Tuple[str, str, bool]] = field(default_factory=list)
    executed_after_stop: Optional[str] = None
    # raw GTID_SUBTRACT() text, for results the server renders but gtidfix cannot parse
    subtract_result: Optional[str] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class FakeCluster:
    def __init__(self):
        self.servers: Dict[str, FakeServer] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.unreachable = set()
        self.opened: List[str] = []
        self.closed: List[str] = []
        self.on_stop = None

    def add(self, uuid, host, port=3306, server_id=1, executed="", sources=(),
            report_host=None) -> FakeServer:
        server = FakeServer(
            uuid=uuid, host=host, port=port, server_id=server_id,
            report_host=report_host, executed=executed,
            sources=[tuple(s) if isinstance(s, (tuple, list)) else (s, "", True) for s in sources],
        )
        self.servers[server.address] = server
        return server

    def by_uuid(self, uuid) -> FakeServer:
        for server in self.servers.values():
            if server.uuid == uuid:
                return server
        raise KeyError(uuid)

    def fail(self, address: str, op: str, error: Exception) -> None:
        self.failures[(address, op)] = error

    def client(self, address: str) -> "FakeNodeClient":
        return FakeNodeClient(self, self.servers[address])

    def ops(self, address: Optional[str] = None) -> List[str]:
        return [op for addr, op in self.calls if address is None or addr == address]

    def destructive_ops(self, address: Optional[str] = None) -> List[str]:
        return [op for op in self.ops(address) if op in DESTRUCTIVE_OPS]

    def connector(self) -> "FakeConnector":
        return FakeConnector(self)


class FakeNodeClient:
    """Implements the NodeClient surface against a FakeServer."""

    def __init__(self, cluster: FakeCluster, server: FakeServer):
        self.cluster = cluster
        self.server = server
        self.host = server.host
        self.port = server.port
        self.dialect = LEGACY_DIALECT

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def _call(self, op: str) -> None:
        self.cluster.calls.append((self.address, op))
        error = self.cluster.failures.get((self.address, op))
        if error is not None:
            raise error

    def read_own_status(self):
        self._call("read_own_status")
        statuses = []
        for source_uuid, channel, auto_position in self.server.sources:
            source = self.cluster.by_uuid(source_uuid)
            statuses.append(ReplicationStatus(
                auto_position=auto_position,
                channel_name=channel,
                executed_gtid_set=self.server.executed,
                source_host=source.host,
                source_port=source.port,
                source_uuid=source.uuid,
                io_running=True,
                sql_running=True,
            ))
        return statuses

    def read_registered_replicas(self):
        self._call("read_registered_replicas")
        replicas = []
        for server in self.cluster.servers.values():
            if any(uuid == self.server.uuid for uuid, _, _ in server.sources):
                replicas.append(RegisteredReplica(
                    server_id=server.server_id,
                    host=server.report_host or server.host,
                    uuid=server.uuid,
                ))
        return replicas

    def read_global_executed_set(self):
        self._call("read_global_executed_set")
        return self.server.executed

    def read_server_identity(self):
        self._call("read_server_identity")
        return ServerIdentity(
            report_host=self.server.report_host,
            server_id=self.server.server_id,
            server_uuid=self.server.uuid,
        )

    def gtid_subtract(self, gtid_set, subtracted):
        self._call("gtid_subtract")
        if self.server.subtract_result is not None:
            return self.server.subtract_result
        return str(GtidSet.parse(gtid_set).subtract(GtidSet.parse(subtracted)))

    def stop_replica(self):
        self._call("stop_replica")
        if self.cluster.on_stop is not None:
            self.cluster.on_stop()
        if self.server.executed_after_stop is not None:
            self.server.executed = self.server.executed_after_stop

    def start_replica(self):
        self._call("start_replica")

    def reset_replica(self):
        self._call("reset_replica")

    def reset_source(self):
        self._call("reset_source")

    def set_gtid_purged(self, gtid_set):
        self._call("set_gtid_purged")
        self.server.executed = gtid_set

    def describe_apply(self, purge_text):
        return ["RESET SLAVE", "RESET MASTER", f"SET GLOBAL gtid_purged='{purge_text}'"]


class FakeConnector:
    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster

    @contextmanager
    def open(self, host, port):
        address = f"{host}:{port}"
        if address in self.cluster.unreachable or address not in self.cluster.servers:
            raise NodeConnectionError("cannot connect: refused", node=address)
        self.cluster.opened.append(address)
        try:
            yield self.cluster.client(address)
        finally:
            self.cluster.closed.append(address)
