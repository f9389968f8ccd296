"""
MySQL node access for gtidfix.

One NodeClient wraps one pymysql connection. Connections are opened per node
visit through NodeConnector.open() or open_root() and always closed when the
visit ends, including on errors.

Statement forms follow the server version: 8.0.22+ speaks REPLICA/SOURCE,
8.2+ resets binary logs with RESET BINARY LOGS AND GTIDS, older servers use
the SLAVE/MASTER forms.
"""

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import pymysql
import pymysql.cursors
from pymysql.constants import CR

from gtidfix.errors import NodeConnectionError, QueryError
from gtidfix.gtid_set import normalize_gtid_text

logger = logging.getLogger("gtidfix.mysql")

_CONNECTION_LOST_CODES = {
    CR.CR_CONN_HOST_ERROR,
    CR.CR_SERVER_GONE_ERROR,
    CR.CR_SERVER_LOST,
}

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True)
class Credentials:
    """Monitor account shared by every node except the root."""
    user: str
    password: str = ""

    def __repr__(self) -> str:
        return f"Credentials(user={self.user!r}, password='***')"


@dataclass(frozen=True)
class ReplicationStatus:
    """One row of SHOW REPLICA STATUS: a channel and the source it reads."""
    auto_position: bool
    channel_name: str
    executed_gtid_set: str
    source_host: str
    source_port: int
    source_uuid: str
    io_running: bool
    sql_running: bool


@dataclass(frozen=True)
class RegisteredReplica:
    """One row of SHOW REPLICAS: a replica announced to this node."""
    server_id: int
    host: str
    uuid: str


@dataclass(frozen=True)
class ServerIdentity:
    report_host: Optional[str]
    server_id: int
    server_uuid: str


@dataclass(frozen=True)
class Dialect:
    """Statement forms for one server generation."""
    name: str
    show_status: str
    show_replicas: str
    stop_replica: str
    start_replica: str
    reset_replica: str
    reset_source: str


LEGACY_DIALECT = Dialect(
    name="legacy",
    show_status="SHOW SLAVE STATUS",
    show_replicas="SHOW SLAVE HOSTS",
    stop_replica="STOP SLAVE",
    start_replica="START SLAVE",
    reset_replica="RESET SLAVE",
    reset_source="RESET MASTER",
)

REPLICA_DIALECT = Dialect(
    name="replica",
    show_status="SHOW REPLICA STATUS",
    show_replicas="SHOW REPLICAS",
    stop_replica="STOP REPLICA",
    start_replica="START REPLICA",
    reset_replica="RESET REPLICA",
    reset_source="RESET MASTER",
)

BINARY_LOGS_DIALECT = Dialect(
    name="binary-logs",
    show_status="SHOW REPLICA STATUS",
    show_replicas="SHOW REPLICAS",
    stop_replica="STOP REPLICA",
    start_replica="START REPLICA",
    reset_replica="RESET REPLICA",
    reset_source="RESET BINARY LOGS AND GTIDS",
)

SET_GTID_PURGED = "SET GLOBAL gtid_purged = %s"


def parse_server_version(version: str) -> Tuple[int, int, int]:
    """Parse '8.0.35-27' or '5.7.44-log' into (8, 0, 35)."""
    match = _VERSION_RE.match(version or "")
    if not match:
        return (0, 0, 0)
    return tuple(int(part) for part in match.groups())


def dialect_for_version(version: str) -> Dialect:
    parsed = parse_server_version(version)
    if parsed >= (8, 2, 0):
        return BINARY_LOGS_DIALECT
    if parsed >= (8, 0, 22):
        return REPLICA_DIALECT
    return LEGACY_DIALECT


def _column(row: Dict, *names, default=None):
    for name in names:
        if name in row:
            return row[name]
    return default


def _is_yes(value) -> bool:
    return str(value or "").strip().lower() == "yes"


def _translate_error(exc: Exception, address: str, statement: str):
    code = exc.args[0] if exc.args else None
    if isinstance(exc, pymysql.err.InterfaceError) or (
        isinstance(exc, pymysql.err.OperationalError) and code in _CONNECTION_LOST_CODES
    ):
        return NodeConnectionError(f"connection lost during '{statement}': {exc}", node=address)
    return QueryError(f"'{statement}' failed: {exc}", node=address)


class NodeClient:
    """
    Administrative operations against one MySQL node.

    Attributes:
        connection: Open pymysql connection
        host: Host the connection was made to
        port: Port the connection was made to
        dialect: Statement forms matching the server version
    """

    def __init__(self, connection, host: str, port: int, dialect: Optional[Dialect] = None):
        self.connection = connection
        self.host = host
        self.port = port
        if dialect is None:
            dialect = dialect_for_version(connection.get_server_info())
        self.dialect = dialect

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def _query(self, statement: str, args=None) -> List[Dict]:
        logger.debug("%s: %s", self.address, statement)
        try:
            with self.connection.cursor(pymysql.cursors.DictCursor) as cursor:
                cursor.execute(statement, args)
                return list(cursor.fetchall())
        except pymysql.MySQLError as e:
            raise _translate_error(e, self.address, statement) from e

    def _execute(self, statement: str, args=None) -> None:
        logger.info("%s: executing %s", self.address, statement)
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(statement, args)
        except pymysql.MySQLError as e:
            raise _translate_error(e, self.address, statement) from e

    def _scalar(self, statement: str, args=None, column: str = "value"):
        rows = self._query(statement, args)
        if not rows:
            raise QueryError(f"'{statement}' returned no rows", node=self.address)
        return rows[0][column]

    # --- reads ---

    def read_own_status(self) -> List[ReplicationStatus]:
        statuses = []
        for row in self._query(self.dialect.show_status):
            statuses.append(ReplicationStatus(
                auto_position=bool(int(_column(row, "Auto_Position", default=0) or 0)),
                channel_name=_column(row, "Channel_Name", default="") or "",
                executed_gtid_set=normalize_gtid_text(_column(row, "Executed_Gtid_Set", default="")),
                source_host=_column(row, "Source_Host", "Master_Host", default=""),
                source_port=int(_column(row, "Source_Port", "Master_Port", default=3306)),
                source_uuid=_column(row, "Source_UUID", "Master_UUID", default=""),
                io_running=_is_yes(_column(row, "Replica_IO_Running", "Slave_IO_Running")),
                sql_running=_is_yes(_column(row, "Replica_SQL_Running", "Slave_SQL_Running")),
            ))
        return statuses

    def read_registered_replicas(self) -> List[RegisteredReplica]:
        replicas = []
        for row in self._query(self.dialect.show_replicas):
            replicas.append(RegisteredReplica(
                server_id=int(_column(row, "Server_Id", "Server_id")),
                host=_column(row, "Host", default=""),
                uuid=_column(row, "Replica_UUID", "Slave_UUID", default=""),
            ))
        return replicas

    def read_global_executed_set(self) -> str:
        value = self._scalar("SELECT @@GLOBAL.gtid_executed AS value")
        return normalize_gtid_text(value)

    def read_server_identity(self) -> ServerIdentity:
        rows = self._query(
            "SELECT @@report_host AS report_host, @@server_id AS server_id, "
            "@@server_uuid AS server_uuid"
        )
        if not rows:
            raise QueryError("server identity query returned no rows", node=self.address)
        row = rows[0]
        return ServerIdentity(
            report_host=row["report_host"] or None,
            server_id=int(row["server_id"]),
            server_uuid=row["server_uuid"],
        )

    def gtid_subtract(self, gtid_set: str, subtracted: str) -> str:
        value = self._scalar("SELECT GTID_SUBTRACT(%s, %s) AS value", (gtid_set, subtracted))
        return normalize_gtid_text(value)

    # --- replication control ---

    def stop_replica(self) -> None:
        self._execute(self.dialect.stop_replica)

    def start_replica(self) -> None:
        self._execute(self.dialect.start_replica)

    def reset_replica(self) -> None:
        self._execute(self.dialect.reset_replica)

    def reset_source(self) -> None:
        self._execute(self.dialect.reset_source)

    def set_gtid_purged(self, gtid_set: str) -> None:
        self._execute(SET_GTID_PURGED, (gtid_set,))

    def describe_apply(self, purge_text: str) -> List[str]:
        """Destructive statements of the repair, as the operator will see them."""
        return [
            self.dialect.reset_replica,
            self.dialect.reset_source,
            f"SET GLOBAL gtid_purged='{purge_text}'",
        ]

    def close(self) -> None:
        try:
            self.connection.close()
        except pymysql.err.Error as e:
            logger.debug("%s: close failed: %s", self.address, e)


def _connect(address: str, **kwargs):
    try:
        return pymysql.connect(**kwargs)
    except pymysql.MySQLError as e:
        raise NodeConnectionError(f"cannot connect: {e}", node=address) from e


class NodeConnector:
    """Opens per-visit connections to non-root nodes with monitor credentials."""

    def __init__(self, credentials: Credentials,
                 connect_timeout: Optional[float] = None,
                 read_timeout: Optional[float] = None):
        self.credentials = credentials
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    def _settings(self, host: str, port: int) -> Dict:
        settings = {
            "host": host,
            "port": port,
            "user": self.credentials.user,
            "password": self.credentials.password,
            "autocommit": True,
        }
        if self.connect_timeout is not None:
            settings["connect_timeout"] = self.connect_timeout
        if self.read_timeout is not None:
            settings["read_timeout"] = self.read_timeout
        return settings

    @contextmanager
    def open(self, host: str, port: int) -> Iterator[NodeClient]:
        address = f"{host}:{port}"
        logger.debug("connecting to %s as %s", address, self.credentials.user)
        connection = _connect(address, **self._settings(host, port))
        client = NodeClient(connection, host, port)
        try:
            yield client
        finally:
            client.close()


@contextmanager
def open_root(defaults_file: Path, group: str = "client",
              host: Optional[str] = None, port: Optional[int] = None,
              connect_timeout: Optional[float] = None,
              read_timeout: Optional[float] = None) -> Iterator[NodeClient]:
    """Connect to the node being repaired using a MySQL option file."""
    settings = {
        "read_default_file": str(defaults_file),
        "read_default_group": group,
        "autocommit": True,
    }
    if host:
        settings["host"] = host
    if port:
        settings["port"] = port
    if connect_timeout is not None:
        settings["connect_timeout"] = connect_timeout
    if read_timeout is not None:
        settings["read_timeout"] = read_timeout

    address = f"{host or 'defaults'}:{port or '-'}"
    connection = _connect(address, **settings)
    client = NodeClient(connection, connection.host, connection.port)
    try:
        yield client
    finally:
        client.close()
