# src/gtidfix/cli.py

import logging
import os
import sys
import time
from pathlib import Path

import click
from rich.console import Console

from gtidfix import __version__
from gtidfix.config import (
    MONITOR_PASSWORD_ENV,
    MONITOR_USER_ENV,
    find_defaults_file,
    find_log_path,
    find_session_dir,
)
from gtidfix.consistency import auto_position_violations
from gtidfix.errant import find_errant_gtids, format_errant
from gtidfix.errors import ApplyError, GtidFixError, ResumeError
from gtidfix.mysql_client import Credentials, NodeConnector, open_root
from gtidfix.repair import RepairOrchestrator, RepairState
from gtidfix.topology import discover, render_topology

logger = logging.getLogger("gtidfix.cli")

_LOG_SETUP = False


def _setup_master_log(verbose: bool = False) -> None:
    global _LOG_SETUP
    if _LOG_SETUP:
        return
    root_logger = logging.getLogger("gtidfix")
    root_logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s %(name)-16s %(levelname)-5s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if verbose:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(logging.DEBUG)
        stream.setFormatter(formatter)
        root_logger.addHandler(stream)

    log_path = find_log_path()
    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as e:
            click.echo(f"⚠️  Could not open log file {log_path}: {e}", err=True)
        else:
            handler.setLevel(logging.INFO)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
    _LOG_SETUP = True


def _emit_run_header() -> None:
    timestamp = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    script = Path(sys.argv[0]).name or "gtidfix"
    logger.info("%s v%s @ %s (pid %d)", script, __version__, timestamp, os.getpid())


def _echo(message: str = "") -> None:
    click.echo(message)
    if message.strip():
        logger.info(message.strip())


def _fail(error: Exception) -> None:
    logger.error("%s", error)
    click.echo(f"❌ {error}", err=True)
    if isinstance(error, ApplyError):
        click.echo("⚠️  The node may be reset but not purged; fix gtid_purged by hand.", err=True)
    if isinstance(error, ResumeError):
        click.echo("⚠️  Replication is STOPPED on this node.", err=True)
        if error.prior_error is not None:
            click.echo(f"   earlier error: {error.prior_error}", err=True)
        click.echo(f"   purge applied: {'yes' if error.purge_applied else 'no'}", err=True)
    sys.exit(1)


def connection_options(func):
    """Options shared by every command that talks to MySQL."""
    options = [
        click.option("-c", "--config", "defaults_file", type=click.Path(dir_okay=False),
                     default=None, help="MySQL client option file for the node to repair (default: ~/.my.cnf)."),
        click.option("--defaults-group", default="client", show_default=True,
                     help="Option file group to read."),
        click.option("--host", default=None, help="Override the host from the option file."),
        click.option("--port", type=int, default=None, help="Override the port from the option file."),
        click.option("--monitor-user", envvar=MONITOR_USER_ENV, required=True,
                     help=f"User for every other node in the topology (env {MONITOR_USER_ENV})."),
        click.option("--monitor-password", envvar=MONITOR_PASSWORD_ENV, default="",
                     help=f"Password for the monitor user (env {MONITOR_PASSWORD_ENV})."),
        click.option("--connect-timeout", type=float, default=None,
                     help="Seconds to wait for each connection."),
        click.option("--read-timeout", type=float, default=None,
                     help="Seconds to wait for each statement."),
        click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _open_root(defaults_file, defaults_group, host, port, connect_timeout, read_timeout):
    defaults_path = find_defaults_file(defaults_file)
    if not defaults_path.exists():
        raise GtidFixError(f"MySQL option file not found: {defaults_path}")
    return open_root(
        defaults_path,
        group=defaults_group,
        host=host,
        port=port,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )


def _connector(monitor_user, monitor_password, connect_timeout, read_timeout) -> NodeConnector:
    return NodeConnector(
        Credentials(monitor_user, monitor_password or ""),
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )


@click.group()
@click.version_option(__version__)
def cli():
    """gtidfix — find and purge errant GTIDs on a MySQL replica"""
    pass


@cli.command("fix")
@connection_options
@click.option("-f", "--force", is_flag=True, help="Skip the confirmation prompt.")
@click.option("--session-dir", type=click.Path(file_okay=False), default=None,
              help="Where to record the pre-repair state (default: ~/.gtidfix/sessions).")
@click.option("--no-session-log", is_flag=True, help="Do not record the pre-repair state.")
def fix_cmd(defaults_file, defaults_group, host, port, monitor_user, monitor_password,
            connect_timeout, read_timeout, verbose, force, session_dir, no_session_log):
    """
    Purge errant GTIDs from the node in the option file.

    Stops replication, resets the replica and its binary logs, sets
    gtid_purged to the executed set without the errant GTIDs, and starts
    replication again. Asks for confirmation unless --force is given.
    """
    _setup_master_log(verbose)
    _emit_run_header()

    connector = _connector(monitor_user, monitor_password, connect_timeout, read_timeout)
    try:
        with _open_root(defaults_file, defaults_group, host, port,
                        connect_timeout, read_timeout) as root_client:
            orchestrator = RepairOrchestrator(
                root_client,
                connector,
                force=force,
                echo=_echo,
                session_dir=None if no_session_log else find_session_dir(session_dir),
            )
            outcome = orchestrator.run()
    except GtidFixError as e:
        _fail(e)
        return

    if outcome.state in (RepairState.CLEAN, RepairState.RESUME):
        _echo("completed.")


@cli.command("check")
@connection_options
def check_cmd(defaults_file, defaults_group, host, port, monitor_user, monitor_password,
              connect_timeout, read_timeout, verbose):
    """
    Report errant GTIDs without changing anything.

    Exit status: 0 when clean, 2 when errant GTIDs exist, 1 on error.
    """
    _setup_master_log(verbose)
    _emit_run_header()

    connector = _connector(monitor_user, monitor_password, connect_timeout, read_timeout)
    try:
        with _open_root(defaults_file, defaults_group, host, port,
                        connect_timeout, read_timeout) as root_client:
            topology = discover(root_client, connector)
            violations = auto_position_violations(topology)
            report = find_errant_gtids(topology, root_client, connector)
    except GtidFixError as e:
        _fail(e)
        return

    for node in violations:
        _echo(f"⚠️  channel '{node.channel_name}' from {node.address} has auto position disabled")

    if report.is_empty():
        _echo("errant GTID not found")
        return

    _echo("errant transactions:")
    for line in format_errant(report):
        _echo(line)
    sys.exit(2)


@cli.command("topology")
@connection_options
def topology_cmd(defaults_file, defaults_group, host, port, monitor_user, monitor_password,
                 connect_timeout, read_timeout, verbose):
    """Show the replication sources of the node, up to the topology tops."""
    _setup_master_log(verbose)
    _emit_run_header()

    connector = _connector(monitor_user, monitor_password, connect_timeout, read_timeout)
    try:
        with _open_root(defaults_file, defaults_group, host, port,
                        connect_timeout, read_timeout) as root_client:
            topology = discover(root_client, connector)
    except GtidFixError as e:
        _fail(e)
        return

    console = Console()
    console.print(render_topology(topology))


def main():
    cli()


if __name__ == "__main__":
    main()
