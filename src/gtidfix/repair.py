"""
Errant GTID repair orchestration.

Flow:
    DISCOVER -> VALIDATE -> DETECT -> CLEAN                  (nothing errant)
    DETECT -> STOP -> RE_DISCOVER -> PLAN -> CONFIRM -> ABORT
                                                     -> APPLY -> RESUME

Once STOP succeeds, START runs exactly once on every exit path. Nothing else
is undone automatically: RESET MASTER discards binary-log history, so a
failure inside APPLY is reported for manual remediation and never retried.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Tuple

import click

from gtidfix.consistency import auto_position_violations
from gtidfix.errant import find_errant_gtids, format_errant
from gtidfix.errors import (
    ApplyError,
    ConfirmationDeclined,
    GtidFixError,
    PreconditionError,
    QueryError,
    ResumeError,
    SessionError,
)
from gtidfix.model import ErrantReport, RepairPlan, Topology
from gtidfix.mysql_client import NodeClient, NodeConnector
from gtidfix.session import save_repair_session
from gtidfix.topology import discover

logger = logging.getLogger("gtidfix.repair")

CONFIRM_PROMPT = "\nWould you continue to reset?"


class RepairState(str, Enum):
    DISCOVER = "discover"
    VALIDATE = "validate"
    DETECT = "detect"
    CLEAN = "clean"
    STOP = "stop"
    RE_DISCOVER = "re-discover"
    PLAN = "plan"
    CONFIRM = "confirm"
    ABORT = "abort"
    APPLY = "apply"
    RESUME = "resume"


@dataclass
class RepairOutcome:
    """Terminal state of a run.

    Attributes:
        state: CLEAN, ABORT or RESUME (repair applied and replication restarted)
        errant: Errant GTIDs from the last detection pass
        plan: Purge plan, when one was computed
        session_path: JSON record written before APPLY, if any
    """
    state: RepairState
    errant: ErrantReport
    plan: Optional[RepairPlan] = None
    session_path: Optional[Path] = None


def build_repair_plan(topology: Topology, report: ErrantReport) -> RepairPlan:
    """
    Compute gtid_purged for the root from a snapshot taken after STOP.

    The errant intervals are removed from the root's executed set; token order
    is preserved and an origin UUID whose intervals are all errant disappears.
    """
    root = topology.root
    try:
        executed = root.executed
    except ValueError as e:
        raise QueryError(
            f"cannot parse gtid_executed '{root.executed_gtid_set}': {e}",
            node=root.address,
        ) from e
    return RepairPlan(
        node_uuid=topology.root_uuid,
        executed=executed,
        errant=report.gtid_set,
        purge=executed.subtract(report.gtid_set),
    )


def _confirm_with_prompt() -> bool:
    return click.confirm(CONFIRM_PROMPT, default=False)


class RepairOrchestrator:
    """
    Drives one errant GTID repair on the node behind root_client.

    Args:
        root_client: Open client for the node being repaired
        connector: Opens connections to every other node (monitor credentials)
        confirm: Called before APPLY; returning False aborts the repair
        force: Skip confirmation
        echo: Progress output
        session_dir: Where to record the pre-repair state (None disables)
    """

    def __init__(self, root_client: NodeClient, connector: NodeConnector,
                 confirm: Optional[Callable[[], bool]] = None, force: bool = False,
                 echo: Optional[Callable[[str], None]] = None,
                 session_dir: Optional[Path] = None):
        self.client = root_client
        self.connector = connector
        self.confirm = confirm or _confirm_with_prompt
        self.force = force
        self.echo = echo or click.echo
        self.session_dir = session_dir
        self.state = RepairState.DISCOVER
        self._purged = False

    def _enter(self, state: RepairState) -> None:
        logger.debug("%s: %s -> %s", self.client.address, self.state.value, state.value)
        self.state = state

    @contextmanager
    def _stage(self, state: RepairState):
        self._enter(state)
        try:
            yield
        except GtidFixError as e:
            if e.stage is None:
                e.stage = state.value
            raise

    def _inspect(self, discover_state: RepairState) -> Tuple[Topology, ErrantReport]:
        with self._stage(discover_state):
            topology = discover(self.client, self.connector)

        with self._stage(RepairState.VALIDATE):
            violations = auto_position_violations(topology)
            if violations:
                channels = ", ".join(
                    f"'{n.channel_name}' ({n.address})" for n in violations
                )
                raise PreconditionError(
                    f"auto position must be enabled for all the channels: {channels}",
                    node=self.client.address,
                )

        with self._stage(RepairState.DETECT):
            report = find_errant_gtids(topology, self.client, self.connector)
        return topology, report

    def _show_errant(self, report: ErrantReport) -> None:
        self.echo("errant transaction pre-check: ")
        for line in format_errant(report):
            self.echo(line)
        self.echo("")

    def _show_plan(self, topology: Topology, plan: RepairPlan) -> None:
        self.echo(f"original gtid_executed: \n{plan.executed}\n")
        self.echo(f"errant GTIDs to remove: \n{plan.errant}\n")
        self.echo(f"gtid_purged after reset: \n{plan.purge_text}\n")
        self.echo("statements to run:")
        for statement in self.client.describe_apply(plan.purge_text):
            self.echo(f" {statement}")

        tops = topology.top_nodes()
        if tops:
            self.echo("")
            self.echo("candidate masters to inject empty GTIDs instead:")
            for top in tops:
                server_id = top.server_id if top.server_id is not None else "unknown"
                self.echo(
                    f" {top.label} ({top.address}) server_id: {server_id}, "
                    f"channel: {top.channel_name or 'default'}, server_uuid: {top.uuid}"
                )

    @contextmanager
    def _replication_stopped(self):
        with self._stage(RepairState.STOP):
            self.echo("stopping replica")
            self.client.stop_replica()

        prior_error = None
        try:
            yield
        except BaseException as e:
            prior_error = e
            raise
        finally:
            self._resume(prior_error)

    def _resume(self, prior_error: Optional[BaseException]) -> None:
        self._enter(RepairState.RESUME)
        self.echo("resuming replica")
        try:
            self.client.start_replica()
        except GtidFixError as e:
            raise ResumeError(
                f"replication is left stopped, run START REPLICA manually: {e.message}",
                purge_applied=self._purged,
                prior_error=prior_error,
                stage=RepairState.RESUME.value,
                node=self.client.address,
            ) from e

    def _apply(self, plan: RepairPlan) -> None:
        self._enter(RepairState.APPLY)
        steps = [
            ("reset-replica", self.client.reset_replica, ()),
            ("reset-source", self.client.reset_source, ()),
            ("set-purged", self.client.set_gtid_purged, (plan.purge_text,)),
        ]
        statements = self.client.describe_apply(plan.purge_text)

        completed = []
        for (name, call, args), statement in zip(steps, statements):
            self.echo(statement)
            try:
                call(*args)
            except GtidFixError as e:
                done = ", ".join(completed) if completed else "nothing"
                raise ApplyError(
                    f"{name} failed ({e.message}); completed before failure: {done}. "
                    f"Manual remediation required: intended gtid_purged was '{plan.purge_text}'",
                    completed=completed,
                    stage=RepairState.APPLY.value,
                    node=self.client.address,
                ) from e
            completed.append(name)
        self._purged = True

    def _repair_stopped(self, outcome: RepairOutcome) -> None:
        topology, report = self._inspect(RepairState.RE_DISCOVER)
        outcome.errant = report
        if report.is_empty():
            self.echo("errant GTID not found after stopping replica")
            outcome.state = RepairState.CLEAN
            return

        with self._stage(RepairState.PLAN):
            plan = build_repair_plan(topology, report)
        outcome.plan = plan
        self._show_plan(topology, plan)

        if not self.force:
            self._enter(RepairState.CONFIRM)
            if not self.confirm():
                raise ConfirmationDeclined(
                    "operator declined the purge plan",
                    stage=RepairState.CONFIRM.value,
                    node=self.client.address,
                )

        if self.session_dir is not None:
            try:
                outcome.session_path = save_repair_session(
                    self.session_dir, plan, {"node": self.client.address}
                )
            except OSError as e:
                raise SessionError(
                    f"cannot write repair session to {self.session_dir}: {e}",
                    stage=self.state.value,
                    node=self.client.address,
                ) from e
            self.echo(f"saved repair session: {outcome.session_path}")

        self._apply(plan)
        outcome.state = RepairState.RESUME

    def run(self) -> RepairOutcome:
        """
        Run the repair to a terminal state.

        Returns:
            RepairOutcome with state CLEAN, ABORT or RESUME

        Raises:
            NodeConnectionError, QueryError: A stage could not talk to a node
            PreconditionError: A channel of the root lacks auto-position
            SessionError: The pre-repair record could not be written
            ApplyError: A destructive statement failed; manual remediation needed
            ResumeError: Replication could not be restarted after STOP
        """
        _, report = self._inspect(RepairState.DISCOVER)
        self._show_errant(report)

        if report.is_empty():
            self._enter(RepairState.CLEAN)
            self.echo("errant GTID not found")
            return RepairOutcome(state=RepairState.CLEAN, errant=report)

        outcome = RepairOutcome(state=RepairState.STOP, errant=report)
        try:
            with self._replication_stopped():
                self._repair_stopped(outcome)
        except ConfirmationDeclined:
            self.echo("do nothing")
            outcome.state = RepairState.ABORT

        logger.info("%s: repair finished in state %s",
                    self.client.address, outcome.state.value)
        return outcome
