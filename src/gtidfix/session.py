"""
session.py — Persist what a repair is about to change
"""

import json
from datetime import datetime, UTC
from pathlib import Path

from gtidfix import __version__
from gtidfix.model import RepairPlan


def save_repair_session(session_dir: Path, plan: RepairPlan, metadata: dict) -> Path:
    """
    Save the pre-repair GTID state as JSON in session_dir.

    Written before any destructive statement so the original gtid_executed
    can be recovered by hand if the repair goes wrong.
    """
    session_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    output_file = session_dir / f"repair_session_{timestamp}_{plan.node_uuid[:8]}.json"

    record = dict(metadata)
    record.update({
        "node_uuid": plan.node_uuid,
        "original_gtid_executed": str(plan.executed),
        "errant_gtids": str(plan.errant),
        "gtid_purged": plan.purge_text,
        "timestamp": timestamp,
        "version": __version__,
        "tool": "gtidfix",
    })

    with open(output_file, "w") as f:
        json.dump(record, f, indent=2)

    return output_file
