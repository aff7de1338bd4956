"""Append-only JSONL audit emitter."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from orderrouter.models.config import RouterConfig
from orderrouter.models.execution import ExecutionPlan, PlanOptions, Transaction
from orderrouter.util.hashing import config_hash
from orderrouter.version import __version__

AuditEventType = Literal[
    "PLAN_BUILT",
    "TX_SUBMITTED",
    "TX_REVERTED",
    "STEP_TRANSACTION",
    "STEP_SIGNATURE",
    "STEP_FAILED",
]


def router_config_hash(config: RouterConfig) -> str:
    return config_hash(config.model_dump_json())


def tx_summary(tx: Transaction) -> Dict[str, Any]:
    """The deterministic part of a transaction, as recorded and replayed."""
    return {
        "to": tx.to,
        "data": tx.data,
        "value": str(tx.value),
        "sender": tx.sender,
        "path": tx.path,
        "item_indexes": list(tx.item_indexes),
    }


def build_audit_event(
    event_type: AuditEventType,
    payload: Dict[str, Any],
    *,
    config_hash: Optional[str] = None,
    run_id: Optional[str] = None,
    engine_version: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a structured audit event dict (serialisable to JSON)."""
    event: Dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "engine_version": engine_version or __version__,
        "event": event_type,
    }
    if config_hash is not None:
        event["config_hash"] = config_hash
    if run_id is not None:
        event["run_id"] = run_id
    event.update(payload)
    return event


def build_plan_event(
    plan: ExecutionPlan,
    options: PlanOptions,
    filled_before: Dict[int, int],
    config: RouterConfig,
    run_id: Optional[str] = None,
) -> Dict[str, Any]:
    """PLAN_BUILT: everything needed to re-plan and compare calldata."""
    return build_audit_event(
        "PLAN_BUILT",
        {
            "taker": plan.taker,
            "state": plan.state,
            "options": options.model_dump(mode="json"),
            "items": [item.model_dump(mode="json") for item in plan.items],
            "filled_before": {str(k): v for k, v in sorted(filled_before.items())},
            "skipped": [s.model_dump(mode="json") for s in plan.skipped],
            "transactions": [tx_summary(tx) for tx in plan.transactions],
        },
        config_hash=router_config_hash(config),
        run_id=run_id,
    )


def write_audit_event(path: str | Path, event: Dict[str, Any]) -> None:
    """Append a single audit event as a JSON line."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    line = json.dumps(event, sort_keys=True, separators=(",", ":"))
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


def read_audit_events(path: str | Path) -> list[Dict[str, Any]]:
    """Read all audit events from a JSONL file."""
    path = Path(path)
    events = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(json.loads(line))
    return events
