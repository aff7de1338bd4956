"""Replay PLAN_BUILT audit events to verify determinism.

Given a recorded plan event, rebuild the execution items and re-plan the
same fillable subset. The replayed calldata must match the original
transactions exactly.
"""

from __future__ import annotations

from typing import Any, Dict, List

from orderrouter.engine.audit import router_config_hash, tx_summary
from orderrouter.engine.planner import Router
from orderrouter.models.config import RouterConfig
from orderrouter.models.execution import ExecutionItem, PlanOptions
from orderrouter.util.errors import InvalidArgument


def replay_plan_event(
    event: Dict[str, Any],
    config: RouterConfig,
) -> tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Replay a single PLAN_BUILT event.

    Returns (original_transactions, replayed_transactions).
    The caller should assert they are equal.
    """
    if event.get("event") != "PLAN_BUILT":
        raise InvalidArgument(f"Cannot replay a {event.get('event')} event")

    items = [ExecutionItem.model_validate(raw) for raw in event["items"]]
    options = PlanOptions.model_validate(event["options"])
    filled_before = {int(k): v for k, v in event["filled_before"].items()}
    skipped = {s["index"] for s in event["skipped"]}
    kept = [i for i in range(len(items)) if i not in skipped]

    router = Router(config)
    replayed = router.build_transactions(
        items, kept, event["taker"], options, filled_before
    )
    return list(event["transactions"]), [tx_summary(tx) for tx in replayed]


def transactions_match(a: List[Dict[str, Any]], b: List[Dict[str, Any]]) -> bool:
    """Compare two transaction lists on target, calldata, value and items."""
    keys = ("to", "data", "value", "path", "item_indexes")
    return len(a) == len(b) and all(
        all(x[k] == y[k] for k in keys) for x, y in zip(a, b)
    )


def config_matches(event: Dict[str, Any], config: RouterConfig) -> bool:
    return event.get("config_hash") == router_config_hash(config)
