"""Step driver: executes an indexer step sequence against a chain and the indexer.

Steps run strictly in order:
  - transaction items still `incomplete` are broadcast with the indexer's
    gas estimate stripped and a fixed gas limit, then awaited;
  - signature items are signed as EIP-712 and posted back to the endpoint
    they name; a response carrying `error` aborts with StepSaveError.

Items already `complete` are skipped. Nothing is retried.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from orderrouter.engine.audit import AuditEventType, build_audit_event, write_audit_event
from orderrouter.models.steps import Step, StepItem, StepSequence
from orderrouter.util.errors import InvalidArgument, StepSaveError
from orderrouter.util.hashing import sign_typed

logger = logging.getLogger(__name__)

STEP_GAS_LIMIT = 1_000_000


class RpcSender(Protocol):
    def send_rpc_transaction(self, data: Dict[str, Any]) -> Dict[str, Any]:
        ...


class StepClient(Protocol):
    def call_step(self, endpoint: str, signature: str, body: Any) -> Dict[str, Any]:
        ...


class StepDriver:
    """Runs step sequences for one signing account."""

    def __init__(
        self,
        signer: Any,
        indexer: StepClient,
        chain: Optional[RpcSender] = None,
        exec_log: Optional[str | Path] = None,
        should_stop: Optional[Callable[[Step], bool]] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.signer = signer
        self.indexer = indexer
        self.chain = chain
        self.exec_log = Path(exec_log) if exec_log else None
        self.should_stop = should_stop
        self.run_id = run_id or str(uuid.uuid4())

    def execute_steps(
        self, steps: StepSequence | Sequence[Step] | Sequence[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Run every step; returns `{step, result}` for each item acted on."""
        if isinstance(steps, StepSequence):
            steps = steps.steps
        parsed = [s if isinstance(s, Step) else Step.model_validate(s) for s in steps]

        results: List[Dict[str, Any]] = []
        for step in parsed:
            if self.should_stop is not None and self.should_stop(step):
                logger.info("Stopping before step %s", step.id)
                break
            for item in step.items:
                if item.status == "complete":
                    continue
                if step.kind == "transaction":
                    result = self._send(step, item)
                else:
                    result = self._sign_and_post(step, item)
                results.append({"step": step.id, "result": result})
        return results

    def _send(self, step: Step, item: StepItem) -> Dict[str, Any]:
        if self.chain is None:
            raise InvalidArgument(f"Step {step.id} needs a chain to send transactions")
        if not item.data:
            raise InvalidArgument(f"Transaction step {step.id} carries no data")
        data = dict(item.data)
        data.pop("gas", None)
        data["gasLimit"] = STEP_GAS_LIMIT
        logger.info("Sending %s transaction to %s", step.id, data.get("to"))
        result = self.chain.send_rpc_transaction(data)
        self._log("STEP_TRANSACTION", step, {"tx_hash": result.get("tx_hash"), "to": data.get("to")})
        return result

    def _sign_and_post(self, step: Step, item: StepItem) -> Dict[str, Any]:
        data = item.data or {}
        sign = data.get("sign")
        post = data.get("post")
        if not sign or not post:
            raise InvalidArgument(f"Signature step {step.id} lacks sign or post data")

        signed = sign_typed(self.signer, sign["domain"], sign["types"], sign["value"])
        result = self.indexer.call_step(post["endpoint"], signed["signature"], post.get("body"))
        if result.get("error"):
            self._log("STEP_FAILED", step, {"endpoint": post["endpoint"], "error": str(result["error"])})
            raise StepSaveError(str(result["error"]))
        self._log("STEP_SIGNATURE", step, {"endpoint": post["endpoint"]})
        return result

    def _log(self, event_type: AuditEventType, step: Step, extra: Dict[str, Any]) -> None:
        if self.exec_log is None:
            return
        write_audit_event(
            self.exec_log,
            build_audit_event(
                event_type,
                {"step": step.id, "signer": self.signer.address.lower(), **extra},
                run_id=self.run_id,
            ),
        )
