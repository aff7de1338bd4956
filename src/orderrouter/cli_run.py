"""CLI entry point: orderrouter-steps.

Requests a step sequence from the indexer's /execute endpoints and drives
it with a local key: transactions go to the JSON-RPC node, signatures are
posted back to the indexer. Produces an execution log and a summary.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from eth_account import Account

from orderrouter.adapters.indexer import IndexerClient, first_error, parse_steps
from orderrouter.runtime.driver import StepDriver
from orderrouter.util.io import load_json

_ACTIONS = ("bid", "buy", "sell", "cancel")


def _create_chain(rpc_url: str | None, private_key: str):
    """Lazy-import the JSON-RPC backend; it is only needed for transaction steps."""
    try:
        from orderrouter.adapters.web3_chain import Web3Chain
    except ImportError:
        print(
            "Error: web3 is not installed.\n"
            "  pip install orderrouter[web3]",
            file=sys.stderr,
        )
        sys.exit(2)
    return Web3Chain(rpc_url=rpc_url, private_key=private_key)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="orderrouter-steps",
        description="Drive an indexer step sequence with a local key.",
    )
    parser.add_argument(
        "--action", required=True, choices=_ACTIONS, help="Execute endpoint to call."
    )
    parser.add_argument(
        "--payload", required=True, help="Path to the execute request JSON file."
    )
    parser.add_argument(
        "--indexer-url", default=None, help="Indexer base URL (default: INDEXER_URL)."
    )
    parser.add_argument(
        "--rpc-url", default=None, help="JSON-RPC endpoint (default: RPC_URL)."
    )
    parser.add_argument(
        "--exec-log", default=None,
        help="Path to JSONL execution event log "
             "(STEP_TRANSACTION, STEP_SIGNATURE, STEP_FAILED).",
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Print the returned steps without signing or sending anything.",
    )
    parser.add_argument(
        "--pretty", action="store_true", help="Pretty-print JSON output."
    )

    args = parser.parse_args(argv)
    indent = 2 if args.pretty else None

    try:
        payload = load_json(args.payload)
        client = IndexerClient(base_url=args.indexer_url)
        response = getattr(client, f"execute_{args.action}")(payload)

        error = first_error(response)
        if error:
            print(f"Error: indexer rejected the request: {error}", file=sys.stderr)
            return 1

        steps = parse_steps(response)
        if args.dry_run:
            print(json.dumps(steps.model_dump(mode="json", by_alias=True), indent=indent, sort_keys=True))
            return 0

        private_key = os.environ.get("PRIVATE_KEY", "")
        if not private_key:
            raise ValueError("PRIVATE_KEY environment variable is required to drive steps.")
        signer = Account.from_key(private_key)

        needs_chain = any(
            step.kind == "transaction"
            and any(item.status == "incomplete" for item in step.items)
            for step in steps.steps
        )
        chain = _create_chain(args.rpc_url, private_key) if needs_chain else None

        exec_log = None
        if args.exec_log:
            exec_log = Path(args.exec_log)
            if exec_log.exists():
                exec_log.unlink()

        driver = StepDriver(signer, client, chain=chain, exec_log=exec_log)
        results = driver.execute_steps(steps)

        summary = {
            "action": args.action,
            "steps": len(steps.steps),
            "results": results,
        }
        print(json.dumps(summary, indent=indent, sort_keys=True))
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
