"""CLI entry point: orderrouter-fees."""

from __future__ import annotations

import argparse
import json
import sys

from orderrouter.adapters.registry import AdapterRegistry
from orderrouter.models.order import OrderRequest
from orderrouter.util.errors import FeeOverflow
from orderrouter.util.io import load_config_yaml, load_json


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="orderrouter-fees",
        description="Compose the fee lines an order request would carry.",
    )
    parser.add_argument(
        "--config", required=True, help="Path to router config YAML file."
    )
    parser.add_argument(
        "--request", required=True, help="Path to order request JSON file."
    )
    parser.add_argument(
        "--build",
        action="store_true",
        help="Also build the unsigned exchange order and print its hash and params.",
    )
    parser.add_argument(
        "--pretty", action="store_true", help="Pretty-print JSON output."
    )

    args = parser.parse_args(argv)

    try:
        config = load_config_yaml(args.config)
        request = OrderRequest.model_validate(load_json(args.request))
        adapter = AdapterRegistry(config).get(request.order_kind)

        fees = adapter.compose(request)
        output = {"order_kind": request.order_kind.value, "fees": fees.model_dump(mode="json")}
        if args.build:
            order = adapter.build(request, fees)
            output["hash"] = order.hash
            output["params"] = order.params

        indent = 2 if args.pretty else None
        print(json.dumps(output, indent=indent, sort_keys=True))
        return 0

    except FeeOverflow as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
