"""CLI entry points: orderrouter-fees and orderrouter-steps."""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

from orderrouter import cli, cli_run
from orderrouter.engine.audit import read_audit_events

FIXTURES = Path(__file__).parent / "fixtures"
CONFIG = FIXTURES / "config.yaml"
MAKER = "0x00000000000000000000000000000000000000a1"
COLLECTION = "0x00000000000000000000000000000000000000c1"
CUSTOM = "0x00000000000000000000000000000000000000f1"
PRIVATE_KEY = "0x" + "11" * 32


def _write(tmp_path, name, obj) -> str:
    path = tmp_path / name
    path.write_text(json.dumps(obj), encoding="utf-8")
    return str(path)


def _request(**overrides):
    req = {
        "order_kind": "seaport-v1.5",
        "side": "listing",
        "maker": MAKER,
        "token": {"contract": COLLECTION, "token_id": 1},
        "unit_price": 10**18,
        "expiration": 2_000_000_000,
    }
    req.update(overrides)
    return req


# ── orderrouter-fees ──────────────────────────────────────────────────


def test_fees_prints_fee_lines(tmp_path, capsys):
    request = _write(tmp_path, "req.json", _request(fee_policies=[{"recipient": CUSTOM, "bps": 100}]))
    rc = cli.main(["--config", str(CONFIG), "--request", request])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out["order_kind"] == "seaport-v1.5"
    assert [line["bps"] for line in out["fees"]["lines"]] == [50, 100]
    assert "hash" not in out


def test_fees_build_adds_hash_and_params(tmp_path, capsys):
    request = _write(tmp_path, "req.json", _request(order_kind="payment-processor-v2"))
    rc = cli.main(["--config", str(CONFIG), "--request", request, "--build", "--pretty"])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out["hash"].startswith("0x") and len(out["hash"]) == 66
    assert out["params"]["seller"] == MAKER


def test_fees_overflow_exits_1(tmp_path, capsys):
    request = _write(
        tmp_path,
        "req.json",
        _request(order_kind="rarible", fee_policies=[{"recipient": CUSTOM, "bps": 1000}]),
    )
    rc = cli.main(["--config", str(CONFIG), "--request", request])
    assert rc == 1
    assert "exceed the maximum of 1000 bps" in capsys.readouterr().err


def test_fees_bad_input_exits_2(tmp_path, capsys):
    request = _write(tmp_path, "req.json", _request(maker="not-an-address"))
    rc = cli.main(["--config", str(CONFIG), "--request", request])
    assert rc == 2
    assert capsys.readouterr().err.startswith("Error:")

    rc = cli.main(["--config", str(tmp_path / "missing.yaml"), "--request", request])
    assert rc == 2


# ── orderrouter-steps ─────────────────────────────────────────────────


def _signature_steps(maker):
    return {
        "steps": [
            {
                "id": "order-signature",
                "kind": "signature",
                "items": [
                    {
                        "status": "incomplete",
                        "data": {
                            "sign": {
                                "domain": {"name": "Test", "version": "1", "chainId": 1},
                                "types": {"Order": [{"name": "maker", "type": "address"}]},
                                "value": {"maker": maker},
                            },
                            "post": {"endpoint": "/order/v4", "body": {}},
                        },
                    }
                ],
            }
        ]
    }


def test_steps_dry_run(tmp_path, capsys):
    payload = _write(tmp_path, "payload.json", {"maker": MAKER})
    with patch("orderrouter.adapters.indexer.IndexerClient._request") as request:
        request.return_value = _signature_steps(MAKER)
        rc = cli_run.main(["--action", "bid", "--payload", payload, "--dry-run"])
    assert rc == 0
    assert request.call_args.args == ("POST", "execute/bid/v5")
    out = json.loads(capsys.readouterr().out)
    assert out["steps"][0]["id"] == "order-signature"


def test_steps_indexer_error_exits_1(tmp_path, capsys):
    payload = _write(tmp_path, "payload.json", {})
    with patch("orderrouter.adapters.indexer.IndexerClient._request") as request:
        request.return_value = {"error": "Bad Request", "message": "No available orders"}
        rc = cli_run.main(["--action", "buy", "--payload", payload])
    assert rc == 1
    assert "No available orders" in capsys.readouterr().err


def test_steps_drive_signatures(tmp_path, capsys, alice):
    payload = _write(tmp_path, "payload.json", {"maker": alice.address})
    exec_log = tmp_path / "exec.jsonl"
    exec_log.write_text("stale\n", encoding="utf-8")
    with patch.dict(os.environ, {"PRIVATE_KEY": PRIVATE_KEY}), patch(
        "orderrouter.adapters.indexer.IndexerClient._request"
    ) as request:
        request.side_effect = [_signature_steps(alice.address), {"message": "Success"}]
        rc = cli_run.main(
            ["--action", "bid", "--payload", payload, "--exec-log", str(exec_log)]
        )
    assert rc == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["action"] == "bid"
    assert summary["results"] == [{"step": "order-signature", "result": {"message": "Success"}}]
    (event,) = read_audit_events(exec_log)
    assert event["event"] == "STEP_SIGNATURE"
    assert event["signer"] == alice.address.lower()


def test_steps_require_private_key(tmp_path, capsys):
    payload = _write(tmp_path, "payload.json", {})
    with patch.dict(os.environ, {}, clear=True), patch(
        "orderrouter.adapters.indexer.IndexerClient._request"
    ) as request:
        request.return_value = _signature_steps(MAKER)
        rc = cli_run.main(["--action", "bid", "--payload", payload])
    assert rc == 2
    assert "PRIVATE_KEY" in capsys.readouterr().err
