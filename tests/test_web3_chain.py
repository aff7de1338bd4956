"""Tests for Web3Chain.

These tests mock the _call() layer and the Web3 handle so they run
without a node.
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest

# Skip all tests if web3 is not installed
web3_available = True
try:
    import web3  # noqa: F401
except ImportError:
    web3_available = False

pytestmark = pytest.mark.skipif(
    not web3_available,
    reason="web3 not installed",
)

OWNER = "0x00000000000000000000000000000000000000a1"
COLLECTION = "0x00000000000000000000000000000000000000c1"
PRIVATE_KEY = "0x" + "11" * 32


# ── Helpers ───────────────────────────────────────────────────────────


def _make_chain(registry=None, private_key=PRIVATE_KEY):
    from orderrouter.adapters.web3_chain import Web3Chain

    chain = Web3Chain(rpc_url="http://node.test:8545", private_key=private_key, registry=registry)
    chain.w3 = MagicMock()
    chain.w3.eth.gas_price = 10**9
    chain.w3.eth.chain_id = 1
    chain.w3.eth.get_transaction_count.return_value = 0
    chain.w3.eth.send_raw_transaction.return_value = b"\xab" * 32
    chain.w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
    return chain


# ── Construction ──────────────────────────────────────────────────────


def test_rpc_url_required():
    from orderrouter.adapters.web3_chain import Web3Chain

    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(ValueError, match="RPC URL required"):
            Web3Chain()


# ── Reads ─────────────────────────────────────────────────────────────


def test_nft_balance_erc721():
    chain = _make_chain()
    chain._call = MagicMock(side_effect=[(False,), (OWNER.upper().replace("0X", "0x"),)])
    assert chain.nft_balance(COLLECTION, OWNER, 7) == 1
    interface_check, owner_of = chain._call.call_args_list
    assert interface_check.args[1] == "supportsInterface(bytes4)"
    assert owner_of.args[1:3] == ("ownerOf(uint256)", [7])


def test_nft_balance_erc1155():
    chain = _make_chain()
    chain._call = MagicMock(side_effect=[(True,), (3,)])
    assert chain.nft_balance(COLLECTION, OWNER, 7) == 3
    assert chain._call.call_args.args[1] == "balanceOf(address,uint256)"


def test_native_balance_uses_get_balance():
    chain = _make_chain()
    chain.w3.eth.get_balance.return_value = 5
    chain._call = MagicMock()
    assert chain.balance_of("0x0000000000000000000000000000000000000000", OWNER) == 5
    chain._call.assert_not_called()


def test_order_status_reads_seaport_only(registry):
    chain = _make_chain(registry=registry)
    chain._call = MagicMock(return_value=(True, False, 2, 4))

    seaport = registry.get("seaport-v1.5").exchange
    status = chain.order_status(seaport, "0x" + "01" * 32)
    assert (status.cancelled, status.filled) == (False, 2)

    other = registry.get("payment-processor-v2").exchange
    status = chain.order_status(other, "0x" + "01" * 32)
    assert (status.cancelled, status.filled) == (False, 0)
    assert chain._call.call_count == 1


# ── Sending ───────────────────────────────────────────────────────────


def test_send_rpc_transaction():
    chain = _make_chain()
    result = chain.send_rpc_transaction(
        {"to": COLLECTION, "data": "0x1234", "value": "1000", "gasLimit": 1_000_000}
    )
    assert result == {"status": 1, "tx_hash": "0x" + "ab" * 32}
    chain.w3.eth.send_raw_transaction.assert_called_once()


def test_reverted_receipt_raises():
    from orderrouter.util.errors import UnsuccessfulExecution

    chain = _make_chain()
    chain.w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}
    with pytest.raises(UnsuccessfulExecution):
        chain.send_rpc_transaction({"to": COLLECTION, "data": "0x", "value": 0})


def test_send_requires_key():
    with patch.dict(os.environ, {}, clear=True):
        chain = _make_chain(private_key=None)
    with pytest.raises(ValueError, match="Private key required"):
        chain.send_rpc_transaction({"to": COLLECTION})
