"""Shared fixtures for all tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from eth_account import Account

from orderrouter.adapters.registry import AdapterRegistry
from orderrouter.adapters.sim_chain import SimChain
from orderrouter.models.order import OrderRequest
from orderrouter.util.io import load_config_yaml

FIXTURES = Path(__file__).parent / "fixtures"

NOW = 1_700_000_000
EXPIRATION = NOW + 86_400
COLLECTION = "0x00000000000000000000000000000000000000c1"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"


@pytest.fixture
def config():
    return load_config_yaml(FIXTURES / "config.yaml")


@pytest.fixture
def registry(config):
    return AdapterRegistry(config)


@pytest.fixture
def chain(registry):
    return SimChain(registry, now=NOW)


@pytest.fixture
def alice():
    return Account.from_key("0x" + "11" * 32)


@pytest.fixture
def bob():
    return Account.from_key("0x" + "22" * 32)


@pytest.fixture
def carol():
    return Account.from_key("0x" + "33" * 32)


@pytest.fixture
def make_order(registry):
    """Build (and sign, unless `sign=False`) an order made by `account`."""

    def _make(kind, account, sign=True, **fields):
        request = OrderRequest.model_validate(
            {
                "order_kind": kind,
                "side": "listing",
                "maker": account.address,
                "token": {"contract": COLLECTION, "token_id": 1},
                "unit_price": 10**18,
                "expiration": EXPIRATION,
                **fields,
            }
        )
        adapter = registry.get(request.order_kind)
        order = adapter.build(request)
        if sign and order.status == "unsigned":
            order = adapter.sign(order, account, now=NOW)
        return order

    return _make
