"""Explicit OrderKind -> adapter mapping."""

from __future__ import annotations

from typing import Dict, Type

from orderrouter.adapters.base import BaseAdapter
from orderrouter.adapters.element import ElementAdapter
from orderrouter.adapters.nftx import NftxAdapter
from orderrouter.adapters.payment_processor import (
    PaymentProcessorV2Adapter,
    PaymentProcessorV21Adapter,
)
from orderrouter.adapters.rarible import RaribleAdapter
from orderrouter.adapters.seaport import SeaportV15Adapter, SeaportV16Adapter
from orderrouter.adapters.zeroex_v4 import ZeroExV4Adapter
from orderrouter.models.config import RouterConfig
from orderrouter.models.order import OrderKind

ADAPTER_CLASSES: Dict[OrderKind, Type[BaseAdapter]] = {
    OrderKind.SEAPORT_V15: SeaportV15Adapter,
    OrderKind.SEAPORT_V16: SeaportV16Adapter,
    OrderKind.PAYMENT_PROCESSOR_V2: PaymentProcessorV2Adapter,
    OrderKind.PAYMENT_PROCESSOR_V21: PaymentProcessorV21Adapter,
    OrderKind.ELEMENT: ElementAdapter,
    OrderKind.RARIBLE: RaribleAdapter,
    OrderKind.ZEROEX_V4: ZeroExV4Adapter,
    OrderKind.NFTX: NftxAdapter,
}


class AdapterRegistry:
    """Adapters for every order kind configured on one chain."""

    def __init__(self, config: RouterConfig) -> None:
        self.config = config
        self._adapters: Dict[OrderKind, BaseAdapter] = {
            kind: ADAPTER_CLASSES[kind](settings, config.chain_id, config.fee_defaults)
            for kind, settings in config.adapters.items()
        }

    def get(self, kind: OrderKind) -> BaseAdapter:
        kind = OrderKind(kind)
        try:
            return self._adapters[kind]
        except KeyError:
            raise KeyError(f"No adapter configured for {kind.value}") from None

    def kinds(self) -> list[OrderKind]:
        return list(self._adapters)

    def by_exchange(self, exchange: str) -> BaseAdapter:
        """Adapter whose exchange contract is `exchange`."""
        exchange = exchange.lower()
        for adapter in self._adapters.values():
            if adapter.exchange == exchange:
                return adapter
        raise KeyError(f"No adapter configured for exchange {exchange}")
