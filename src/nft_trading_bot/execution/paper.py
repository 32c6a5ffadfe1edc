"""Dry-run marketplace executor that fills every order at its requested price."""

from __future__ import annotations

import uuid
from typing import List

from ..datalake.schemas import ExecutionReceipt, OrderRequest
from ..monitoring.logger import get_logger


class PaperMarketplaceExecutor:
    """``MarketplaceExecutor`` used in dry-run mode; nothing leaves the process."""

    def __init__(self) -> None:
        self.orders: List[OrderRequest] = []
        self._logger = get_logger(__name__)

    def _fill(self, order: OrderRequest) -> ExecutionReceipt:
        self.orders.append(order)
        receipt = ExecutionReceipt(
            transaction_hash=f"dry-run-{uuid.uuid4().hex[:16]}",
            fill_price=order.price,
            gas_cost=0.0,
        )
        self._logger.info(
            "Dry-run %s %s/%s at %.4f on %s",
            order.action_type.value,
            order.contract_address,
            order.token_id,
            order.price,
            order.marketplace,
        )
        return receipt

    async def submit_buy(self, order: OrderRequest) -> ExecutionReceipt:
        return self._fill(order)

    async def submit_sell(self, order: OrderRequest) -> ExecutionReceipt:
        return self._fill(order)

    async def submit_listing(self, order: OrderRequest) -> ExecutionReceipt:
        return self._fill(order)


__all__ = ["PaperMarketplaceExecutor"]
