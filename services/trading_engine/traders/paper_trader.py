import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Set

from core.config.settings import PaperTradingSettings
from core.logging import get_trading_logger_safe
from ..interfaces.collaborators import SettlementCallback
from ..models import RoutingDecision, Trade, TradeStatus


class PaperExecutionGateway:
    """
    Simulated execution venue.

    Every submitted trade fills at its recorded price. With a zero fill delay
    the settlement callback runs before submit() returns; otherwise it runs
    from a background task after the delay.
    """

    def __init__(self, settings: PaperTradingSettings):
        self.settings = settings
        self.logger = get_trading_logger_safe("paper_trader")
        self._pending: Set[asyncio.Task] = set()

    def get_execution_mode(self) -> str:
        return "paper"

    async def submit(self, trade: Trade, routing: RoutingDecision,
                     on_settled: SettlementCallback) -> Dict[str, Any]:
        order_id = f"paper_{routing.brokerage_id}_{trade.id}_{str(uuid.uuid4())[:8]}"
        self.logger.info("PAPER TRADE (SIMULATED)",
                         order_id=order_id,
                         trade_id=trade.id,
                         symbol=trade.symbol,
                         side=trade.side.value,
                         quantity=trade.quantity,
                         fill_price=trade.price,
                         brokerage_id=routing.brokerage_id)

        delay = self.settings.fill_delay_seconds
        if delay <= 0:
            await on_settled(trade.id, TradeStatus.FILLED, datetime.now(timezone.utc))
        else:
            task = asyncio.create_task(self._fill_later(trade.id, delay, on_settled))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return {"order_id": order_id, "execution_mode": self.get_execution_mode(), "trade_id": trade.id}

    async def _fill_later(self, trade_id: str, delay: float, on_settled: SettlementCallback) -> None:
        await asyncio.sleep(delay)
        try:
            await on_settled(trade_id, TradeStatus.FILLED, datetime.now(timezone.utc))
        except Exception as e:
            self.logger.error("Paper fill settlement failed", trade_id=trade_id, error=str(e))

    @property
    def pending_fills(self) -> int:
        return len(self._pending)

    async def shutdown(self) -> None:
        """Cancel fills that have not settled yet."""
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()
        self.logger.info("Paper execution gateway shutdown")
