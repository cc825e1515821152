"""
Trade execution state machine.

An order moves requested -> routed -> funds_held -> trade_pending and ends in
filled or failed. Funds held for an order are released exactly once: by the
settlement callback when the venue reports a terminal status, or by the
failure path when anything after the hold goes wrong (cancellation included).
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from core.config.settings import Settings
from core.logging import bind_broker_context, get_trading_logger_safe
from core.utils.exceptions import create_error_context
from .interfaces import ExecutionGateway, TradingStorage, Wallet
from .models import (
    ActivityEntry,
    ExecutionState,
    FundHold,
    RoutingDecision,
    Trade,
    TradeExecutionResult,
    TradeStatus,
    TradingRequest,
)
from .routing.brokerage_router import BrokerageRouter
from .routing.compatibility import determine_asset_type

HOLD_PURPOSE = "trading"


class TradeExecutionOrchestrator:
    """Routes an order, reserves its funds, records it and hands it to a venue."""

    def __init__(self, router: BrokerageRouter, wallet: Wallet, storage: TradingStorage,
                 execution_gateway: ExecutionGateway, settings: Settings):
        self.router = router
        self.wallet = wallet
        self.storage = storage
        self.execution_gateway = execution_gateway
        self.settings = settings
        self.logger = get_trading_logger_safe("trade_orchestrator")

        # hold_id -> hold; an entry exists until the hold is released
        self._active_holds: Dict[str, FundHold] = {}
        # trade_id -> hold_id for trades awaiting settlement
        self._trade_holds: Dict[str, str] = {}
        # trade_id -> status for settlements that arrive while submit() is running
        self._inline_settlements: Dict[str, Optional[TradeStatus]] = {}

        self.processed_count = 0
        self.error_count = 0

    @property
    def active_hold_count(self) -> int:
        return len(self._active_holds)

    async def execute_trade(self, request: TradingRequest) -> TradeExecutionResult:
        state = ExecutionState.REQUESTED
        logger = self.logger.bind(user_id=request.user_id, symbol=request.symbol)

        try:
            routing = await self.router.route_trade(request)
        except Exception as e:
            self.error_count += 1
            await self._record_activity(request, "trade_failed", request.brokerage_id, None,
                                        error=str(e), state=state.value)
            raise
        state = ExecutionState.ROUTED
        logger = bind_broker_context(logger, routing.brokerage_id)

        price = self.router.trade_price(request)
        total_cost = request.quantity * price + routing.estimated_fee

        try:
            hold = await self.wallet.hold_funds(request.user_id, total_cost, HOLD_PURPOSE)
        except Exception as e:
            self.error_count += 1
            logger.warning("Funds hold rejected", total_cost=total_cost, error=str(e))
            await self._record_activity(request, "trade_failed", routing.brokerage_id, None,
                                        error=str(e), state=state.value)
            raise
        self._active_holds[hold.hold_id] = hold
        state = ExecutionState.FUNDS_HELD
        logger.debug("Funds held", hold_id=hold.hold_id, amount=total_cost)

        trade: Optional[Trade] = None
        try:
            trade = await self.storage.create_trade(Trade(
                user_id=request.user_id,
                account_id=routing.account_id or routing.brokerage_id,
                symbol=request.symbol,
                asset_type=determine_asset_type(request.symbol).value,
                side=request.side,
                quantity=request.quantity,
                price=price,
                total_amount=total_cost,
                order_type=request.order_type,
                status=TradeStatus.PENDING,
            ))
            self._trade_holds[trade.id] = hold.hold_id
            state = ExecutionState.TRADE_PENDING

            self._inline_settlements[trade.id] = None
            try:
                await self.execution_gateway.submit(trade, routing, self.settle_trade)
            finally:
                settled_status = self._inline_settlements.pop(trade.id, None)
        except (Exception, asyncio.CancelledError) as e:
            self.error_count += 1
            await self._fail_after_hold(request, routing, hold, trade, e, logger)
            raise

        if settled_status is not None:
            state = ExecutionState.FILLED if settled_status == TradeStatus.FILLED else ExecutionState.FAILED

        self.processed_count += 1
        logger.info("Trade submitted",
                    trade_id=trade.id,
                    total_cost=total_cost,
                    estimated_fee=routing.estimated_fee,
                    state=state.value)
        await self._record_activity(request, "trade_executed", routing.brokerage_id, trade.id)

        return TradeExecutionResult(
            success=True,
            trade_id=trade.id,
            routing=routing,
            state=state,
            hold_id=hold.hold_id,
        )

    async def settle_trade(self, trade_id: str, status: TradeStatus,
                           executed_at: Optional[datetime] = None) -> None:
        """Settlement callback: move the trade to a terminal status and free its funds."""
        status = TradeStatus(status)
        hold_id = self._trade_holds.pop(trade_id, None)
        if hold_id is None:
            self.logger.warning("Settlement for unknown or already settled trade",
                                trade_id=trade_id, status=status.value)
            return

        if trade_id in self._inline_settlements:
            self._inline_settlements[trade_id] = status

        hold = self._active_holds.get(hold_id)
        try:
            await self.storage.update_trade_status(
                trade_id, status, executed_at or datetime.now(timezone.utc)
            )
        finally:
            if hold is not None:
                await self._release_hold(hold)

        self.logger.info("Trade settled", trade_id=trade_id, status=status.value)

    async def _release_hold(self, hold: FundHold) -> None:
        if self._active_holds.pop(hold.hold_id, None) is None:
            return
        await self.wallet.release_funds(hold.user_id, hold.hold_id)
        self.logger.debug("Funds released", hold_id=hold.hold_id, user_id=hold.user_id)

    async def _fail_after_hold(self, request: TradingRequest, routing: RoutingDecision,
                               hold: FundHold, trade: Optional[Trade], error: BaseException,
                               logger) -> None:
        logger.error("Trade execution failed after funds hold",
                     **create_error_context(error, "execute_trade"),
                     hold_id=hold.hold_id,
                     trade_id=trade.id if trade else None)

        try:
            await self._release_hold(hold)
        except Exception as release_error:
            logger.error("Failed to release funds hold",
                         hold_id=hold.hold_id, error=str(release_error))

        # Only a trade still awaiting settlement is rejected here
        if trade is not None and self._trade_holds.pop(trade.id, None) is not None:
            try:
                await self.storage.update_trade_status(trade.id, TradeStatus.REJECTED)
            except Exception as update_error:
                logger.error("Failed to mark trade rejected",
                             trade_id=trade.id, error=str(update_error))

        await self._record_activity(request, "trade_failed", routing.brokerage_id,
                                    trade.id if trade else None, error=str(error))

    async def _record_activity(self, request: TradingRequest, action: str,
                               brokerage_id: Optional[str], trade_id: Optional[str],
                               **extra: Any) -> None:
        metadata: Dict[str, Any] = {
            "symbol": request.symbol,
            "quantity": request.quantity,
            "side": request.side.value,
            "brokerage_id": brokerage_id,
            "trade_id": trade_id,
        }
        metadata.update(extra)
        verb = "via" if action == "trade_executed" else "failed via"
        description = f"{request.side.value.upper()} {request.quantity} {request.symbol} {verb} {brokerage_id or 'unrouted'}"
        try:
            await self.storage.log_activity(ActivityEntry(
                user_id=request.user_id,
                action=action,
                description=description,
                metadata=metadata,
            ))
        except Exception as e:
            self.logger.error("Failed to record trade activity",
                              user_id=request.user_id, action=action, error=str(e))

    def get_status(self) -> Dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "active_holds": len(self._active_holds),
            "pending_trades": len(self._trade_holds),
        }
