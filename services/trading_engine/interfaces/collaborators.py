from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from core.resilience.models import ConnectionRecord
from services.portfolio_manager.models import ConnectedAccount, Holding
from ..models import ActivityEntry, FundHold, RoutingDecision, Trade, TradeStatus

SettlementCallback = Callable[..., Awaitable[None]]


@runtime_checkable
class Wallet(Protocol):
    """Reserves and frees funds for in-flight trades."""

    async def hold_funds(self, user_id: str, amount: float, purpose: str) -> FundHold:
        ...

    async def release_funds(self, user_id: str, hold_id: str) -> None:
        ...


@runtime_checkable
class TradingStorage(Protocol):
    """Persistence the trading engine reads and writes through."""

    async def get_holdings(self, user_id: str) -> List[Holding]:
        ...

    async def get_connected_accounts(self, user_id: str) -> List[ConnectedAccount]:
        ...

    async def create_trade(self, trade: Trade) -> Trade:
        ...

    async def update_trade_status(self, trade_id: str, status: TradeStatus,
                                  executed_at: Optional[datetime] = None) -> None:
        ...

    async def log_activity(self, entry: ActivityEntry) -> None:
        ...

    async def get_connection_by_authorization(self, brokerage_auth_id: str) -> Optional[ConnectionRecord]:
        ...

    async def get_connections(self, user_id: str) -> List[ConnectionRecord]:
        ...


@runtime_checkable
class CompatibilityLookup(Protocol):
    """Answers which connected brokerages can trade a given asset type."""

    def get_brokerage(self, brokerage_id: str) -> Optional[Any]:
        ...

    def get_compatible_brokerages(self, asset_type: str, connected_ids: Iterable[str]) -> List[Any]:
        ...


@runtime_checkable
class ExecutionGateway(Protocol):
    """Sends a pending trade to a venue and reports settlement through a callback."""

    async def submit(self, trade: Trade, routing: RoutingDecision,
                     on_settled: SettlementCallback) -> Dict[str, Any]:
        ...
