from typing import Dict, Iterable, List

from core.logging import get_logger
from .models import AggregatedPosition, ConnectedAccount, Holding

UNKNOWN_BROKERAGE = "unknown"


def aggregate_holdings(holdings: Iterable[Holding],
                       accounts: Iterable[ConnectedAccount]) -> List[AggregatedPosition]:
    """Group holdings by symbol and fold each lot into its symbol's aggregate.

    Symbols come back in first-seen order. The weighted average is
    incremental, so the result does not depend on the order lots arrive in.
    """
    provider_by_account: Dict[str, str] = {}
    for account in accounts:
        provider_by_account.setdefault(str(account.id), account.provider)

    positions: Dict[str, AggregatedPosition] = {}
    for holding in holdings:
        position = positions.get(holding.symbol)
        if position is None:
            position = positions[holding.symbol] = AggregatedPosition(symbol=holding.symbol)

        position.add_lot(
            brokerage_id=provider_by_account.get(str(holding.account_id), UNKNOWN_BROKERAGE),
            quantity=holding.quantity,
            price=holding.average_price,
            current_price=holding.current_price,
            gain_loss=holding.gain_loss,
        )

    for position in positions.values():
        position.update_gain_loss_percentage()

    return list(positions.values())


class PositionAggregator:
    """Builds per-symbol positions across all of a user's connected accounts."""

    def __init__(self, storage):
        self.storage = storage
        self.logger = get_logger(__name__, component="portfolio_manager")

    async def get_aggregated_positions(self, user_id: str) -> List[AggregatedPosition]:
        holdings = await self.storage.get_holdings(user_id)
        accounts = await self.storage.get_connected_accounts(user_id)

        positions = aggregate_holdings(holdings, accounts)
        self.logger.debug("Aggregated positions",
                          user_id=user_id,
                          holdings=len(holdings),
                          symbols=len(positions))
        return positions
