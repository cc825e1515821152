"""Cross-account position aggregation."""

from .aggregator import PositionAggregator, aggregate_holdings
from .models import AggregatedPosition, BrokerageBreakdown, ConnectedAccount, Holding

__all__ = [
    "AggregatedPosition",
    "BrokerageBreakdown",
    "ConnectedAccount",
    "Holding",
    "PositionAggregator",
    "aggregate_holdings",
]
