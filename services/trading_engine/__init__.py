"""
Trading Engine Service

Brokerage routing, trade execution with funds holds, and the paper
execution venue.
"""

from .models import (
    ExecutionState,
    OrderSide,
    OrderType,
    RoutingDecision,
    Trade,
    TradeExecutionResult,
    TradeStatus,
    TradingRequest,
)
from .orchestrator import TradeExecutionOrchestrator
from .routing import BrokerageCompatibilityEngine, BrokerageRouter
from .service import TradingEngineService
from .traders import PaperExecutionGateway

__all__ = [
    "BrokerageCompatibilityEngine",
    "BrokerageRouter",
    "ExecutionState",
    "OrderSide",
    "OrderType",
    "PaperExecutionGateway",
    "RoutingDecision",
    "Trade",
    "TradeExecutionOrchestrator",
    "TradeExecutionResult",
    "TradeStatus",
    "TradingEngineService",
    "TradingRequest",
]
