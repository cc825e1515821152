from .collaborators import CompatibilityLookup, ExecutionGateway, SettlementCallback, TradingStorage, Wallet

__all__ = [
    "CompatibilityLookup",
    "ExecutionGateway",
    "SettlementCallback",
    "TradingStorage",
    "Wallet",
]
