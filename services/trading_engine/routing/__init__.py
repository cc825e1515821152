from .brokerage_router import BrokerageRouter
from .compatibility import (
    SUPPORTED_BROKERAGES,
    AssetType,
    BrokerageCompatibilityEngine,
    BrokerageInfo,
    ExecutionSpeed,
    FeeSchedule,
    Specialization,
    determine_asset_type,
)

__all__ = [
    "SUPPORTED_BROKERAGES",
    "AssetType",
    "BrokerageCompatibilityEngine",
    "BrokerageInfo",
    "BrokerageRouter",
    "ExecutionSpeed",
    "FeeSchedule",
    "Specialization",
    "determine_asset_type",
]
