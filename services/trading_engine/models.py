from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"


class TradeStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self != TradeStatus.PENDING


class ExecutionState(str, Enum):
    REQUESTED = "requested"
    ROUTED = "routed"
    FUNDS_HELD = "funds_held"
    TRADE_PENDING = "trade_pending"
    FILLED = "filled"
    FAILED = "failed"


class TradingRequest(BaseModel):
    user_id: str
    symbol: str
    quantity: float
    side: OrderSide
    order_type: OrderType = OrderType.MARKET
    limit_price: Optional[float] = None
    brokerage_id: Optional[str] = None  # Auto-selected when not provided

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol is required")
        return v

    @field_validator("quantity")
    @classmethod
    def positive_quantity(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("quantity must be positive")
        return v

    @model_validator(mode="after")
    def limit_orders_need_price(self):
        if self.order_type == OrderType.LIMIT and self.limit_price is None:
            raise ValueError("limit orders require limit_price")
        if self.limit_price is not None and self.limit_price <= 0:
            raise ValueError("limit_price must be positive")
        return self


class RoutingDecision(BaseModel):
    brokerage_id: str
    estimated_fee: float
    execution_time: str
    account_id: Optional[str] = None
    score: Optional[float] = None


class BrokerageScore(BaseModel):
    """Per-factor score of one candidate brokerage."""
    brokerage_id: str
    estimated_fee: float
    fee_score: float
    balance_score: float
    specialization_score: float
    speed_score: float

    @property
    def total(self) -> float:
        return self.fee_score + self.balance_score + self.specialization_score + self.speed_score


class Trade(BaseModel):
    id: Optional[str] = None  # Assigned by storage
    user_id: str
    account_id: str
    symbol: str
    asset_type: str
    side: OrderSide
    quantity: float
    price: float
    total_amount: float
    order_type: OrderType
    status: TradeStatus = TradeStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    executed_at: Optional[datetime] = None


class FundHold(BaseModel):
    hold_id: str
    user_id: str
    amount: float
    purpose: str


class ActivityEntry(BaseModel):
    user_id: str
    action: str
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TradeExecutionResult(BaseModel):
    success: bool
    trade_id: str
    routing: RoutingDecision
    state: ExecutionState
    hold_id: str
