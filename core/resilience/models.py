from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class RateLimitState(BaseModel):
    """Fixed-window admission state for one caller+provider key (epoch seconds)."""
    last_request_at: float
    request_count: int
    window_start_at: float
    retry_after_at: float = 0.0  # 0 means no explicit deadline

    def has_deadline(self, now: float) -> bool:
        return self.retry_after_at > 0 and now < self.retry_after_at


class RateLimitDecision(BaseModel):
    limited: bool
    retry_after: Optional[int] = None  # whole seconds


class ConnectionState(str, Enum):
    HEALTHY = "healthy"
    BROKEN = "broken"


class RepairAction(str, Enum):
    REAUTH = "reauth"
    RECONNECT = "reconnect"
    CONTACT_SUPPORT = "contact_support"


class ConnectionHealth(BaseModel):
    brokerage_auth_id: str
    state: ConnectionState = ConnectionState.HEALTHY
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None
    last_failed_at: Optional[datetime] = None
    repair_action: Optional[RepairAction] = None

    @property
    def is_broken(self) -> bool:
        return self.state == ConnectionState.BROKEN


class ConnectionRecord(BaseModel):
    """Connection metadata owned by storage."""
    connection_id: int
    brokerage_auth_id: str
    brokerage_name: str
    user_id: str


class RepairInfo(BaseModel):
    connection_id: int
    brokerage_auth_id: str
    brokerage_name: str
    user_id: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    last_failed_at: datetime
    repair_action: RepairAction
    repair_url: Optional[str] = None


class ApiError(BaseModel):
    """Provider failure mapped to an actionable, user-facing code."""
    code: str
    message: str
    request_id: Optional[str] = None
