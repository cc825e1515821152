from pydantic import BaseModel, Field
from typing import List, Optional


class Holding(BaseModel):
    """
    A single lot of a symbol held in one connected account.
    """
    symbol: str
    account_id: str
    quantity: float = 0.0
    average_price: float = 0.0
    current_price: float = 0.0
    gain_loss: float = 0.0


class ConnectedAccount(BaseModel):
    """
    A user's account at an external brokerage or bank.
    """
    id: str
    provider: str  # Brokerage id, e.g. "robinhood"
    balance: float = 0.0
    account_type: str = "brokerage"  # "brokerage" | "bank"
    institution_name: Optional[str] = None


class BrokerageBreakdown(BaseModel):
    brokerage_id: str
    quantity: float
    average_price: float


class AggregatedPosition(BaseModel):
    """
    One symbol folded across every connected account.
    """
    symbol: str
    total_quantity: float = 0.0
    average_price: float = 0.0
    current_value: float = 0.0
    gain_loss: float = 0.0
    gain_loss_percentage: float = 0.0
    brokerage_breakdown: List[BrokerageBreakdown] = Field(default_factory=list)

    def add_lot(self, brokerage_id: str, quantity: float, price: float,
                current_price: float, gain_loss: float) -> None:
        """Fold one holding into the running volume-weighted aggregate."""
        new_total = self.total_quantity + quantity
        if new_total == 0:
            self.average_price = 0.0
        else:
            self.average_price = (self.average_price * self.total_quantity + price * quantity) / new_total
        self.total_quantity = new_total

        self.brokerage_breakdown.append(BrokerageBreakdown(
            brokerage_id=brokerage_id,
            quantity=quantity,
            average_price=price,
        ))
        self.current_value += quantity * current_price
        self.gain_loss += gain_loss

    def update_gain_loss_percentage(self) -> None:
        """Percentage against cost basis; 0.0 when there is no cost basis."""
        cost_basis = self.total_quantity * self.average_price
        if cost_basis == 0:
            self.gain_loss_percentage = 0.0
        else:
            self.gain_loss_percentage = (self.current_value - cost_basis) / cost_basis * 100
