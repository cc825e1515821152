from pydantic import BaseModel


class WalletBalance(BaseModel):
    user_id: str
    available_balance: float
    hold_balance: float
    total_balance: float
    currency: str = "USD"
