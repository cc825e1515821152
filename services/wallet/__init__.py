"""Internal wallet: funds holds against connected bank balances."""

from .models import WalletBalance
from .service import WalletService

__all__ = ["WalletBalance", "WalletService"]
