import asyncio
import uuid
from typing import Dict, List

from core.logging import get_audit_logger_safe
from core.utils.exceptions import FundsUnavailableError
from services.trading_engine.models import ActivityEntry, FundHold
from .models import WalletBalance

BANK_ACCOUNT_TYPE = "bank"


class WalletService:
    """
    Internal wallet backed by the user's connected bank accounts.

    Holds reserve part of the bank balance for in-flight trades. The wallet
    never moves money itself; it only tracks what is spoken for.
    """

    def __init__(self, storage):
        self.storage = storage
        self.logger = get_audit_logger_safe("wallet")
        self._holds: Dict[str, FundHold] = {}
        self._user_locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    def get_active_holds(self, user_id: str) -> List[FundHold]:
        return [hold for hold in self._holds.values() if hold.user_id == user_id]

    async def get_wallet_balance(self, user_id: str) -> WalletBalance:
        accounts = await self.storage.get_connected_accounts(user_id)
        total = sum((account.balance or 0.0) for account in accounts
                    if account.account_type == BANK_ACCOUNT_TYPE)
        held = sum(hold.amount for hold in self.get_active_holds(user_id))
        return WalletBalance(
            user_id=user_id,
            available_balance=total - held,
            hold_balance=held,
            total_balance=total,
        )

    async def hold_funds(self, user_id: str, amount: float, purpose: str) -> FundHold:
        """Reserve ``amount``; raises FundsUnavailableError when the wallet is short."""
        async with self._lock_for(user_id):
            wallet = await self.get_wallet_balance(user_id)
            if wallet.available_balance < amount:
                self.logger.warning("Insufficient funds for hold request",
                                    user_id=user_id,
                                    required_amount=amount,
                                    available_amount=wallet.available_balance)
                raise FundsUnavailableError(
                    "Insufficient funds for hold request",
                    required_amount=amount,
                    available_amount=wallet.available_balance,
                    user_id=user_id,
                )

            hold = FundHold(
                hold_id=f"hold_{uuid.uuid4().hex[:16]}",
                user_id=user_id,
                amount=amount,
                purpose=purpose,
            )
            self._holds[hold.hold_id] = hold

        self.logger.info("Funds held", user_id=user_id, hold_id=hold.hold_id,
                         amount=amount, purpose=purpose)
        return hold

    async def release_funds(self, user_id: str, hold_id: str) -> None:
        """Release a hold. Releasing an unknown or already released hold is a no-op."""
        hold = self._holds.get(hold_id)
        if hold is None or hold.user_id != user_id:
            self.logger.debug("Hold already released or unknown", user_id=user_id, hold_id=hold_id)
            return
        del self._holds[hold_id]

        self.logger.info("Released held funds", user_id=user_id, hold_id=hold_id, amount=hold.amount)
        try:
            await self.storage.log_activity(ActivityEntry(
                user_id=user_id,
                action="fund_release",
                description=f"Released held funds: {hold_id}",
                metadata={"hold_id": hold_id, "amount": hold.amount, "purpose": hold.purpose},
            ))
        except Exception as e:
            self.logger.error("Failed to record fund release activity",
                              user_id=user_id, hold_id=hold_id, error=str(e))
