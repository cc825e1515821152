from typing import List, Optional, Sequence, Tuple

from core.config.settings import RoutingSettings
from core.logging import get_trading_logger_safe
from core.utils.exceptions import RoutingIncompatibilityError
from services.portfolio_manager.models import ConnectedAccount
from ..interfaces import CompatibilityLookup
from ..models import BrokerageScore, RoutingDecision, TradingRequest
from .compatibility import (
    AssetType,
    BrokerageInfo,
    ExecutionSpeed,
    Specialization,
    determine_asset_type,
)


class BrokerageRouter:
    """Picks the brokerage an order should be sent to.

    Each compatible brokerage gets a score from four factors (fee, balance,
    specialization and execution speed) and the highest total wins. Among
    equal scores the brokerage listed first in the catalogue wins.
    """

    def __init__(self, storage, compatibility: CompatibilityLookup, settings: RoutingSettings):
        self.storage = storage
        self.compatibility = compatibility
        self.settings = settings
        self.logger = get_trading_logger_safe("brokerage_router")

    def trade_price(self, request: TradingRequest) -> float:
        return request.limit_price or self.settings.placeholder_market_price

    def calculate_fee(self, request: TradingRequest, brokerage: BrokerageInfo) -> float:
        base_fee, fee_rate = self.settings.base_fee, self.settings.fee_rate
        if brokerage.fee_schedule is not None:
            base_fee, fee_rate = brokerage.fee_schedule.base_fee, brokerage.fee_schedule.fee_rate
        trade_value = request.quantity * self.trade_price(request)
        return base_fee + trade_value * fee_rate

    @staticmethod
    def get_execution_time(brokerage: BrokerageInfo) -> str:
        return brokerage.execution_speed.value

    @staticmethod
    def _account_at(brokerage_id: str, accounts: Sequence[ConnectedAccount]) -> Optional[ConnectedAccount]:
        for account in accounts:
            if account.provider == brokerage_id:
                return account
        return None

    def _is_specialist(self, asset_type: AssetType, brokerage: BrokerageInfo) -> bool:
        if asset_type == AssetType.CRYPTO:
            return brokerage.specialization == Specialization.CRYPTO
        return brokerage.specialization == Specialization.EQUITIES

    def score_brokerage(self, request: TradingRequest, brokerage: BrokerageInfo,
                        accounts: Sequence[ConnectedAccount]) -> BrokerageScore:
        fee = self.calculate_fee(request, brokerage)

        balance_score = 0.0
        account = self._account_at(brokerage.id, accounts)
        if account is not None:
            balance = account.balance or 0.0
            balance_score = min(self.settings.balance_score_cap,
                                balance / self.settings.balance_score_divisor)

        asset_type = determine_asset_type(request.symbol)
        specialization_score = self.settings.specialization_bonus if self._is_specialist(asset_type, brokerage) else 0.0

        if brokerage.execution_speed == ExecutionSpeed.INSTANT:
            speed_score = self.settings.instant_execution_bonus
        elif brokerage.execution_speed == ExecutionSpeed.FAST:
            speed_score = self.settings.fast_execution_bonus
        else:
            speed_score = 0.0

        return BrokerageScore(
            brokerage_id=brokerage.id,
            estimated_fee=fee,
            fee_score=max(0.0, self.settings.fee_score_ceiling - fee),
            balance_score=balance_score,
            specialization_score=specialization_score,
            speed_score=speed_score,
        )

    def score_brokerages(self, request: TradingRequest, brokerages: Sequence[BrokerageInfo],
                         accounts: Sequence[ConnectedAccount]) -> List[BrokerageScore]:
        return [self.score_brokerage(request, brokerage, accounts) for brokerage in brokerages]

    def _compatible(self, request: TradingRequest,
                    accounts: Sequence[ConnectedAccount]) -> Tuple[AssetType, List[BrokerageInfo]]:
        asset_type = determine_asset_type(request.symbol)
        connected_ids = [account.provider for account in accounts]
        compatible = self.compatibility.get_compatible_brokerages(asset_type, connected_ids)
        if not compatible:
            raise RoutingIncompatibilityError(
                f"No connected brokerages support trading {request.symbol}",
                symbol=request.symbol,
            )
        return asset_type, compatible

    def select_brokerage(self, request: TradingRequest,
                         accounts: Sequence[ConnectedAccount]) -> RoutingDecision:
        """Pure selection over an already-loaded accounts list."""
        asset_type, compatible = self._compatible(request, accounts)

        if request.brokerage_id:
            requested = next((b for b in compatible if b.id == request.brokerage_id), None)
            if requested is None:
                raise RoutingIncompatibilityError(
                    f"Requested brokerage {request.brokerage_id} does not support {request.symbol}",
                    symbol=request.symbol,
                    brokerage_id=request.brokerage_id,
                )
            return self._decision(request, requested, accounts)

        best: Optional[BrokerageScore] = None
        best_brokerage: Optional[BrokerageInfo] = None
        for brokerage, score in zip(compatible, self.score_brokerages(request, compatible, accounts)):
            # Strict comparison keeps the earliest brokerage on ties
            if best is None or score.total > best.total:
                best, best_brokerage = score, brokerage

        decision = self._decision(request, best_brokerage, accounts, score=best.total)
        self.logger.info("Trade routed",
                         symbol=request.symbol,
                         asset_type=asset_type.value,
                         brokerage_id=decision.brokerage_id,
                         score=decision.score,
                         candidates=len(compatible))
        return decision

    def _decision(self, request: TradingRequest, brokerage: BrokerageInfo,
                  accounts: Sequence[ConnectedAccount], score: Optional[float] = None) -> RoutingDecision:
        account = self._account_at(brokerage.id, accounts)
        return RoutingDecision(
            brokerage_id=brokerage.id,
            estimated_fee=self.calculate_fee(request, brokerage),
            execution_time=self.get_execution_time(brokerage),
            account_id=account.id if account is not None else None,
            score=score,
        )

    async def route_trade(self, request: TradingRequest) -> RoutingDecision:
        accounts = await self.storage.get_connected_accounts(request.user_id)
        try:
            return self.select_brokerage(request, accounts)
        except RoutingIncompatibilityError as e:
            self.logger.warning("Trade routing rejected",
                                user_id=request.user_id,
                                symbol=request.symbol,
                                requested_brokerage=request.brokerage_id,
                                error=str(e))
            raise
