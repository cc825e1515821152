from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from core.config.settings import Settings
from core.logging import get_error_logger_safe, get_trading_logger_safe
from core.resilience import RateLimitManager, ResilientProviderClient, rate_limit_key
from services.portfolio_manager import AggregatedPosition, PositionAggregator
from .models import RoutingDecision, TradeExecutionResult, TradingRequest
from .orchestrator import TradeExecutionOrchestrator
from .routing.brokerage_router import BrokerageRouter

T = TypeVar("T")


class TradingEngineService:
    """Entry point for aggregation, routing and execution requests."""

    def __init__(
        self,
        settings: Settings,
        aggregator: PositionAggregator,
        router: BrokerageRouter,
        orchestrator: TradeExecutionOrchestrator,
        rate_limiter: RateLimitManager,
        provider_client: ResilientProviderClient,
        execution_gateway=None,
    ):
        self.settings = settings
        self.aggregator = aggregator
        self.router = router
        self.orchestrator = orchestrator
        self.rate_limiter = rate_limiter
        self.provider_client = provider_client
        self.execution_gateway = execution_gateway
        self._running = False

        self.logger = get_trading_logger_safe("trading_engine")
        self.error_logger = get_error_logger_safe("trading_engine_errors")

    async def start(self) -> None:
        """Start background maintenance (rate limit sweeps)."""
        self.rate_limiter.start_cleanup_task()
        self._running = True
        self.logger.info("Trading engine started",
                         environment=self.settings.environment.value,
                         state_backend=self.settings.state_backend)

    async def stop(self) -> None:
        await self.rate_limiter.stop_cleanup_task()
        shutdown = getattr(self.execution_gateway, "shutdown", None)
        if shutdown is not None:
            await shutdown()
        self._running = False
        self.logger.info("Trading engine stopped")

    async def get_aggregated_positions(self, user_id: str) -> List[AggregatedPosition]:
        return await self.aggregator.get_aggregated_positions(user_id)

    async def route_trade(self, request: TradingRequest) -> RoutingDecision:
        return await self.router.route_trade(request)

    async def execute_trade(self, request: TradingRequest) -> TradeExecutionResult:
        try:
            return await self.orchestrator.execute_trade(request)
        except Exception as e:
            self.error_logger.error("Trade execution failed",
                                    user_id=request.user_id,
                                    symbol=request.symbol,
                                    error_type=type(e).__name__,
                                    error=str(e))
            raise

    async def call_provider(self, caller: str, provider: str, op: Callable[[], Awaitable[T]],
                            brokerage_auth_id: Optional[str] = None, context: str = "") -> T:
        """Run a provider call behind the rate limiter and broken-connection classifier."""
        return await self.provider_client.call(
            op,
            rate_limit_key(caller, provider),
            brokerage_auth_id=brokerage_auth_id,
            context=context or f"{provider} call",
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "service_name": "trading_engine",
            "running": self._running,
            "state_backend": self.settings.state_backend,
            **self.orchestrator.get_status(),
        }
