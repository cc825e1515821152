from dependency_injector import containers, providers
import redis.asyncio as redis

from core.config.settings import Settings
from core.resilience import BrokenConnectionHandler, RateLimitManager, ResilientProviderClient
from core.resilience.stores import (
    InMemoryConnectionHealthStore,
    InMemoryRateLimitStore,
    RedisConnectionHealthStore,
    RedisRateLimitStore,
)
from services.portfolio_manager import PositionAggregator
from services.trading_engine.interfaces import CompatibilityLookup
from services.trading_engine.orchestrator import TradeExecutionOrchestrator
from services.trading_engine.routing import BrokerageCompatibilityEngine, BrokerageRouter
from services.trading_engine.service import TradingEngineService
from services.trading_engine.traders import PaperExecutionGateway
from services.wallet import WalletService


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    # Configuration
    settings = providers.Singleton(Settings)

    # Supplied by the host application
    storage = providers.Dependency()
    compatibility = providers.Dependency(
        instance_of=CompatibilityLookup,
        default=providers.Singleton(BrokerageCompatibilityEngine),
    )

    # Redis cache, only created when the redis state backend is selected
    redis_client = providers.Singleton(
        redis.from_url,
        settings.provided.redis.url,
        decode_responses=True,
    )

    # --- Keyed state stores ---
    rate_limit_store = providers.Selector(
        settings.provided.state_backend,
        memory=providers.Singleton(InMemoryRateLimitStore),
        redis=providers.Singleton(RedisRateLimitStore, settings=settings, redis_client=redis_client),
    )
    connection_health_store = providers.Selector(
        settings.provided.state_backend,
        memory=providers.Singleton(InMemoryConnectionHealthStore),
        redis=providers.Singleton(RedisConnectionHealthStore, settings=settings, redis_client=redis_client),
    )

    # --- Resilience ---
    rate_limiter = providers.Singleton(
        RateLimitManager,
        settings=settings.provided.rate_limit,
        store=rate_limit_store,
    )
    connection_handler = providers.Singleton(
        BrokenConnectionHandler,
        settings=settings.provided.repair,
        connections=storage,
        health_store=connection_health_store,
    )
    provider_client = providers.Singleton(
        ResilientProviderClient,
        rate_limiter=rate_limiter,
        connection_handler=connection_handler,
    )

    # --- Trading ---
    position_aggregator = providers.Singleton(PositionAggregator, storage=storage)

    brokerage_router = providers.Singleton(
        BrokerageRouter,
        storage=storage,
        compatibility=compatibility,
        settings=settings.provided.routing,
    )

    wallet_service = providers.Singleton(WalletService, storage=storage)

    execution_gateway = providers.Singleton(
        PaperExecutionGateway,
        settings=settings.provided.paper_trading,
    )

    trade_orchestrator = providers.Singleton(
        TradeExecutionOrchestrator,
        router=brokerage_router,
        wallet=wallet_service,
        storage=storage,
        execution_gateway=execution_gateway,
        settings=settings,
    )

    trading_engine_service = providers.Singleton(
        TradingEngineService,
        settings=settings,
        aggregator=position_aggregator,
        router=brokerage_router,
        orchestrator=trade_orchestrator,
        rate_limiter=rate_limiter,
        provider_client=provider_client,
        execution_gateway=execution_gateway,
    )

    lifespan_services = providers.List(
        trading_engine_service,
    )
