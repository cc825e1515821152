import asyncio

import pytest
from unittest.mock import AsyncMock

from core.config.settings import PaperTradingSettings
from core.utils.exceptions import FundsUnavailableError, RoutingIncompatibilityError
from services.portfolio_manager import ConnectedAccount
from services.trading_engine import (
    BrokerageCompatibilityEngine,
    BrokerageRouter,
    ExecutionState,
    PaperExecutionGateway,
    TradeExecutionOrchestrator,
    TradeStatus,
    TradingRequest,
)
from services.trading_engine.models import FundHold
from services.wallet import WalletService


def _request(**overrides):
    values = dict(user_id="user-1", symbol="BTC", quantity=10, side="buy")
    values.update(overrides)
    return TradingRequest(**values)


@pytest.fixture
def funded_storage(storage):
    storage.add_account("user-1", ConnectedAccount(id="11", provider="coinbase", balance=2_000))
    storage.add_account("user-1", ConnectedAccount(id="12", provider="chase", balance=50_000,
                                                   account_type="bank"))
    return storage


@pytest.fixture
def wallet():
    wallet = AsyncMock()
    wallet.hold_funds.return_value = FundHold(hold_id="hold-1", user_id="user-1",
                                              amount=1005.99, purpose="trading")
    return wallet


@pytest.fixture
def router(funded_storage, test_settings):
    return BrokerageRouter(funded_storage, BrokerageCompatibilityEngine(), test_settings.routing)


def _orchestrator(router, wallet, storage, gateway, settings):
    return TradeExecutionOrchestrator(router, wallet, storage, gateway, settings)


@pytest.mark.asyncio
async def test_successful_trade_holds_and_releases_once(router, wallet, funded_storage, test_settings):
    gateway = PaperExecutionGateway(PaperTradingSettings(fill_delay_seconds=0))
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    result = await orchestrator.execute_trade(_request())

    assert result.success is True
    assert result.state == ExecutionState.FILLED
    assert result.routing.brokerage_id == "coinbase"
    wallet.hold_funds.assert_awaited_once_with("user-1", pytest.approx(1005.99), "trading")
    wallet.release_funds.assert_awaited_once_with("user-1", "hold-1")

    trade = funded_storage.trades[result.trade_id]
    assert trade.status == TradeStatus.FILLED
    assert trade.executed_at is not None
    assert trade.account_id == "11"
    assert trade.asset_type == "crypto"
    assert trade.total_amount == pytest.approx(1005.99)
    assert orchestrator.active_hold_count == 0


@pytest.mark.asyncio
async def test_successful_trade_is_logged_with_metadata(router, wallet, funded_storage, test_settings):
    gateway = PaperExecutionGateway(PaperTradingSettings(fill_delay_seconds=0))
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    result = await orchestrator.execute_trade(_request())

    [activity] = funded_storage.activities
    assert activity.action == "trade_executed"
    assert activity.description == "BUY 10.0 BTC via coinbase"
    assert activity.metadata == {
        "symbol": "BTC",
        "quantity": 10,
        "side": "buy",
        "brokerage_id": "coinbase",
        "trade_id": result.trade_id,
    }


@pytest.mark.asyncio
async def test_trade_creation_failure_releases_hold_exactly_once(router, wallet, funded_storage, test_settings):
    funded_storage.create_trade = AsyncMock(side_effect=RuntimeError("database unavailable"))
    gateway = AsyncMock()
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    with pytest.raises(RuntimeError, match="database unavailable"):
        await orchestrator.execute_trade(_request())

    assert wallet.hold_funds.await_count == 1
    assert wallet.release_funds.await_count == 1
    gateway.submit.assert_not_awaited()
    assert orchestrator.active_hold_count == 0
    assert funded_storage.activities[-1].action == "trade_failed"
    assert funded_storage.activities[-1].metadata["trade_id"] is None


@pytest.mark.asyncio
async def test_hold_rejection_creates_no_trade(router, wallet, funded_storage, test_settings):
    wallet.hold_funds.side_effect = FundsUnavailableError(
        "Insufficient funds for hold request", required_amount=1005.99, available_amount=10, user_id="user-1"
    )
    orchestrator = _orchestrator(router, wallet, funded_storage, AsyncMock(), test_settings)

    with pytest.raises(FundsUnavailableError):
        await orchestrator.execute_trade(_request())

    assert funded_storage.trades == {}
    wallet.release_funds.assert_not_awaited()
    assert funded_storage.activities[-1].action == "trade_failed"


@pytest.mark.asyncio
async def test_routing_failure_touches_no_funds(router, wallet, funded_storage, test_settings):
    orchestrator = _orchestrator(router, wallet, funded_storage, AsyncMock(), test_settings)

    with pytest.raises(RoutingIncompatibilityError):
        await orchestrator.execute_trade(_request(symbol="AAPL"))

    wallet.hold_funds.assert_not_awaited()
    wallet.release_funds.assert_not_awaited()
    assert funded_storage.trades == {}


@pytest.mark.asyncio
async def test_submit_failure_rejects_trade_and_releases(router, wallet, funded_storage, test_settings):
    gateway = AsyncMock()
    gateway.submit.side_effect = ConnectionError("venue unreachable")
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    with pytest.raises(ConnectionError):
        await orchestrator.execute_trade(_request())

    [trade] = funded_storage.trades.values()
    assert trade.status == TradeStatus.REJECTED
    assert wallet.release_funds.await_count == 1
    assert funded_storage.activities[-1].metadata["trade_id"] == trade.id


@pytest.mark.asyncio
async def test_cancellation_after_hold_releases_funds(router, wallet, funded_storage, test_settings):
    gateway = AsyncMock()
    gateway.submit.side_effect = asyncio.CancelledError()
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    with pytest.raises(asyncio.CancelledError):
        await orchestrator.execute_trade(_request())

    assert wallet.release_funds.await_count == 1
    assert orchestrator.active_hold_count == 0


@pytest.mark.asyncio
async def test_deferred_settlement_releases_once(router, wallet, funded_storage, test_settings):
    gateway = AsyncMock()
    gateway.submit.return_value = {"order_id": "x"}
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    result = await orchestrator.execute_trade(_request())

    assert result.state == ExecutionState.TRADE_PENDING
    assert funded_storage.trades[result.trade_id].status == TradeStatus.PENDING
    wallet.release_funds.assert_not_awaited()

    await orchestrator.settle_trade(result.trade_id, TradeStatus.FILLED)
    await orchestrator.settle_trade(result.trade_id, TradeStatus.FILLED)

    assert funded_storage.trades[result.trade_id].status == TradeStatus.FILLED
    assert wallet.release_funds.await_count == 1
    assert orchestrator.get_status()["pending_trades"] == 0


@pytest.mark.asyncio
async def test_settlement_releases_even_when_status_update_fails(router, wallet, funded_storage, test_settings):
    gateway = AsyncMock()
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)
    result = await orchestrator.execute_trade(_request())

    funded_storage.update_trade_status = AsyncMock(side_effect=RuntimeError("write failed"))
    with pytest.raises(RuntimeError):
        await orchestrator.settle_trade(result.trade_id, TradeStatus.CANCELLED)

    assert wallet.release_funds.await_count == 1


@pytest.mark.asyncio
async def test_activity_log_failure_does_not_fail_trade(router, wallet, funded_storage, test_settings):
    funded_storage.log_activity = AsyncMock(side_effect=RuntimeError("log store down"))
    gateway = PaperExecutionGateway(PaperTradingSettings(fill_delay_seconds=0))
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    result = await orchestrator.execute_trade(_request())

    assert result.success is True
    assert wallet.release_funds.await_count == 1


@pytest.mark.asyncio
async def test_limit_price_drives_cost(router, wallet, funded_storage, test_settings):
    orchestrator = _orchestrator(router, wallet, funded_storage, AsyncMock(), test_settings)

    await orchestrator.execute_trade(_request(quantity=2, order_type="limit", limit_price=250))

    # 2 * 250 + (0.99 + 500 * 0.005)
    wallet.hold_funds.assert_awaited_once_with("user-1", pytest.approx(503.49), "trading")


@pytest.mark.asyncio
async def test_end_to_end_with_wallet_service(router, funded_storage, test_settings):
    wallet = WalletService(funded_storage)
    gateway = PaperExecutionGateway(PaperTradingSettings(fill_delay_seconds=0.01))
    orchestrator = _orchestrator(router, wallet, funded_storage, gateway, test_settings)

    result = await orchestrator.execute_trade(_request())
    balance = await wallet.get_wallet_balance("user-1")
    assert balance.hold_balance == pytest.approx(1005.99)

    await asyncio.sleep(0.05)

    balance = await wallet.get_wallet_balance("user-1")
    assert balance.hold_balance == 0
    assert balance.available_balance == 50_000
    assert funded_storage.trades[result.trade_id].status == TradeStatus.FILLED
    assert [a.action for a in funded_storage.activities] == ["trade_executed", "fund_release"]
