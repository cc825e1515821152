import pytest

from core.config.settings import RoutingSettings
from core.utils.exceptions import RoutingIncompatibilityError
from services.portfolio_manager import ConnectedAccount
from services.trading_engine.interfaces import CompatibilityLookup
from services.trading_engine.models import OrderSide, OrderType, TradingRequest
from services.trading_engine.routing import (
    AssetType,
    BrokerageCompatibilityEngine,
    BrokerageInfo,
    BrokerageRouter,
    ExecutionSpeed,
    FeeSchedule,
    Specialization,
    determine_asset_type,
)


def _request(symbol, quantity, limit_price=None, brokerage_id=None):
    return TradingRequest(
        user_id="user-1",
        symbol=symbol,
        quantity=quantity,
        side=OrderSide.BUY,
        order_type=OrderType.LIMIT if limit_price else OrderType.MARKET,
        limit_price=limit_price,
        brokerage_id=brokerage_id,
    )


def _account(provider, balance=0.0):
    return ConnectedAccount(id=f"acct-{provider}", provider=provider, balance=balance)


@pytest.fixture
def router():
    return BrokerageRouter(storage=None, compatibility=BrokerageCompatibilityEngine(),
                           settings=RoutingSettings())


@pytest.fixture
def crypto_catalogue():
    low_fee = BrokerageInfo(
        id="alpha", display_name="Alpha", supports_stocks=False, supports_crypto=True,
        supports_options=False, supports_etfs=False,
        execution_speed=ExecutionSpeed.STANDARD,
        fee_schedule=FeeSchedule(base_fee=0.0, fee_rate=0.001),
    )
    specialist = BrokerageInfo(
        id="beta", display_name="Beta", supports_stocks=False, supports_crypto=True,
        supports_options=False, supports_etfs=False,
        specialization=Specialization.CRYPTO,
        execution_speed=ExecutionSpeed.STANDARD,
    )
    return BrokerageCompatibilityEngine([low_fee, specialist])


@pytest.mark.parametrize("symbol,expected", [
    ("BTC", AssetType.CRYPTO),
    ("BTCUSD", AssetType.CRYPTO),
    ("ethusd", AssetType.CRYPTO),
    ("SPY", AssetType.ETF),
    ("IVV", AssetType.ETF),
    ("AAPL", AssetType.STOCK),
])
def test_determine_asset_type(symbol, expected):
    assert determine_asset_type(symbol) == expected


def test_calculate_fee_uses_placeholder_price(router):
    brokerage = router.compatibility.get_brokerage("schwab")
    assert router.calculate_fee(_request("AAPL", 10), brokerage) == pytest.approx(0.99 + 1000 * 0.005)
    assert router.calculate_fee(_request("AAPL", 10, limit_price=50), brokerage) == pytest.approx(0.99 + 500 * 0.005)


def test_specialist_bonus_beats_fee_advantage(crypto_catalogue):
    router = BrokerageRouter(storage=None, compatibility=crypto_catalogue, settings=RoutingSettings())
    request = _request("BTC", 10)  # $1000 at the placeholder price
    accounts = [_account("alpha", balance=20_000), _account("beta", balance=10_000)]

    alpha, beta = router.score_brokerages(request, crypto_catalogue.brokerages, accounts)

    # alpha: fee 1.00 -> 99, balance 20, no bonus
    assert alpha.estimated_fee == pytest.approx(1.0)
    assert alpha.total == pytest.approx(119.0)
    # beta: fee 5.99 -> 94.01, balance 10, specialist +25
    assert beta.estimated_fee == pytest.approx(5.99)
    assert beta.total == pytest.approx(129.01)

    decision = router.select_brokerage(request, accounts)
    assert decision.brokerage_id == "beta"
    assert decision.score == pytest.approx(129.01)
    assert decision.account_id == "acct-beta"
    assert decision.execution_time == "standard"


def test_fee_advantage_wins_when_bonus_is_not_enough(crypto_catalogue):
    router = BrokerageRouter(storage=None, compatibility=crypto_catalogue, settings=RoutingSettings())
    accounts = [_account("alpha", balance=80_000), _account("beta", balance=10_000)]

    decision = router.select_brokerage(_request("BTC", 10), accounts)

    # alpha: 99 + 50 (capped) = 149 against beta's 129.01
    assert decision.brokerage_id == "alpha"
    assert decision.score == pytest.approx(149.0)


def test_default_catalogue_prefers_crypto_specialist(router):
    accounts = [_account("robinhood"), _account("coinbase")]

    scores = {s.brokerage_id: s for s in router.score_brokerages(
        _request("BTC", 10),
        router.compatibility.get_compatible_brokerages(AssetType.CRYPTO, ["robinhood", "coinbase"]),
        accounts,
    )}

    assert scores["robinhood"].speed_score == 20
    assert scores["robinhood"].specialization_score == 0
    assert scores["coinbase"].speed_score == 10
    assert scores["coinbase"].specialization_score == 25
    assert router.select_brokerage(_request("BTC", 10), accounts).brokerage_id == "coinbase"


def test_equities_specialist_bonus_applies_to_etfs(router):
    accounts = [_account("schwab"), _account("fidelity")]
    decision = router.select_brokerage(_request("SPY", 1), accounts)
    assert decision.brokerage_id == "fidelity"


def test_ties_go_to_first_brokerage_in_catalogue_order(router):
    # schwab and etrade score identically; schwab comes first in the catalogue
    accounts = [_account("etrade"), _account("schwab")]

    decision = router.select_brokerage(_request("AAPL", 1), accounts)

    assert decision.brokerage_id == "schwab"


def test_balance_score_is_capped(router):
    [score] = router.score_brokerages(
        _request("AAPL", 1), [router.compatibility.get_brokerage("schwab")],
        [_account("schwab", balance=1_000_000)],
    )
    assert score.balance_score == 50


def test_requested_compatible_brokerage_is_used(router):
    accounts = [_account("robinhood"), _account("coinbase")]

    decision = router.select_brokerage(_request("ETH", 1, brokerage_id="robinhood"), accounts)

    assert decision.brokerage_id == "robinhood"
    assert decision.execution_time == "instant"
    assert decision.account_id == "acct-robinhood"


def test_requested_incompatible_brokerage_is_rejected(router):
    accounts = [_account("fidelity"), _account("coinbase")]

    with pytest.raises(RoutingIncompatibilityError) as exc_info:
        router.select_brokerage(_request("BTC", 1, brokerage_id="fidelity"), accounts)

    assert exc_info.value.brokerage_id == "fidelity"
    assert exc_info.value.symbol == "BTC"


def test_no_compatible_brokerage_is_rejected(router):
    with pytest.raises(RoutingIncompatibilityError):
        router.select_brokerage(_request("DOGE", 100), [_account("fidelity"), _account("schwab")])


def test_unsupported_brokerages_are_ignored(router):
    accounts = [_account("some_bank"), _account("alpaca")]
    decision = router.select_brokerage(_request("AAPL", 1), accounts)
    assert decision.brokerage_id == "alpaca"


@pytest.mark.asyncio
async def test_route_trade_loads_accounts(storage):
    storage.add_account("user-1", _account("fidelity", balance=3_000))
    storage.add_account("user-1", _account("webull", balance=3_000))
    router = BrokerageRouter(storage, BrokerageCompatibilityEngine(), RoutingSettings())

    decision = await router.route_trade(_request("MSFT", 2, limit_price=400))

    # fidelity: 95.01 + 3 + 25 + 10 = 133.01; webull: 95.01 + 3 + 0 + 20 = 118.01
    assert decision.brokerage_id == "fidelity"
    assert decision.estimated_fee == pytest.approx(4.99)


@pytest.mark.asyncio
async def test_route_trade_without_accounts_fails(storage):
    router = BrokerageRouter(storage, BrokerageCompatibilityEngine(), RoutingSettings())

    with pytest.raises(RoutingIncompatibilityError):
        await router.route_trade(_request("MSFT", 2))


class SchwabOnlyLookup:
    """Compatibility source that only ever offers Schwab."""

    def __init__(self):
        self.schwab = BrokerageCompatibilityEngine().get_brokerage("schwab")

    def get_brokerage(self, brokerage_id):
        return self.schwab if brokerage_id == "schwab" else None

    def get_compatible_brokerages(self, asset_type, connected_ids):
        return [self.schwab] if "schwab" in connected_ids else []


def test_engine_satisfies_compatibility_lookup():
    assert isinstance(BrokerageCompatibilityEngine(), CompatibilityLookup)
    assert isinstance(SchwabOnlyLookup(), CompatibilityLookup)


def test_router_accepts_any_compatibility_lookup():
    router = BrokerageRouter(storage=None, compatibility=SchwabOnlyLookup(), settings=RoutingSettings())
    accounts = [_account("fidelity", 10_000), _account("schwab")]

    assert router.select_brokerage(_request("AAPL", 1), accounts).brokerage_id == "schwab"


def test_check_asset_compatibility_reports_candidates():
    engine = BrokerageCompatibilityEngine()

    result = engine.check_asset_compatibility("btc", ["fidelity", "kraken", "coinbase"])

    assert result.asset_type == AssetType.CRYPTO
    assert [b.id for b in result.compatible_brokerages] == ["coinbase", "kraken"]
    assert result.is_compatible
    assert not engine.check_asset_compatibility("BTC", ["fidelity"]).is_compatible
