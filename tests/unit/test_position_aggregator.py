import itertools

import pytest

from services.portfolio_manager import ConnectedAccount, Holding, PositionAggregator, aggregate_holdings

ACCOUNTS = [
    ConnectedAccount(id="1", provider="robinhood", balance=5_000),
    ConnectedAccount(id="2", provider="fidelity", balance=12_000),
    ConnectedAccount(id="3", provider="coinbase", balance=800),
]


def _holding(symbol, account_id, quantity, average_price, current_price=0.0, gain_loss=0.0):
    return Holding(symbol=symbol, account_id=account_id, quantity=quantity,
                   average_price=average_price, current_price=current_price, gain_loss=gain_loss)


def test_weighted_average_is_fold_order_independent():
    lots = [
        _holding("AAPL", "1", 10, 150.0),
        _holding("AAPL", "2", 30, 170.0),
        _holding("AAPL", "3", 5, 120.0),
    ]
    expected = (10 * 150.0 + 30 * 170.0 + 5 * 120.0) / 45

    for ordering in itertools.permutations(lots):
        [position] = aggregate_holdings(ordering, ACCOUNTS)
        assert position.total_quantity == 45
        assert position.average_price == pytest.approx(expected)
        assert sum(b.quantity for b in position.brokerage_breakdown) == position.total_quantity


def test_aggregates_value_gain_and_percentage():
    holdings = [
        _holding("AAPL", "1", 10, 100.0, current_price=120.0, gain_loss=200.0),
        _holding("AAPL", "2", 10, 200.0, current_price=120.0, gain_loss=-800.0),
    ]

    [position] = aggregate_holdings(holdings, ACCOUNTS)

    assert position.current_value == pytest.approx(2400.0)
    assert position.gain_loss == pytest.approx(-600.0)
    # cost basis 20 * 150 = 3000
    assert position.gain_loss_percentage == pytest.approx(-20.0)
    assert [b.brokerage_id for b in position.brokerage_breakdown] == ["robinhood", "fidelity"]


def test_symbols_keep_first_seen_order():
    holdings = [
        _holding("TSLA", "1", 1, 200.0),
        _holding("BTC", "3", 0.5, 30_000.0),
        _holding("TSLA", "2", 2, 210.0),
    ]

    positions = aggregate_holdings(holdings, ACCOUNTS)

    assert [p.symbol for p in positions] == ["TSLA", "BTC"]


def test_unknown_account_is_attributed_to_unknown_brokerage():
    [position] = aggregate_holdings([_holding("MSFT", "99", 3, 300.0)], ACCOUNTS)
    assert position.brokerage_breakdown[0].brokerage_id == "unknown"


def test_zero_quantity_symbol_is_kept_with_zero_average():
    holdings = [
        _holding("GME", "1", 0, 20.0, current_price=25.0),
        _holding("AMC", "1", 5, 4.0, current_price=5.0),
    ]

    positions = {p.symbol: p for p in aggregate_holdings(holdings, ACCOUNTS)}

    assert positions["GME"].total_quantity == 0
    assert positions["GME"].average_price == 0.0
    assert positions["GME"].gain_loss_percentage == 0.0
    assert positions["AMC"].gain_loss_percentage == pytest.approx(25.0)


def test_offsetting_lots_do_not_divide_by_zero():
    holdings = [
        _holding("SPY", "1", 5, 400.0),
        _holding("SPY", "2", -5, 410.0),
    ]

    [position] = aggregate_holdings(holdings, ACCOUNTS)

    assert position.total_quantity == 0
    assert position.average_price == 0.0
    assert position.gain_loss_percentage == 0.0


@pytest.mark.asyncio
async def test_get_aggregated_positions_reads_storage(storage):
    for account in ACCOUNTS:
        storage.add_account("user-1", account)
    storage.add_holding("user-1", _holding("ETH", "3", 2, 2_000.0, current_price=2_500.0, gain_loss=1_000.0))
    storage.add_holding("user-1", _holding("ETH", "1", 1, 2_300.0, current_price=2_500.0, gain_loss=200.0))
    storage.add_holding("user-2", _holding("ETH", "1", 100, 1.0))

    positions = await PositionAggregator(storage).get_aggregated_positions("user-1")

    assert len(positions) == 1
    assert positions[0].total_quantity == 3
    assert positions[0].average_price == pytest.approx(2_100.0)
    assert positions[0].gain_loss == pytest.approx(1_200.0)


@pytest.mark.asyncio
async def test_no_holdings_yields_no_positions(storage):
    assert await PositionAggregator(storage).get_aggregated_positions("nobody") == []
