"""
Brokerage catalogue and asset compatibility rules.
"""

from enum import Enum
from typing import Iterable, List, Optional

from pydantic import BaseModel


class AssetType(str, Enum):
    STOCK = "stock"
    CRYPTO = "crypto"
    ETF = "etf"


class Specialization(str, Enum):
    CRYPTO = "crypto"
    EQUITIES = "equities"


class ExecutionSpeed(str, Enum):
    INSTANT = "instant"
    FAST = "fast"
    STANDARD = "standard"


class FeeSchedule(BaseModel):
    base_fee: float
    fee_rate: float


class BrokerageInfo(BaseModel):
    id: str
    display_name: str
    supports_stocks: bool
    supports_crypto: bool
    supports_options: bool
    supports_etfs: bool
    specialization: Optional[Specialization] = None
    execution_speed: ExecutionSpeed = ExecutionSpeed.FAST
    fee_schedule: Optional[FeeSchedule] = None  # Falls back to routing defaults
    ticker_format: str = "SYMBOL"

    def supports(self, asset_type: AssetType) -> bool:
        if asset_type == AssetType.STOCK:
            return self.supports_stocks
        if asset_type == AssetType.CRYPTO:
            return self.supports_crypto
        if asset_type == AssetType.ETF:
            return self.supports_etfs
        return False


def _equities(id: str, display_name: str, crypto: bool = False, options: bool = True,
              **kwargs) -> BrokerageInfo:
    return BrokerageInfo(id=id, display_name=display_name, supports_stocks=True,
                         supports_crypto=crypto, supports_options=options,
                         supports_etfs=True, **kwargs)


def _exchange(id: str, display_name: str, ticker_format: str) -> BrokerageInfo:
    return BrokerageInfo(id=id, display_name=display_name, supports_stocks=False,
                         supports_crypto=True, supports_options=False, supports_etfs=False,
                         specialization=Specialization.CRYPTO, ticker_format=ticker_format)


SUPPORTED_BROKERAGES: List[BrokerageInfo] = [
    # US stock brokerages
    _equities("robinhood", "Robinhood", crypto=True,
              specialization=Specialization.EQUITIES, execution_speed=ExecutionSpeed.INSTANT),
    _equities("fidelity", "Fidelity", specialization=Specialization.EQUITIES),
    _equities("schwab", "Charles Schwab"),
    _equities("etrade", "E*TRADE"),
    _equities("interactive_brokers", "Interactive Brokers", crypto=True),
    _equities("webull", "Webull", crypto=True, execution_speed=ExecutionSpeed.INSTANT),
    _equities("alpaca", "Alpaca", crypto=True, options=False, execution_speed=ExecutionSpeed.INSTANT),
    # Crypto exchanges
    _exchange("coinbase", "Coinbase", "COINBASE:SYMBOL"),
    _exchange("binance_us", "Binance.US", "BINANCE:SYMBOLUSDT"),
    BrokerageInfo(id="kraken", display_name="Kraken", supports_stocks=False, supports_crypto=True,
                  supports_options=False, supports_etfs=False, ticker_format="KRAKEN:SYMBOLUSD"),
    # International
    _equities("questrade", "Questrade"),
    _equities("wealthsimple", "Wealthsimple", crypto=True, options=False),
]

CRYPTO_SYMBOLS = ("BTC", "ETH", "ADA", "SOL", "DOGE", "SHIB")
ETF_SYMBOLS = frozenset({"SPY", "QQQ", "VTI", "IVV"})


def determine_asset_type(symbol: str) -> AssetType:
    """Classify a ticker. Crypto matches by substring so pairs like BTCUSD count."""
    symbol = symbol.upper()
    if any(crypto in symbol for crypto in CRYPTO_SYMBOLS):
        return AssetType.CRYPTO
    if symbol in ETF_SYMBOLS:
        return AssetType.ETF
    return AssetType.STOCK


class CompatibilityResult(BaseModel):
    asset_type: AssetType
    compatible_brokerages: List[BrokerageInfo]

    @property
    def is_compatible(self) -> bool:
        return len(self.compatible_brokerages) > 0


class BrokerageCompatibilityEngine:
    """Filters a user's connected brokerages down to those that can trade an asset."""

    def __init__(self, brokerages: Optional[Iterable[BrokerageInfo]] = None):
        self.brokerages = list(brokerages) if brokerages is not None else list(SUPPORTED_BROKERAGES)

    def get_brokerage(self, brokerage_id: str) -> Optional[BrokerageInfo]:
        for brokerage in self.brokerages:
            if brokerage.id == brokerage_id:
                return brokerage
        return None

    def get_compatible_brokerages(self, asset_type: AssetType, connected_ids: Iterable[str]) -> List[BrokerageInfo]:
        """Compatible brokerages in catalogue order."""
        asset_type = AssetType(asset_type)
        connected = set(connected_ids)
        return [b for b in self.brokerages if b.id in connected and b.supports(asset_type)]

    def check_asset_compatibility(self, symbol: str, connected_ids: Iterable[str]) -> CompatibilityResult:
        asset_type = determine_asset_type(symbol)
        return CompatibilityResult(
            asset_type=asset_type,
            compatible_brokerages=self.get_compatible_brokerages(asset_type, connected_ids),
        )
