"""Per-exchange order conventions: symbol naming and quantity units.

Only two venues are supported and they are enumerated explicitly. Binance
USDT-M futures take the base-asset quantity as is; OKX swaps are sized in
whole contracts of contract_size base units.
"""

from abc import ABC, abstractmethod
from decimal import ROUND_FLOOR, Decimal
from enum import Enum

from arbsim.exceptions import ConfigError
from arbsim.models import OrderIntent, Side
from arbsim.profiles import ContractProfile


class Venue(str, Enum):
    BINANCE = "binance"
    OKX = "okx"


class ExchangeAdapter(ABC):
    """Translates a leg's abstract order into venue conventions."""

    venue: Venue

    @abstractmethod
    def map_symbol(self, symbol: str) -> str:
        """Venue-native instrument name for a configured symbol."""
        ...

    @abstractmethod
    def convert_quantity(self, base_quantity: Decimal, contract: ContractProfile) -> Decimal:
        """Venue order quantity for a base-asset quantity."""
        ...

    def build_order(
        self,
        symbol: str,
        side: Side,
        base_quantity: Decimal,
        price: Decimal,
        client_order_id: str,
        contract: ContractProfile,
        timestamp: int = 0,
    ) -> OrderIntent:
        return OrderIntent(
            exchange=self.venue.value,
            symbol=self.map_symbol(symbol),
            side=side,
            quantity=self.convert_quantity(base_quantity, contract),
            price=price,
            client_order_id=client_order_id,
            timestamp=timestamp,
        )


class BinanceAdapter(ExchangeAdapter):
    venue = Venue.BINANCE

    def map_symbol(self, symbol: str) -> str:
        return symbol

    def convert_quantity(self, base_quantity: Decimal, contract: ContractProfile) -> Decimal:
        return base_quantity


class OkxAdapter(ExchangeAdapter):
    venue = Venue.OKX

    def map_symbol(self, symbol: str) -> str:
        """TRXUSDT -> TRX-USDT-SWAP; already-native names pass through."""
        if "-" in symbol:
            return symbol
        return symbol.replace("USDT", "-USDT-SWAP")

    def convert_quantity(self, base_quantity: Decimal, contract: ContractProfile) -> Decimal:
        size = contract.contract_size or Decimal("1")
        return (base_quantity / size).to_integral_value(rounding=ROUND_FLOOR)


def get_adapter(exchange: str) -> ExchangeAdapter:
    """Adapter for a configured exchange name.

    Raises:
        ConfigError: If the exchange has no adapter.
    """
    try:
        venue = Venue(exchange.lower())
    except ValueError as e:
        raise ConfigError(f"legs.exchange: no adapter for exchange {exchange!r}") from e
    if venue is Venue.BINANCE:
        return BinanceAdapter()
    return OkxAdapter()
