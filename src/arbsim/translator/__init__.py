"""Signal translation to venue orders and funding settlements."""

from arbsim.translator.adapters import (
    BinanceAdapter,
    ExchangeAdapter,
    OkxAdapter,
    Venue,
    get_adapter,
)
from arbsim.translator.engine import ItemKind, SignalTranslator, TranslationItem, parse_action
from arbsim.translator.settlement import PositionSide, funding_fee, settlement_boundaries

__all__ = [
    "BinanceAdapter",
    "ExchangeAdapter",
    "ItemKind",
    "OkxAdapter",
    "PositionSide",
    "SignalTranslator",
    "TranslationItem",
    "Venue",
    "funding_fee",
    "get_adapter",
    "parse_action",
    "settlement_boundaries",
]
