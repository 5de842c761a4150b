"""invest_pilot.quotes: numeric normalization and chart history."""

from invest_pilot.quotes.history import (
    apply_drift,
    derive_change,
    generate_history,
    history_for_timeframe,
)
from invest_pilot.quotes.normalize import (
    ConversionRule,
    convert,
    kg_to_gram_if_needed,
    normalize,
    ounce_to_local_gram,
    parse_price,
    pound_to_local_ton,
)

__all__ = [
    "ConversionRule",
    "apply_drift",
    "convert",
    "derive_change",
    "generate_history",
    "history_for_timeframe",
    "kg_to_gram_if_needed",
    "normalize",
    "ounce_to_local_gram",
    "parse_price",
    "pound_to_local_ton",
]
