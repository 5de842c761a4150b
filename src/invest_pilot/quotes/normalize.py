"""Unit and numeric normalization for raw provider quotes.

Every function here is pure. A result of ``None`` means "unresolved": the
caller must not treat it as a price and must not overwrite a previous valid
value with it.
"""

from __future__ import annotations

import math
import re
from enum import StrEnum

GRAMS_PER_TROY_OUNCE = 31.1035
POUNDS_PER_METRIC_TON = 2204.62

# Per-gram silver above this level is assumed to be a per-kilogram quote
SILVER_KG_THRESHOLD = 500.0
# Per-gram gold sits in the hundreds, so per-kilogram quotes start far higher
GOLD_KG_THRESHOLD = 5000.0

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


class ConversionRule(StrEnum):
    """How a raw provider value becomes a canonical local price."""

    NONE = "none"
    KG_TO_GRAM = "kg_to_gram"
    OUNCE_TO_GRAM_FX = "ounce_to_gram_fx"
    POUND_TO_TON_FX = "pound_to_ton_fx"
    FX_ONLY = "fx_only"


def parse_price(raw: object) -> float | None:
    """Parse a raw quote into a finite positive float.

    Strings are stripped of everything except digits, '.' and '-' first, so
    ``"7,150.00"`` and ``"$7150"`` both parse. Booleans, zero, negatives,
    NaN and infinities are unresolved.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        cleaned = _NON_NUMERIC.sub("", raw)
        if not cleaned:
            return None
        try:
            value = float(cleaned)
        except ValueError:
            return None
    else:
        return None

    if not math.isfinite(value) or value <= 0:
        return None
    return value


def kg_to_gram_if_needed(value: float, threshold: float) -> float:
    """Magnitude heuristic: treat values above ``threshold`` as per-kilogram.

    Feeds do not tag their mass unit, so a per-gram price that legitimately
    rises past ``threshold`` would be misread. Replace this with an explicit
    unit flag once a provider exposes one.
    """
    if value > threshold:
        return value / 1000.0
    return value


def ounce_to_local_gram(usd_per_ounce: float, fx_rate: float) -> float:
    """USD per troy ounce -> local currency per gram."""
    return usd_per_ounce * fx_rate / GRAMS_PER_TROY_OUNCE


def pound_to_local_ton(usd_per_pound: float, fx_rate: float) -> float:
    """USD per pound -> local currency per metric ton."""
    return usd_per_pound * POUNDS_PER_METRIC_TON * fx_rate


def convert(
    value: float,
    rule: ConversionRule,
    fx_rate: float | None = None,
    kg_threshold: float | None = None,
) -> float | None:
    """Apply ``rule`` to an already-parsed positive value.

    Rules that need an FX rate return ``None`` when it is missing, since a
    foreign-currency number must never be presented as a local price.
    """
    if rule == ConversionRule.NONE:
        result = value
    elif rule == ConversionRule.KG_TO_GRAM:
        result = kg_to_gram_if_needed(
            value, kg_threshold if kg_threshold is not None else SILVER_KG_THRESHOLD
        )
    elif fx_rate is None or fx_rate <= 0:
        return None
    elif rule == ConversionRule.OUNCE_TO_GRAM_FX:
        result = ounce_to_local_gram(value, fx_rate)
    elif rule == ConversionRule.POUND_TO_TON_FX:
        result = pound_to_local_ton(value, fx_rate)
    elif rule == ConversionRule.FX_ONLY:
        result = value * fx_rate
    else:
        return None
    return parse_price(result)


def normalize(
    raw: object,
    rule: ConversionRule = ConversionRule.NONE,
    fx_rate: float | None = None,
    kg_threshold: float | None = None,
) -> float | None:
    """Parse ``raw`` and apply ``rule`` in one step."""
    value = parse_price(raw)
    if value is None:
        return None
    return convert(value, rule, fx_rate=fx_rate, kg_threshold=kg_threshold)
