"""invest_pilot.reconcile: source-priority policy and the refresh cycle."""

from invest_pilot.reconcile.engine import CycleReport, ReconciliationEngine
from invest_pilot.reconcile.policy import (
    DEFAULT_PRIORITY_TABLE,
    CommodityRule,
    CryptoRule,
    DirectRule,
    PriorityTable,
    QuoteBook,
    QuoteRef,
    RedundantRule,
    Resolution,
    load_priority_table,
)

__all__ = [
    "DEFAULT_PRIORITY_TABLE",
    "CommodityRule",
    "CryptoRule",
    "CycleReport",
    "DirectRule",
    "PriorityTable",
    "QuoteBook",
    "QuoteRef",
    "ReconciliationEngine",
    "RedundantRule",
    "Resolution",
    "load_priority_table",
]
