"""
Central constants for the medical inventory application.
"""
from __future__ import annotations

STOCK_IN_STOCK = "op-voorraad"
STOCK_LOW = "bijna-op"
STOCK_OUT = "niet-meer-aanwezig"

STOCK_STATUSES = (STOCK_IN_STOCK, STOCK_LOW, STOCK_OUT)
LOW_STOCK_STATUSES = frozenset({STOCK_LOW, STOCK_OUT})

STOCK_STATUS_LABELS = {
    STOCK_IN_STOCK: "Op voorraad",
    STOCK_LOW: "Bijna op",
    STOCK_OUT: "Niet meer aanwezig",
}

# Older forms used a second vocabulary; map it onto the canonical three values.
LEGACY_STOCK_STATUS_ALIASES = {
    "op": STOCK_OUT,
    "laag": STOCK_LOW,
    "niet-op-voorraad": STOCK_OUT,
    "voorraad": STOCK_IN_STOCK,
}

DEFAULT_CABINET_COLOR = "bg-slate-200"
CABINET_ABBREVIATION_MAX = 3
CABINET_ID_MAX = 10

# Stored when an imported row names a post and cabinet but no drawer.
DRAWER_PLACEHOLDER = "-"


class InvalidStockStatus(ValueError):
    pass


def normalize_stock_status(value: str | None) -> str:
    """Return the canonical stock status for `value`, accepting the legacy vocabulary."""
    v = (value or "").strip().lower()
    if not v:
        return STOCK_IN_STOCK
    if v in STOCK_STATUSES:
        return v
    if v in LEGACY_STOCK_STATUS_ALIASES:
        return LEGACY_STOCK_STATUS_ALIASES[v]
    raise InvalidStockStatus(f"Unknown stock status {value!r}. Must be one of: {', '.join(STOCK_STATUSES)}")


def is_low_stock(status: str) -> bool:
    return status in LOW_STOCK_STATUSES
