"""Keyword and window definitions for pre-auth / purchase / refund detection."""

from __future__ import annotations

from decimal import Decimal

# A refund candidate mentions both a refund word and a purchase word
# e.g. "DEVOLUCION COMPRA - SERUNION VENDING"
REFUND_KEYWORDS: list[str] = ["devolucion", "devolución"]
PURCHASE_KEYWORDS: list[str] = ["compra"]

# The small purchase leg is a plain card purchase
CARD_PURCHASE_KEYWORDS: list[str] = ["compra con tarjeta"]

# Backward search windows (positions before the refund, same date only)
PURCHASE_LOOKBACK = 10
PRE_AUTH_LOOKBACK = 15

# Confidence scoring
VENDING_KEYWORD_SCORE = 2
AMOUNT_MATCH_SCORE = 2
SNACK_RANGE_SCORE = 1
SAME_CARD_SCORE = 1
HIGH_CONFIDENCE_SCORE = 5
MEDIUM_CONFIDENCE_SCORE = 3

# Item type inferred from the purchase amount: (upper bound, label)
ITEM_TYPES: list[tuple[Decimal, str]] = [
    (Decimal("0.6"), "Snack"),
    (Decimal("1.2"), "Drink"),
]
DEFAULT_ITEM_TYPE = "Purchase"
