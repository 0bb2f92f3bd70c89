"""Pre-auth consolidation - collapses vending machine holds into one entry.

Vending machines place a hold (pre-auth) for more than the item price, charge
the real price as a separate card purchase, then refund the hold. On the
statement this shows up as three rows on the same day and card:

    -3.00  SERUNION VENDING          (pre-auth)
    -0.50  COMPRA CON TARJETA        (purchase)
    +3.00  DEVOLUCION COMPRA         (refund)

The consolidator finds these triples, scores them and replaces confident
ones with a single transaction carrying the purchase amount.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from decimal import Decimal

from caixabean.config.schema import ConsolidatorConfig
from caixabean.importers.base import MAX_CONCEPTS, Transaction
from caixabean.matching.rules import (
    AMOUNT_MATCH_SCORE,
    CARD_PURCHASE_KEYWORDS,
    DEFAULT_ITEM_TYPE,
    HIGH_CONFIDENCE_SCORE,
    ITEM_TYPES,
    MEDIUM_CONFIDENCE_SCORE,
    PRE_AUTH_LOOKBACK,
    PURCHASE_KEYWORDS,
    PURCHASE_LOOKBACK,
    REFUND_KEYWORDS,
    SAME_CARD_SCORE,
    SNACK_RANGE_SCORE,
    VENDING_KEYWORD_SCORE,
)

logger = logging.getLogger(__name__)


class Confidence(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ConsolidatedTransaction(Transaction):
    """Synthetic transaction replacing a pre-auth / purchase / refund triple."""

    sources: tuple[Transaction, ...] = ()


@dataclass
class ConsolidationCandidate:
    """A pre-auth / purchase / refund group believed to be one purchase."""

    pre_auth: Transaction
    purchase: Transaction
    refund: Transaction
    confidence: Confidence
    score: int
    reasoning: str
    suggested_account: str

    @property
    def transactions(self) -> tuple[Transaction, Transaction, Transaction]:
        return (self.pre_auth, self.purchase, self.refund)


@dataclass
class ConsolidationResult:
    """Output of a single consolidate() call."""

    transactions: list[Transaction] = field(default_factory=list)
    review: list[ConsolidationCandidate] = field(default_factory=list)
    merged: list[ConsolidationCandidate] = field(default_factory=list)

    def __iter__(self) -> Iterator[list]:
        # Allows `reduced, review = consolidate(...)`
        yield self.transactions
        yield self.review


def _contains_any(text: str, keywords: Iterable[str]) -> bool:
    return any(kw.lower() in text for kw in keywords)


def is_refund_candidate(tx: Transaction) -> bool:
    """A positive credit whose description mentions both a refund and a purchase."""
    if not tx.credit_amount or tx.credit_amount <= 0:
        return False
    text = tx.search_text
    return _contains_any(text, REFUND_KEYWORDS) and _contains_any(text, PURCHASE_KEYWORDS)


def score_candidate(
    pre_auth: Transaction,
    purchase: Transaction,
    refund: Transaction,
    config: ConsolidatorConfig | None = None,
) -> int:
    """Sum the evidence that a triple is a real pre-auth pattern (0 to 6)."""
    config = config or ConsolidatorConfig()
    score = 0
    if _contains_any(pre_auth.search_text, config.vending_keywords):
        score += VENDING_KEYWORD_SCORE
    if refund.credit_amount is not None and refund.credit_amount == pre_auth.debit_amount:
        score += AMOUNT_MATCH_SCORE
    if (
        purchase.debit_amount is not None
        and config.snack_min_amount <= purchase.debit_amount <= config.snack_max_amount
    ):
        score += SNACK_RANGE_SCORE
    if pre_auth.reference == purchase.reference == refund.reference:
        score += SAME_CARD_SCORE
    return score


def confidence_for(score: int) -> Confidence:
    if score >= HIGH_CONFIDENCE_SCORE:
        return Confidence.HIGH
    if score >= MEDIUM_CONFIDENCE_SCORE:
        return Confidence.MEDIUM
    return Confidence.LOW


def item_type_for(amount: Decimal) -> str:
    """Guess what was bought from the purchase amount."""
    for upper, label in ITEM_TYPES:
        if amount <= upper:
            return label
    return DEFAULT_ITEM_TYPE


def build_reasoning(pre_auth: Transaction, purchase: Transaction, refund: Transaction) -> str:
    parts = [
        f"Pre-auth: {pre_auth.description or 'Transaction'} "
        f"({pre_auth.debit_amount} {pre_auth.currency})",
        f"Purchase: {purchase.description or 'Transaction'} "
        f"({purchase.debit_amount} {purchase.currency})",
        f"Refund: {refund.description or 'Transaction'} "
        f"({refund.credit_amount} {refund.currency})",
    ]
    return ", ".join(parts)


def build_consolidated(candidate: ConsolidationCandidate) -> ConsolidatedTransaction:
    """Merge a candidate into one transaction based on its purchase leg.

    Date, amount and balance come from the purchase. The narration becomes
    "<pre-auth description> - <item type>"; the type and secondary concept
    slots are cleared so the derived description is exactly that narration.
    """
    purchase = candidate.purchase
    item_type = item_type_for(purchase.debit_amount or Decimal(0))
    narration = f"{candidate.pre_auth.description or 'Transaction'} - {item_type}"

    concepts = list(purchase.concepts) + [""] * (MAX_CONCEPTS - len(purchase.concepts))
    concepts[0] = narration
    concepts[1] = ""  # secondary
    concepts[8] = ""  # transaction type

    base = replace(purchase, concepts=tuple(concepts))
    return ConsolidatedTransaction(**vars(base), sources=candidate.transactions)


class Consolidator:
    """Finds pre-auth / purchase / refund triples in a statement.

    Two passes over the date-sorted sequence: detection first, then output.
    Group membership is tracked by transaction identity so no event can be
    part of two groups; output is tracked by position so every input row is
    emitted exactly once, verbatim or inside a ConsolidatedTransaction.
    """

    def __init__(self, config: ConsolidatorConfig | None = None):
        self.config = config or ConsolidatorConfig()

    def consolidate(self, transactions: Iterable[Transaction]) -> ConsolidationResult:
        transactions = list(transactions)
        if not self.config.enabled:
            return ConsolidationResult(transactions=transactions)

        # sorted() is stable: same-day rows keep their statement order
        ordered = sorted(transactions, key=lambda tx: tx.date)

        claimed: set[tuple] = set()
        replacements: dict[int, ConsolidatedTransaction] = {}
        removed: set[int] = set()
        result = ConsolidationResult()

        for i, tx in enumerate(ordered):
            if tx.identity in claimed:
                continue
            found = self._detect(ordered, i, claimed)
            if found is None:
                continue

            candidate, pre_auth_idx, purchase_idx = found
            claimed.update(t.identity for t in candidate.transactions)

            if candidate.confidence is Confidence.HIGH:
                replacements[i] = build_consolidated(candidate)
                removed.update((pre_auth_idx, purchase_idx))
                result.merged.append(candidate)
                logger.debug("Merged pre-auth pattern on %s: %s", tx.date, candidate.reasoning)
            elif self.config.manual_review_enabled:
                result.review.append(candidate)
                logger.info(
                    "Flagged %s confidence pattern on %s for review (score %d)",
                    candidate.confidence.value,
                    tx.date,
                    candidate.score,
                )
            else:
                logger.debug(
                    "Ignored %s confidence pattern on %s", candidate.confidence.value, tx.date
                )

        for i, tx in enumerate(ordered):
            if i in removed:
                continue
            result.transactions.append(replacements.get(i, tx))

        return result

    def _detect(
        self, ordered: list[Transaction], index: int, claimed: set[tuple]
    ) -> tuple[ConsolidationCandidate, int, int] | None:
        """Try to build a candidate group ending at the refund at index."""
        refund = ordered[index]
        if not is_refund_candidate(refund):
            return None

        purchase_idx = self._find_purchase(ordered, index, claimed)
        if purchase_idx is None:
            return None

        pre_auth_idx = self._find_pre_auth(ordered, index, claimed, exclude=purchase_idx)
        if pre_auth_idx is None:
            return None

        pre_auth, purchase = ordered[pre_auth_idx], ordered[purchase_idx]
        score = score_candidate(pre_auth, purchase, refund, self.config)
        candidate = ConsolidationCandidate(
            pre_auth=pre_auth,
            purchase=purchase,
            refund=refund,
            confidence=confidence_for(score),
            score=score,
            reasoning=build_reasoning(pre_auth, purchase, refund),
            suggested_account=self.config.suggested_account,
        )
        return candidate, pre_auth_idx, purchase_idx

    def _lookback(
        self, ordered: list[Transaction], index: int, window: int, claimed: set[tuple]
    ) -> Iterator[int]:
        """Yield earlier positions on the same date and card, nearest first."""
        refund = ordered[index]
        for j in range(index - 1, max(index - window, -1), -1):
            tx = ordered[j]
            if tx.date != refund.date:
                break
            if tx.reference != refund.reference or tx.identity in claimed:
                continue
            yield j

    def _find_purchase(
        self, ordered: list[Transaction], index: int, claimed: set[tuple]
    ) -> int | None:
        for j in self._lookback(ordered, index, PURCHASE_LOOKBACK, claimed):
            tx = ordered[j]
            if (
                tx.debit_amount
                and self.config.purchase_min_amount
                <= tx.debit_amount
                <= self.config.purchase_max_amount
                and _contains_any(tx.search_text, CARD_PURCHASE_KEYWORDS)
            ):
                return j
        return None

    def _find_pre_auth(
        self, ordered: list[Transaction], index: int, claimed: set[tuple], exclude: int
    ) -> int | None:
        refund = ordered[index]
        for j in self._lookback(ordered, index, PRE_AUTH_LOOKBACK, claimed):
            if j != exclude and ordered[j].debit_amount == refund.credit_amount:
                return j
        return None


def consolidate(
    transactions: Iterable[Transaction], config: ConsolidatorConfig | None = None
) -> ConsolidationResult:
    """Consolidate pre-auth patterns in a statement. See Consolidator."""
    return Consolidator(config).consolidate(transactions)
