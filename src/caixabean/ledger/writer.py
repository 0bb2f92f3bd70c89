"""Beancount file writer - converts statement Transactions to .bean files."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING

from beancount.core.data import (
    Amount,
    Balance,
    Open,
    Posting,
    new_metadata,
)
from beancount.core.data import (
    Transaction as BeanTransaction,
)
from beancount.parser import printer

from caixabean.importers.base import Transaction
from caixabean.matching.consolidator import (
    ConsolidatedTransaction,
    ConsolidationCandidate,
    ConsolidationResult,
)

if TYPE_CHECKING:
    from caixabean.categorize.rules import RuleCategorizer

DEFAULT_NARRATION = "Transaction"


def _make_posting(account: str, number: Decimal, currency: str) -> Posting:
    """Create a Posting with standard None fields for cost/price/flag/meta."""
    return Posting(account, Amount(number, currency), None, None, None, None)


def transaction_to_bean(
    tx: Transaction,
    bank_account: str,
    counter_account: str,
) -> BeanTransaction:
    """Convert a statement Transaction to a two-posting beancount Transaction.

    The bank account receives the signed movement; the counter account
    (expense/income category) receives the opposite amount.
    """
    meta = new_metadata("<caixabean>", 0)
    if tx.reference:
        meta["ref"] = tx.reference
    if isinstance(tx, ConsolidatedTransaction):
        meta["consolidated"] = "pre-auth"

    amount = tx.signed_amount
    postings = [
        _make_posting(bank_account, amount, tx.currency),
        _make_posting(counter_account, -amount, tx.currency),
    ]

    return BeanTransaction(
        meta=meta,
        date=tx.date,
        flag="*",
        payee=None,
        narration=tx.description or DEFAULT_NARRATION,
        tags=frozenset(),
        links=frozenset(),
        postings=postings,
    )


def _format_amount(tx: Transaction) -> str:
    if tx.debit_amount:
        return f"-{tx.debit_amount} {tx.currency}"
    return f"+{tx.credit_amount or Decimal(0)} {tx.currency}"


def review_comments(candidates: Iterable[ConsolidationCandidate]) -> list[str]:
    """Render review candidates as advisory beancount comment lines."""
    candidates = list(candidates)
    if not candidates:
        return []

    lines = [";", "; MANUAL REVIEW REQUIRED - Potential consolidation candidates", ";"]
    for candidate in candidates:
        lines.append(f"; Confidence: {candidate.confidence.value} (score {candidate.score})")
        lines.append(f"; Reason: {candidate.reasoning}")
        lines.append(f"; Suggested: {candidate.suggested_account}")
        lines.append("; Transactions:")
        for tx in candidate.transactions:
            desc = tx.description or DEFAULT_NARRATION
            lines.append(f";   {tx.date} {desc} {_format_amount(tx)}")
        lines.append(";")
    return lines


def _closing_balance(tx: Transaction) -> Decimal:
    """Running balance after tx; a merged entry closes on its refund leg."""
    if isinstance(tx, ConsolidatedTransaction) and tx.sources:
        return tx.sources[-1].balance
    return tx.balance


def closing_balance_entry(transactions: list[Transaction], bank_account: str) -> Balance | None:
    """Balance assertion for the statement's final running balance.

    Dated the day after the last movement, since beancount checks balances
    at the start of the day.
    """
    if not transactions:
        return None
    # Stable sort: the last row of the final day carries the closing balance
    last = sorted(transactions, key=lambda tx: tx.date)[-1]
    return Balance(
        new_metadata("<caixabean>", 0),
        last.date + timedelta(days=1),
        bank_account,
        Amount(_closing_balance(last), last.currency),
        None,
        None,
    )


def build_entries(
    transactions: list[Transaction],
    bank_account: str,
    categorizer: RuleCategorizer,
) -> list:
    """Build Open directives, transactions sorted by date and the closing balance."""
    if not transactions:
        return []

    bean_txns = [
        transaction_to_bean(tx, bank_account, categorizer.categorize(tx)) for tx in transactions
    ]
    bean_txns.sort(key=lambda e: e.date)

    # Open every referenced account on the first statement date
    open_date: date = bean_txns[0].date
    accounts: dict[str, set[str]] = {}
    for entry in bean_txns:
        for posting in entry.postings:
            accounts.setdefault(posting.account, set()).add(posting.units.currency)

    opens = [
        Open(new_metadata("<caixabean>", 0), open_date, account, sorted(currencies), None)
        for account, currencies in sorted(accounts.items())
    ]
    return opens + bean_txns + [closing_balance_entry(transactions, bank_account)]


def render_ledger(
    result: ConsolidationResult,
    bank_account: str,
    categorizer: RuleCategorizer,
    header: Iterable[str] = (),
) -> str:
    """Render a consolidation result as beancount text."""
    lines = [f"; {line}" for line in header]
    if lines:
        lines.append("")

    chunks = ["\n".join(lines)] if lines else []
    for entry in build_entries(result.transactions, bank_account, categorizer):
        chunks.append(printer.format_entry(entry))

    comments = review_comments(result.review)
    if comments:
        chunks.append("\n".join(comments) + "\n")

    return "\n".join(chunks)


def write_ledger(
    result: ConsolidationResult,
    output_path: str | Path,
    bank_account: str,
    categorizer: RuleCategorizer,
    header: Iterable[str] = (),
) -> Path:
    """Write a consolidation result to a .bean file.

    Returns:
        Path to the written file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        render_ledger(result, bank_account, categorizer, header), encoding="utf-8"
    )
    return output_path
