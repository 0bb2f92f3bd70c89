"""Tests for the ledger writer."""

from datetime import date
from decimal import Decimal

from beancount.core.data import Balance, Open
from beancount.core.data import Transaction as BeanTransaction
from beancount.loader import load_string

from caixabean.categorize.rules import RuleCategorizer
from caixabean.importers.base import Transaction
from caixabean.ledger.writer import (
    build_entries,
    closing_balance_entry,
    render_ledger,
    review_comments,
    transaction_to_bean,
    write_ledger,
)
from caixabean.matching.consolidator import ConsolidationResult, consolidate

BANK = "Assets:Bank:Caixa:Checking"


def _make_tx(
    merchant: str,
    debit: str | None = None,
    credit: str | None = None,
    day: int = 5,
    tx_type: str = "",
    secondary: str = "",
    balance: str = "100.00",
) -> Transaction:
    concepts = [""] * 10
    concepts[0] = merchant
    concepts[1] = secondary
    concepts[8] = tx_type
    return Transaction(
        date=date(2025, 3, day),
        reference="4321",
        credit_amount=Decimal(credit) if credit else None,
        debit_amount=Decimal(debit) if debit else None,
        balance=Decimal(balance),
        concepts=tuple(concepts),
    )


def _vending_triple(
    merchant: str = "SERUNION VENDING", day: int = 5, opening: str = "100.00"
) -> list[Transaction]:
    """Pre-auth 3.00, purchase 0.50, refund 3.00 with running balances from opening."""
    start = Decimal(opening)
    return [
        _make_tx(merchant, debit="3.00", day=day, balance=str(start - 3)),
        _make_tx(
            merchant,
            debit="0.50",
            day=day,
            tx_type="COMPRA CON TARJETA",
            balance=str(start - Decimal("3.50")),
        ),
        _make_tx(
            "DEVOLUCION COMPRA",
            credit="3.00",
            day=day,
            secondary=merchant,
            balance=str(start - Decimal("0.50")),
        ),
    ]


def test_transaction_to_bean_debit():
    tx = _make_tx("SHELL ESTACION", debit="45.20", tx_type="COMPRA CON TARJETA")
    bean_tx = transaction_to_bean(tx, BANK, "Expenses:Transportation:Fuel")

    assert bean_tx.date == date(2025, 3, 5)
    assert bean_tx.flag == "*"
    assert bean_tx.payee is None
    assert bean_tx.narration == "SHELL ESTACION - COMPRA CON TARJETA"
    assert bean_tx.meta["ref"] == "4321"
    assert bean_tx.postings[0].account == BANK
    assert bean_tx.postings[0].units.number == Decimal("-45.20")
    assert bean_tx.postings[0].units.currency == "EUR"
    assert bean_tx.postings[1].account == "Expenses:Transportation:Fuel"
    assert bean_tx.postings[1].units.number == Decimal("45.20")


def test_transaction_to_bean_credit():
    tx = _make_tx("NOMINA HABER", credit="1500.00")
    bean_tx = transaction_to_bean(tx, BANK, "Income:Salary")

    assert bean_tx.postings[0].units.number == Decimal("1500.00")
    assert bean_tx.postings[1].units.number == Decimal("-1500.00")


def test_empty_description_uses_default_narration():
    tx = _make_tx("", debit="1.00")
    assert transaction_to_bean(tx, BANK, "Expenses:Unknown").narration == "Transaction"


def test_consolidated_entry_is_marked():
    result = consolidate(_vending_triple())
    bean_tx = transaction_to_bean(result.transactions[0], BANK, "Expenses:Food:Snacks")

    assert bean_tx.meta["consolidated"] == "pre-auth"
    assert bean_tx.narration == "SERUNION VENDING - Snack"
    assert bean_tx.postings[0].units.number == Decimal("-0.50")


def test_build_entries_opens_accounts():
    txns = [
        _make_tx("LIDL", debit="20.00", day=9),
        _make_tx("SHELL", debit="40.00", day=2),
    ]
    entries = build_entries(txns, BANK, RuleCategorizer())

    opens = [e for e in entries if isinstance(e, Open)]
    bean_txns = [e for e in entries if isinstance(e, BeanTransaction)]
    assert {o.account for o in opens} == {
        BANK,
        "Expenses:Groceries",
        "Expenses:Transportation:Fuel",
    }
    assert all(o.date == date(2025, 3, 2) for o in opens)
    assert [t.date for t in bean_txns] == [date(2025, 3, 2), date(2025, 3, 9)]


def test_build_entries_empty():
    assert build_entries([], BANK, RuleCategorizer()) == []


def test_review_comments():
    flagged = consolidate(_vending_triple("MAQUINA CAFE"))
    lines = review_comments(flagged.review)

    assert "; MANUAL REVIEW REQUIRED - Potential consolidation candidates" in lines
    assert "; Confidence: medium (score 4)" in lines
    assert "; Suggested: Expenses:Food:Snacks" in lines
    assert ";   2025-03-05 MAQUINA CAFE -3.00 EUR" in lines
    assert ";   2025-03-05 DEVOLUCION COMPRA - MAQUINA CAFE +3.00 EUR" in lines
    assert all(line.startswith(";") for line in lines)


def test_review_comments_empty():
    assert review_comments([]) == []


def test_render_ledger_header():
    text = render_ledger(
        ConsolidationResult(transactions=[_make_tx("LIDL", debit="20.00")]),
        BANK,
        RuleCategorizer(),
        header=["Converted from Caixa bank statement"],
    )
    assert text.startswith("; Converted from Caixa bank statement\n")
    assert "Expenses:Groceries" in text


def _statement() -> list[Transaction]:
    """Salary, a merged vending triple, fuel and a flagged triple; balances start at zero."""
    return [
        _make_tx("NOMINA HABER EMPRESA", credit="1500.00", day=3, balance="1500.00"),
        *_vending_triple(day=5, opening="1500.00"),
        _make_tx("SHELL ESTACION", debit="45.20", day=7, balance="1454.30"),
        *_vending_triple("MAQUINA CAFE", day=12, opening="1454.30"),
    ]


def test_written_ledger_validates(tmp_path):
    """Merged, flagged and plain entries together form a valid beancount file."""
    result = consolidate(_statement())
    output = tmp_path / "out" / "caixa.bean"

    written = write_ledger(result, output, BANK, RuleCategorizer(), header=["Caixa"])

    assert written == output
    content = output.read_text(encoding="utf-8")
    assert "MANUAL REVIEW REQUIRED" in content
    assert "SERUNION VENDING - Snack" in content
    assert 'consolidated: "pre-auth"' in content
    assert f"2025-03-13 balance {BANK}" in content

    entries, errors, _ = load_string(content)
    assert errors == [], f"Beancount validation errors: {errors}"
    assert len([e for e in entries if isinstance(e, BeanTransaction)]) == len(result.transactions)


def test_closing_balance_entry():
    """The last movement's balance is asserted the following day."""
    txns = [
        _make_tx("LIDL", debit="20.00", day=9, balance="80.00"),
        _make_tx("SHELL", debit="40.00", day=2, balance="100.00"),
    ]
    entry = closing_balance_entry(txns, BANK)

    assert isinstance(entry, Balance)
    assert entry.date == date(2025, 3, 10)
    assert entry.account == BANK
    assert entry.amount.number == Decimal("80.00")
    assert entry.amount.currency == "EUR"
    assert closing_balance_entry([], BANK) is None


def test_closing_balance_after_merge_uses_refund():
    """A merged group closing the statement reports the refund's balance."""
    result = consolidate(_vending_triple(opening="10.00"))
    entry = closing_balance_entry(result.transactions, BANK)

    assert entry.amount.number == Decimal("9.50")
    assert entry.date == date(2025, 3, 6)


def test_closing_balance_mismatch_is_reported(tmp_path):
    """A statement whose movements do not add up fails the balance check."""
    txns = [
        _make_tx("NOMINA HABER", credit="100.00", day=3, balance="100.00"),
        _make_tx("LIDL", debit="20.00", day=4, balance="75.00"),
    ]
    output = tmp_path / "bad.bean"
    write_ledger(ConsolidationResult(transactions=txns), output, BANK, RuleCategorizer())

    _, errors, _ = load_string(output.read_text(encoding="utf-8"))
    assert len(errors) == 1
    assert "Balance failed" in errors[0].message
    assert BANK in errors[0].message


def test_write_empty_result(tmp_path):
    output = tmp_path / "empty.bean"
    write_ledger(ConsolidationResult(), output, BANK, RuleCategorizer())

    _, errors, _ = load_string(output.read_text(encoding="utf-8"))
    assert errors == []
