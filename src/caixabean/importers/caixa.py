"""Caixa current-account movement export importer.

The bank exports an .XLS workbook; this importer reads it once saved as a
semicolon-separated CSV. Layout:

    ;MOVIMIENTOS DESDE : 01/01/2025 HASTA: 31/01/2025
    <blank or title lines>
    Número de cuenta;Oficina;Divisa;Fecha de operación;Fecha valor;Ingreso (+);Gasto (-);...
    <one row per movement>
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from caixabean.importers.base import MAX_CONCEPTS, CsvImporter, Transaction

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r"DESDE\s*:\s*(\d{2}/\d{2}/\d{4})\s*HASTA\s*:\s*(\d{2}/\d{2}/\d{4})")
_THOUSANDS_RE = re.compile(r"^-?[1-9]\d{0,2}(?:\.\d{3})+$")
_HEADER_MARKER = "número de cuenta"

COL_ACCOUNT = "Número de cuenta"
COL_BRANCH = "Oficina"
COL_CURRENCY = "Divisa"
COL_DATE = "Fecha de operación"
COL_VALUE_DATE = "Fecha valor"
COL_CREDIT = "Ingreso (+)"
COL_DEBIT = "Gasto (-)"
COL_BALANCE_POS = "Saldo (+)"
COL_BALANCE_NEG = "Saldo (-)"
COL_COMMON = "Concepto común"
COL_OWN = "Concepto propio"
COL_REF1 = "Referencia 1"
COL_REF2 = "Referencia 2"
COL_CONCEPT = "Concepto complementario {}"


def parse_date(value: str) -> date | None:
    """Parse DD/MM/YYYY (or ISO) into a date; None when empty or invalid."""
    value = value.strip()
    if not value:
        return None
    for fmt in ("%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount(value: str) -> Decimal | None:
    """Parse an amount cell.

    Accepts Spanish notation (1.234,56 or 1.500) and plain notation (1234.56).
    A dot followed by exactly three digits and no comma groups thousands.
    Empty cells yield None.
    """
    value = value.replace("€", "").replace(" ", "").strip()
    if not value:
        return None
    if "," in value or _THOUSANDS_RE.match(value):
        # Spanish notation: dots group thousands, comma is the decimal mark
        value = value.replace(".", "").replace(",", ".")
    try:
        return Decimal(value)
    except InvalidOperation:
        return None


class CaixaImporter(CsvImporter):
    """Import movements from a Caixa current-account export (CSV)."""

    delimiter = ";"
    expected_headers = ["número de cuenta", "concepto complementario"]

    def __init__(
        self,
        account: str = "Assets:Bank:Caixa:Checking",
        currency: str = "EUR",
    ):
        self._account = account
        self._currency = currency
        self.period: tuple[date, date] | None = None

    def account_name(self) -> str:
        return self._account

    def extract(self, filepath: str | Path) -> list[Transaction]:
        filepath = Path(filepath)
        content = self._read_file(filepath)
        lines = content.split("\n")

        # Header row position varies with the bank's preamble
        self.skip_lines = next(
            (i for i, line in enumerate(lines) if _HEADER_MARKER in line.lower()), 0
        )
        self.period = None
        for line in lines[: self.skip_lines]:
            m = _PERIOD_RE.search(line)
            if m:
                start, end = parse_date(m.group(1)), parse_date(m.group(2))
                if start and end:
                    self.period = (start, end)
                break

        transactions = super().extract(filepath)
        if self.period is None and transactions:
            self.period = (
                min(tx.date for tx in transactions),
                max(tx.date for tx in transactions),
            )
        return transactions

    def _parse_row(self, row: dict[str, str]) -> Transaction | None:
        date_str = row.get(COL_DATE, "")
        if not date_str:
            return None

        tx_date = parse_date(date_str)
        if tx_date is None:
            logger.warning("Skipping row with invalid date %r", date_str)
            return None

        credit = parse_amount(row.get(COL_CREDIT, ""))
        debit = parse_amount(row.get(COL_DEBIT, ""))
        if credit is not None and debit is not None:
            logger.warning(
                "Skipping row on %s with both credit %s and debit %s", tx_date, credit, debit
            )
            return None

        balance_pos = parse_amount(row.get(COL_BALANCE_POS, ""))
        balance_neg = parse_amount(row.get(COL_BALANCE_NEG, ""))
        if balance_pos is not None:
            balance = balance_pos
        elif balance_neg is not None:
            balance = -abs(balance_neg)
        else:
            balance = Decimal(0)

        concepts = tuple(row.get(COL_CONCEPT.format(n), "") for n in range(1, MAX_CONCEPTS + 1))

        return Transaction(
            date=tx_date,
            reference=row.get(COL_REF2, ""),
            credit_amount=credit,
            debit_amount=debit,
            balance=balance,
            concepts=concepts,
            currency=row.get(COL_CURRENCY, "") or self._currency,
            account_number=row.get(COL_ACCOUNT, ""),
            value_date=parse_date(row.get(COL_VALUE_DATE, "")),
            common_concept=row.get(COL_COMMON, ""),
            own_concept=row.get(COL_OWN, ""),
            reference_1=row.get(COL_REF1, ""),
        )
