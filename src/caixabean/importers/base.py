"""Base classes for statement importers."""

from __future__ import annotations

import csv
import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path

import chardet

# Concept slots that make up the derived description, in order:
# merchant (1), transaction type (9), secondary text (2)
DESCRIPTION_CONCEPTS = (1, 9, 2)
DESCRIPTION_SEPARATOR = " - "
MAX_CONCEPTS = 10


@dataclass(frozen=True)
class Transaction:
    """A single line-item of a bank statement.

    Exactly one of credit_amount / debit_amount is set for a real movement;
    both may be None for zero-amount rows. Records are never mutated, the
    consolidator builds new ones with dataclasses.replace.
    """

    date: date
    reference: str  # card / reference identifier (Referencia 2)
    credit_amount: Decimal | None
    debit_amount: Decimal | None
    balance: Decimal
    concepts: tuple[str, ...] = ()  # Concepto complementario 1..10
    currency: str = "EUR"
    account_number: str = ""
    value_date: date | None = None
    common_concept: str = ""
    own_concept: str = ""
    reference_1: str = ""

    def __post_init__(self) -> None:
        if self.credit_amount is not None and self.debit_amount is not None:
            raise ValueError(
                f"Transaction on {self.date} has both credit ({self.credit_amount}) "
                f"and debit ({self.debit_amount}) amounts"
            )
        if len(self.concepts) > MAX_CONCEPTS:
            raise ValueError(f"At most {MAX_CONCEPTS} concepts allowed, got {len(self.concepts)}")

    def concept(self, n: int) -> str:
        """Return the 1-based concept fragment n, or "" if absent."""
        if 1 <= n <= len(self.concepts):
            return self.concepts[n - 1] or ""
        return ""

    @property
    def description(self) -> str:
        parts = [self.concept(n).strip() for n in DESCRIPTION_CONCEPTS]
        return DESCRIPTION_SEPARATOR.join(p for p in parts if p)

    @property
    def search_text(self) -> str:
        """Lower-cased description used for all keyword and pattern matching."""
        return self.description.lower()

    @property
    def amount(self) -> Decimal:
        """Unsigned movement amount: debit if present, else credit, else zero."""
        if self.debit_amount:
            return self.debit_amount
        if self.credit_amount:
            return self.credit_amount
        return Decimal(0)

    @property
    def signed_amount(self) -> Decimal:
        """Effect on the bank account balance (credit positive, debit negative)."""
        return (self.credit_amount or Decimal(0)) - (self.debit_amount or Decimal(0))

    @property
    def identity(self) -> tuple[date, str, Decimal, Decimal]:
        """Key under which two rows count as the same logical event."""
        return (
            self.date,
            self.reference,
            self.debit_amount or Decimal(0),
            self.credit_amount or Decimal(0),
        )


class StatementImporter(ABC):
    """Abstract base class for all importers."""

    @abstractmethod
    def identify(self, filepath: str | Path) -> bool:
        """Return True if this importer can handle the given file."""
        raise NotImplementedError

    @abstractmethod
    def extract(self, filepath: str | Path) -> list[Transaction]:
        """Parse the file and return a list of Transaction objects."""
        raise NotImplementedError

    @abstractmethod
    def account_name(self) -> str:
        """Return the beancount account name for this importer."""
        raise NotImplementedError


class CsvImporter(StatementImporter):
    """Base class for CSV-based importers.

    Handles encoding detection (latin-1 / cp1252 / UTF-8) and CSV reading.
    Subclasses must implement _parse_row and account_name.
    """

    # Number of lines to skip before the CSV header (bank-specific)
    skip_lines: int = 0

    # Expected header keywords for identification
    expected_headers: list[str] = []

    # CSV delimiter
    delimiter: str = ","

    def identify(self, filepath: str | Path) -> bool:
        """Identify by checking for expected header keywords."""
        filepath = Path(filepath)
        if filepath.suffix.lower() != ".csv":
            return False

        try:
            content = self._read_file(filepath)
        except OSError:
            return False
        lines = content.split("\n")[: self.skip_lines + 10]
        header_area = "\n".join(lines).lower()
        return all(kw.lower() in header_area for kw in self.expected_headers)

    def extract(self, filepath: str | Path) -> list[Transaction]:
        """Read CSV and parse each row into Transaction objects."""
        filepath = Path(filepath)
        content = self._read_file(filepath)

        # Skip leading lines (banks add titles and periods before the header)
        lines = content.split("\n")
        csv_content = "\n".join(lines[self.skip_lines :])

        reader = csv.DictReader(io.StringIO(csv_content), delimiter=self.delimiter)
        transactions = []
        for row in reader:
            # Strip whitespace from keys and values
            row = {k.strip(): v.strip() if v else "" for k, v in row.items() if k}
            tx = self._parse_row(row)
            if tx is not None:
                transactions.append(tx)

        return transactions

    @abstractmethod
    def _parse_row(self, row: dict[str, str]) -> Transaction | None:
        """Parse a single CSV row into a Transaction, or None to skip."""
        raise NotImplementedError

    def _read_file(self, filepath: Path) -> str:
        """Read file with automatic encoding detection."""
        raw = filepath.read_bytes()
        detected = chardet.detect(raw)
        encoding = detected.get("encoding") or "utf-8"

        # Common Spanish bank export encodings
        for enc in ["utf-8-sig", "cp1252", encoding, "latin-1"]:
            try:
                return raw.decode(enc)
            except (UnicodeDecodeError, LookupError):
                continue

        return raw.decode("utf-8", errors="replace")
