"""Rule-based transaction categorization.

Three rule kinds are evaluated in a fixed order: keyword rules, then regex
pattern rules, then fallback rules. The first match wins; a transaction that
matches nothing goes to UNKNOWN_ACCOUNT.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Literal, Union

from caixabean.errors import ConfigurationError
from caixabean.importers.base import Transaction

logger = logging.getLogger(__name__)

UNKNOWN_ACCOUNT = "Expenses:Unknown"

# Built-in keyword rules used when no merchants file is configured
DEFAULT_RULES: list[tuple[list[str], str]] = [
    (["shell", "fuel", "gas"], "Expenses:Transportation:Fuel"),
    (["amazon", "lidl"], "Expenses:Groceries"),
    (["bizum", "transfer"], "Assets:Bank:Caixa:Savings"),
    (["income", "salary", "haber"], "Income:Salary"),
    (["vending", "snack"], "Expenses:Food:Snacks"),
    (["steam", "game"], "Expenses:Entertainment:Games"),
]


@dataclass(frozen=True)
class AmountClause:
    """amount <= threshold, or amount >= threshold."""

    op: Literal["<=", ">="]
    threshold: Decimal

    def holds(self, tx: Transaction, text: str) -> bool:
        if self.op == "<=":
            return tx.amount <= self.threshold
        return tx.amount >= self.threshold


@dataclass(frozen=True)
class ContainsClause:
    """description CONTAINS 'text' (case-insensitive)."""

    text: str

    def holds(self, tx: Transaction, text: str) -> bool:
        return self.text in text


Clause = Union[AmountClause, ContainsClause]


@dataclass(frozen=True)
class KeywordRule:
    keywords: tuple[str, ...]
    account: str
    description: str | None = None

    def matches(self, tx: Transaction, text: str) -> bool:
        return any(kw in text for kw in self.keywords)


@dataclass(frozen=True)
class PatternRule:
    regex: re.Pattern
    account: str
    description: str | None = None

    def matches(self, tx: Transaction, text: str) -> bool:
        return self.regex.search(text) is not None


@dataclass(frozen=True)
class FallbackRule:
    condition: tuple[Clause, ...]
    account: str
    description: str | None = None

    def matches(self, tx: Transaction, text: str) -> bool:
        return all(clause.holds(tx, text) for clause in self.condition)


Rule = Union[KeywordRule, PatternRule, FallbackRule]

_AMOUNT_CLAUSE_RE = re.compile(r"amount\s*(<=|>=)\s*(-?\d+(?:\.\d+)?)", re.IGNORECASE)
_CONTAINS_CLAUSE_RE = re.compile(
    r"""description\s+contains\s+(['"])(.*?)\1""", re.IGNORECASE | re.DOTALL
)
_AND_RE = re.compile(r"\s+AND\s+", re.IGNORECASE)


def parse_condition(condition: str) -> tuple[Clause, ...]:
    """Parse a fallback condition into typed clauses.

    Grammar: clause (AND clause)*, where clause is either
    ``amount <= N`` / ``amount >= N`` or ``description CONTAINS 'text'``.
    Quoted text is consumed whole, so it may itself contain "and".

    Raises:
        ConfigurationError: for empty conditions or unknown clause syntax.
    """
    text = (condition or "").strip()
    if not text:
        raise ConfigurationError("Empty fallback condition")

    clauses: list[Clause] = []
    pos = 0
    while True:
        m = _AMOUNT_CLAUSE_RE.match(text, pos)
        if m:
            try:
                threshold = Decimal(m.group(2))
            except InvalidOperation as e:
                raise ConfigurationError(f"Invalid amount in clause {m.group(0)!r}") from e
            clauses.append(AmountClause(op=m.group(1), threshold=threshold))
        else:
            m = _CONTAINS_CLAUSE_RE.match(text, pos)
            if m is None:
                raise ConfigurationError(
                    f"Unrecognized clause {text[pos:]!r} in condition {condition!r}"
                )
            clauses.append(ContainsClause(text=m.group(2).lower()))

        pos = m.end()
        if pos == len(text):
            return tuple(clauses)
        sep = _AND_RE.match(text, pos)
        if sep is None:
            raise ConfigurationError(
                f"Expected AND after {text[:pos]!r} in condition {condition!r}"
            )
        pos = sep.end()


def _compile_pattern(regex: str) -> re.Pattern:
    try:
        return re.compile(regex, re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f"Invalid regex {regex!r}: {e}") from e


@dataclass(frozen=True)
class RuleSet:
    """Ordered, immutable collection of classification rules."""

    keywords: tuple[KeywordRule, ...] = ()
    patterns: tuple[PatternRule, ...] = ()
    fallbacks: tuple[FallbackRule, ...] = ()

    def __iter__(self):
        """Yield every rule in evaluation order."""
        yield from self.keywords
        yield from self.patterns
        yield from self.fallbacks

    @classmethod
    def default(cls) -> RuleSet:
        return cls(
            keywords=tuple(
                KeywordRule(keywords=tuple(kw.lower() for kw in kws), account=account)
                for kws, account in DEFAULT_RULES
            )
        )

    @classmethod
    def from_config(cls, data: dict[str, Any]) -> RuleSet:
        """Build a rule set from the merchants configuration shape.

        Expected keys: ``rules`` (keywords + account), ``patterns``
        (regex + account) and ``fallbacks`` (condition + account).
        """
        try:
            keywords = tuple(
                KeywordRule(
                    keywords=tuple(str(kw).lower() for kw in item["keywords"]),
                    account=item["account"],
                    description=item.get("description"),
                )
                for item in data.get("rules") or []
            )
            patterns = tuple(
                PatternRule(
                    regex=_compile_pattern(item["regex"]),
                    account=item["account"],
                    description=item.get("description"),
                )
                for item in data.get("patterns") or []
            )
            fallbacks = tuple(
                FallbackRule(
                    condition=parse_condition(item["condition"]),
                    account=item["account"],
                    description=item.get("description"),
                )
                for item in data.get("fallbacks") or []
            )
        except KeyError as e:
            raise ConfigurationError(f"Rule is missing required field {e}") from e
        except (TypeError, AttributeError) as e:
            raise ConfigurationError(f"Malformed rule configuration: {e}") from e
        return cls(keywords=keywords, patterns=patterns, fallbacks=fallbacks)


def classify(tx: Transaction, rule_set: RuleSet, unknown_account: str = UNKNOWN_ACCOUNT) -> str:
    """Return the account a transaction belongs to."""
    text = tx.search_text
    for rule in rule_set:
        if rule.matches(tx, text):
            return rule.account
    return unknown_account


def load_rule_set(path: str | Path | None) -> RuleSet:
    """Load rules from a merchants JSON file.

    A missing file falls back to the built-in rules; a file that exists but
    cannot be read or parsed is a configuration error.
    """
    if path is None:
        return RuleSet.default()

    path = Path(path)
    if not path.exists():
        logger.warning("%s not found, using fallback categorization", path)
        return RuleSet.default()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Failed to load merchant configuration: {e}", config_path=str(path)
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError("Merchant configuration must be an object", config_path=str(path))

    try:
        return RuleSet.from_config(data)
    except ConfigurationError as e:
        e.config_path = str(path)
        raise


class RuleCategorizer:
    """Categorize transactions with a fixed rule set."""

    def __init__(
        self,
        rule_set: RuleSet | None = None,
        unknown_account: str = UNKNOWN_ACCOUNT,
    ):
        self.rule_set = rule_set if rule_set is not None else RuleSet.default()
        self.unknown_account = unknown_account

    def categorize(self, tx: Transaction) -> str:
        """Return the account for a transaction (unknown_account if nothing matches)."""
        return classify(tx, self.rule_set, self.unknown_account)

    def is_unknown(self, account: str) -> bool:
        return account == self.unknown_account
