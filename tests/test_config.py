"""Tests for configuration loading."""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from caixabean.categorize.rules import RuleSet, classify
from caixabean.config.schema import Config, ConsolidatorConfig, load_config
from caixabean.errors import ConfigurationError
from caixabean.importers.base import Transaction


def _make_tx(merchant: str, debit: str = "10.00") -> Transaction:
    return Transaction(
        date=date(2025, 3, 5),
        reference="4321",
        credit_amount=None,
        debit_amount=Decimal(debit),
        balance=Decimal("100.00"),
        concepts=(merchant,),
    )


def test_default_config():
    """Loading with no config file returns defaults."""
    config = load_config(Path("/nonexistent/config.toml"))
    assert config.general.default_currency == "EUR"
    assert config.general.output_dir == "./ledger"
    assert config.converter.default_account == "Assets:Bank:Caixa:Checking"
    assert config.converter.fallback_account == "Expenses:Unknown"
    assert config.consolidator.enabled
    assert config.consolidator.manual_review_enabled
    assert config.consolidator.purchase_min_amount == Decimal("0.5")
    assert config.consolidator.purchase_max_amount == Decimal("2.0")
    assert config.consolidator.vending_keywords == ["vending", "serunion"]


def test_load_config_from_toml(tmp_path):
    """Load a valid config file."""
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        dedent("""\
        [general]
        output_dir = "./out"

        [converter]
        default_account = "Assets:Bank:Caixa:Joint"
        fallback_account = "Expenses:Uncategorized"

        [consolidator]
        manual_review_enabled = false
        purchase_max_amount = 2.5
        vending_keywords = ["vending", "selecta"]
    """)
    )

    config = load_config(config_file)
    assert config.general.output_dir == "./out"
    assert config.general.default_currency == "EUR"
    assert config.converter.default_account == "Assets:Bank:Caixa:Joint"
    assert config.converter.fallback_account == "Expenses:Uncategorized"
    assert not config.consolidator.manual_review_enabled
    assert config.consolidator.purchase_max_amount == Decimal("2.5")
    assert config.consolidator.vending_keywords == ["vending", "selecta"]


def test_env_var_resolution(tmp_path, monkeypatch):
    monkeypatch.setenv("CAIXA_ACCOUNT", "Assets:Bank:Caixa:Personal")
    config_file = tmp_path / "config.toml"
    config_file.write_text('[converter]\ndefault_account = "${CAIXA_ACCOUNT}"\n')

    config = load_config(config_file)
    assert config.converter.default_account == "Assets:Bank:Caixa:Personal"


def test_unset_env_var_is_kept_verbatim(tmp_path, monkeypatch):
    monkeypatch.delenv("CAIXA_UNSET", raising=False)
    config_file = tmp_path / "config.toml"
    config_file.write_text('[general]\noutput_dir = "${CAIXA_UNSET}"\n')

    assert load_config(config_file).general.output_dir == "${CAIXA_UNSET}"


def test_invalid_toml_raises(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text("[general\noutput_dir = ")

    with pytest.raises(ConfigurationError) as exc_info:
        load_config(config_file)
    assert exc_info.value.config_path == str(config_file)


def test_inverted_range_rejected():
    with pytest.raises(ValidationError):
        ConsolidatorConfig(purchase_min_amount=Decimal("3"), purchase_max_amount=Decimal("1"))
    with pytest.raises(ValidationError):
        ConsolidatorConfig(snack_min_amount=Decimal("2"), snack_max_amount=Decimal("1"))


def test_inverted_range_in_file_is_configuration_error(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text("[consolidator]\nsnack_min_amount = 2.0\nsnack_max_amount = 1.0\n")

    with pytest.raises(ConfigurationError):
        load_config(config_file)


def test_config_model_properties():
    config = Config()
    assert config.output_path == Path("./ledger")
    assert config.rule_set() == RuleSet.default()


def test_inline_rules(tmp_path):
    """[categorize] tables replace the built-in rules."""
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        dedent("""\
        [[categorize.rules]]
        keywords = ["mercadona"]
        account = "Expenses:Groceries"

        [[categorize.fallbacks]]
        condition = "amount <= 1.00"
        account = "Expenses:Food:Coffee"
    """)
    )

    rules = load_config(config_file).rule_set()
    assert classify(_make_tx("MERCADONA"), rules) == "Expenses:Groceries"
    assert classify(_make_tx("BAR", debit="0.90"), rules) == "Expenses:Food:Coffee"
    assert classify(_make_tx("SHELL"), rules) == "Expenses:Unknown"


def test_merchants_file_relative_to_config(tmp_path):
    (tmp_path / "merchants.json").write_text(
        json.dumps({"rules": [{"keywords": ["renfe"], "account": "Expenses:Transport"}]})
    )
    config_file = tmp_path / "config.toml"
    config_file.write_text('[categorize]\nmerchants_file = "merchants.json"\n')

    config = load_config(config_file)
    assert config.categorize.merchants_file == str(tmp_path / "merchants.json")
    assert classify(_make_tx("RENFE VIAJEROS"), config.rule_set()) == "Expenses:Transport"


def test_bad_inline_regex_surfaces_on_rule_set(tmp_path):
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        dedent("""\
        [[categorize.patterns]]
        regex = "(unclosed"
        account = "Expenses:X"
    """)
    )

    config = load_config(config_file)
    with pytest.raises(ConfigurationError, match="Invalid regex"):
        config.rule_set()


def test_env_var_resolution_in_rule_tables(tmp_path, monkeypatch):
    """${VAR} is resolved inside [[categorize.*]] arrays as well."""
    monkeypatch.setenv("CAIXA_SAVINGS", "Assets:Bank:Caixa:Savings")
    monkeypatch.setenv("CAIXA_EMPLOYER", "acme")
    config_file = tmp_path / "config.toml"
    config_file.write_text(
        dedent("""\
        [[categorize.rules]]
        keywords = ["${CAIXA_EMPLOYER}"]
        account = "${CAIXA_SAVINGS}"
    """)
    )

    config = load_config(config_file)
    assert config.categorize.rules == [
        {"keywords": ["acme"], "account": "Assets:Bank:Caixa:Savings"}
    ]
    assert classify(_make_tx("ACME NOMINA"), config.rule_set()) == "Assets:Bank:Caixa:Savings"
