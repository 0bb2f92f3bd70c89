"""Pydantic configuration models and TOML loading."""

from __future__ import annotations

import os
import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from caixabean.categorize.rules import RuleSet, load_rule_set
from caixabean.errors import ConfigurationError

__all__ = [
    "CategorizeConfig",
    "Config",
    "ConfigurationError",
    "ConsolidatorConfig",
    "ConverterConfig",
    "GeneralConfig",
    "load_config",
]


class GeneralConfig(BaseModel):
    """General project configuration."""

    output_dir: str = "./ledger"
    default_currency: str = "EUR"


class ConverterConfig(BaseModel):
    """Accounts used when writing ledger entries."""

    default_account: str = "Assets:Bank:Caixa:Checking"
    fallback_account: str = "Expenses:Unknown"


class ConsolidatorConfig(BaseModel):
    """Configuration for pre-auth / purchase / refund consolidation."""

    enabled: bool = True
    manual_review_enabled: bool = True

    # Debit range accepted for the small purchase leg
    purchase_min_amount: Decimal = Decimal("0.5")
    purchase_max_amount: Decimal = Decimal("2.0")

    # Scoring: purchase debit in this range scores +1
    snack_min_amount: Decimal = Decimal("0.5")
    snack_max_amount: Decimal = Decimal("1.5")

    # Scoring: pre-auth description containing one of these scores +2
    vending_keywords: list[str] = Field(default_factory=lambda: ["vending", "serunion"])

    suggested_account: str = "Expenses:Food:Snacks"

    @model_validator(mode="after")
    def _check_ranges(self) -> ConsolidatorConfig:
        if self.purchase_min_amount > self.purchase_max_amount:
            raise ValueError("purchase_min_amount must not exceed purchase_max_amount")
        if self.snack_min_amount > self.snack_max_amount:
            raise ValueError("snack_min_amount must not exceed snack_max_amount")
        return self


class CategorizeConfig(BaseModel):
    """Classification rules, inline or in a merchants JSON file."""

    merchants_file: str | None = None
    rules: list[dict[str, Any]] = Field(default_factory=list)
    patterns: list[dict[str, Any]] = Field(default_factory=list)
    fallbacks: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def has_inline_rules(self) -> bool:
        return bool(self.rules or self.patterns or self.fallbacks)


class Config(BaseModel):
    """Root configuration model."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    converter: ConverterConfig = Field(default_factory=ConverterConfig)
    consolidator: ConsolidatorConfig = Field(default_factory=ConsolidatorConfig)
    categorize: CategorizeConfig = Field(default_factory=CategorizeConfig)

    @property
    def output_path(self) -> Path:
        return Path(self.general.output_dir)

    def rule_set(self) -> RuleSet:
        """Build the classification rule set.

        Inline [categorize] rules win over merchants_file; with neither, the
        built-in defaults are used. Bad regexes or conditions raise
        ConfigurationError.
        """
        if self.categorize.has_inline_rules:
            return RuleSet.from_config(self.categorize.model_dump())
        return load_rule_set(self.categorize.merchants_file)


def _resolve_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _resolve_env_vars(value)
    if isinstance(value, list):
        # Arrays of tables, e.g. [[categorize.rules]]
        return [_resolve_value(item) for item in value]
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.environ.get(value[2:-1], value)
    return value


def _resolve_env_vars(data: dict) -> dict:
    """Recursively resolve ${ENV_VAR} references in string values."""
    return {key: _resolve_value(value) for key, value in data.items()}


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to config.toml. If None, looks for config.toml
                     in the current directory.

    Returns:
        Parsed Config object.

    Raises:
        ConfigurationError: if the file is not valid TOML or fails validation.
    """
    if config_path is None:
        config_path = Path("config.toml")
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        return Config()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML: {e}", config_path=str(config_path)) from e

    raw = _resolve_env_vars(raw)
    try:
        config = Config.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e}", config_path=str(config_path)
        ) from e

    # Relative merchants_file paths are relative to the config file
    merchants_file = config.categorize.merchants_file
    if merchants_file and not Path(merchants_file).is_absolute():
        config.categorize.merchants_file = str(config_path.parent / merchants_file)
    return config
