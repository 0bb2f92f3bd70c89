"""CLI interface for caixabean."""

from __future__ import annotations

import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import NoReturn

import click

from caixabean import __version__
from caixabean.categorize.rules import RuleCategorizer
from caixabean.config import Config, ConfigurationError, load_config
from caixabean.importers.base import Transaction
from caixabean.importers.caixa import CaixaImporter
from caixabean.ledger.writer import write_ledger
from caixabean.matching.consolidator import consolidate

_INPUT_EXTENSIONS = {".csv"}


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _build_categorizer(config: Config) -> RuleCategorizer:
    try:
        rule_set = config.rule_set()
    except ConfigurationError as e:
        where = f" ({e.config_path})" if e.config_path else ""
        _fail(f"invalid categorization rules{where}: {e}")
    return RuleCategorizer(rule_set, unknown_account=config.converter.fallback_account)


def _read_statement(
    input_path: str, config: Config, account: str
) -> tuple[CaixaImporter, list[Transaction]]:
    path = Path(input_path)
    if path.suffix.lower() not in _INPUT_EXTENSIONS:
        _fail(f"unsupported file extension '{path.suffix}', expected one of: .csv")

    importer = CaixaImporter(account=account, currency=config.general.default_currency)
    if not importer.identify(path):
        _fail(f"{path.name} does not look like a Caixa movement export")

    try:
        transactions = importer.extract(path)
    except (OSError, ValueError) as e:
        _fail(f"failed to extract {path.name}: {e}")

    if not transactions:
        _fail(f"no transactions found in {path.name}")

    click.echo(f"  {path.name}: {len(transactions)} transactions extracted")
    return importer, transactions


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=None, help="Path to config.toml")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """caixabean - Convert Caixa bank statements to Beancount."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigurationError as e:
        _fail(str(e))


@main.command()
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.argument(
    "output_path", metavar="[OUTPUT]", required=False, type=click.Path(dir_okay=False)
)
@click.option("--account", "-a", default=None, help="Beancount account for the bank account")
@click.pass_context
def convert(
    ctx: click.Context, input_path: str, output_path: str | None, account: str | None
) -> None:
    """Convert a Caixa statement export to a Beancount file.

    OUTPUT defaults to <output_dir>/<input name>.bean.
    """
    config: Config = ctx.obj["config"]
    bank_account = account or config.converter.default_account
    categorizer = _build_categorizer(config)

    click.echo(f"Processing: {input_path}")
    importer, transactions = _read_statement(input_path, config, bank_account)

    result = consolidate(transactions, config.consolidator)
    n_uncat = sum(
        1 for tx in result.transactions if categorizer.is_unknown(categorizer.categorize(tx))
    )

    start, end = importer.period
    header = [
        "Converted from Caixa bank statement",
        f"Account: {transactions[0].account_number or bank_account}",
        f"Period: {start} to {end}",
        f"Currency: {transactions[0].currency}",
    ]
    if output_path is None:
        output_path = config.output_path / f"{Path(input_path).stem}.bean"
    written = write_ledger(result, output_path, bank_account, categorizer, header=header)

    click.echo(f"  Written {len(result.transactions)} transactions to: {written}")
    click.echo(f"\nTotal: {len(transactions)} transactions read.")
    click.echo(f"  Consolidated: {len(result.merged)} pre-auth group(s)")
    click.echo(f"  Uncategorized: {n_uncat}")
    if result.review:
        click.echo(
            click.style(
                f"\n{len(result.review)} candidate(s) flagged for manual review "
                f"(see comments at the end of {written.name})",
                fg="yellow",
            ),
            err=True,
        )


@main.command()
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def review(ctx: click.Context, input_path: str) -> None:
    """Show detected pre-auth patterns without writing anything."""
    config: Config = ctx.obj["config"]
    _, transactions = _read_statement(input_path, config, config.converter.default_account)

    result = consolidate(transactions, config.consolidator)
    candidates = [*result.merged, *result.review]
    if not candidates:
        click.echo("No pre-auth patterns found.")
        return

    for candidate in candidates:
        status = "merged" if candidate in result.merged else "review"
        click.echo(
            f"\n[{candidate.confidence.value}] score {candidate.score} ({status}) "
            f"-> {candidate.suggested_account}"
        )
        for tx in candidate.transactions:
            amount = f"-{tx.debit_amount}" if tx.debit_amount else f"+{tx.credit_amount}"
            click.echo(f"  {tx.date} {tx.description} {amount} {tx.currency}")

    click.echo(f"\n{len(result.merged)} merged, {len(result.review)} for review.")


@main.command()
@click.argument("text")
@click.option("--amount", type=str, default=None, help="Debit amount used by fallback rules")
@click.pass_context
def classify(ctx: click.Context, text: str, amount: str | None) -> None:
    """Print the account a description is classified to."""
    config: Config = ctx.obj["config"]
    categorizer = _build_categorizer(config)

    try:
        debit = Decimal(amount) if amount else None
    except InvalidOperation:
        _fail(f"invalid amount {amount!r}")

    tx = Transaction(
        date=date.today(),
        reference="",
        credit_amount=None,
        debit_amount=debit,
        balance=Decimal(0),
        concepts=(text,),
    )
    click.echo(categorizer.categorize(tx))


if __name__ == "__main__":
    main()
