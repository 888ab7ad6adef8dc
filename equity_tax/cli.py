"""
Command-line interface for the equity tax engine.

Provides commands for:
- Capital gains and dividend reports
- Danish income tax with §7P relief
- Exchange rate lookups and manual overrides
- Per-ticker cost basis method settings
"""

import functools
import logging
import sys
from datetime import datetime
from pathlib import Path

import click

from .config import DANISH_TAX_RATES, DATA_DIR, setup_logging
from .data.exchange_rates import ExchangeRateService
from .data.records import load_dataset, to_decimal
from .exceptions import EquityTaxError
from .tax.capital_gains import CapitalGainsReportGenerator
from .tax.cost_basis import CostBasisMethod, CostBasisSettings
from .tax.danish_tax import TaxInput, calculate_danish_tax
from .tax.dividends import DividendTaxReportGenerator
from .tax.section_7p import summarize_7p
from .tax.tax_reporter import TaxReporter

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

DATE_TYPE = click.DateTime(formats=["%Y-%m-%d"])
LAST_YEAR = datetime.now().year - 1
LATEST_TAX_TABLE = max(DANISH_TAX_RATES)


def handle_errors(func):
    """Report engine errors on stderr and exit non-zero."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except EquityTaxError as e:
            click.echo(f"ERROR: {e}", err=True)
            sys.exit(1)
    return wrapper


def _data_dir(ctx) -> Path:
    return ctx.obj["data_dir"]


def _rates(ctx) -> ExchangeRateService:
    return ExchangeRateService(data_dir=_data_dir(ctx))


def _settings(ctx) -> CostBasisSettings:
    return CostBasisSettings(data_dir=_data_dir(ctx))


def _gains_generator(ctx, dataset=None, rates=None) -> CapitalGainsReportGenerator:
    settings = _settings(ctx)
    return CapitalGainsReportGenerator(
        dataset or load_dataset(_data_dir(ctx)),
        rates or _rates(ctx),
        settings.snapshot(),
        default_method=settings.default_method.value,
    )


def _amount(value):
    return None if value is None else to_decimal(value)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False),
    default=str(DATA_DIR),
    help="Directory with lots.csv, transactions.csv, grants.csv and caches",
)
@click.pass_context
def cli(ctx, verbose, data_dir):
    """Danish equity compensation tax engine."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = Path(data_dir)


@cli.command("capital-gains")
@click.option("--year", type=int, default=LAST_YEAR, help="Tax year")
@click.pass_context
@handle_errors
def capital_gains(ctx, year):
    """Realized capital gains for a tax year (rubrik 454)."""
    report = _gains_generator(ctx).generate(year)

    click.echo("=" * 60)
    click.echo(f"CAPITAL GAINS - {year}")
    click.echo("=" * 60)

    if not report.line_items:
        click.echo("\nNo disposals in this year.")
        return

    click.echo(
        f"\n{'Date':<12} {'Ticker':<8} {'Qty':>10} {'Proceeds DKK':>15} "
        f"{'Cost DKK':>15} {'Gain/Loss DKK':>15} {'Method':<12}"
    )
    click.echo("-" * 93)
    for item in report.line_items:
        click.echo(
            f"{item.disposal_date.isoformat():<12} {item.ticker:<8} {item.quantity:>10} "
            f"{item.proceeds_dkk:>15,.2f} {item.cost_basis_dkk:>15,.2f} "
            f"{item.gain_loss_dkk:>15,.2f} {item.method:<12}"
        )
    click.echo("-" * 93)

    click.echo(f"\nTotal gains:  DKK {report.total_gain_dkk:,.2f}")
    click.echo(f"Total losses: DKK {report.total_loss_dkk:,.2f}")
    click.echo(f"Net:          DKK {report.net_dkk:,.2f}")


@cli.command()
@click.option("--as-of", type=DATE_TYPE, default=None, help="Holding period reference date")
@click.pass_context
@handle_errors
def positions(ctx, as_of):
    """Show open lots per ticker."""
    as_of = as_of.date() if as_of else None
    holdings = _gains_generator(ctx).get_portfolio_positions(as_of)

    click.echo("=" * 60)
    click.echo("OPEN POSITIONS")
    click.echo("=" * 60)

    if not holdings:
        click.echo("\nNo open positions.")
        return

    for pos in holdings:
        click.echo(
            f"\n{pos.ticker}: {pos.total_shares} shares, cost {pos.total_cost_basis:,.2f} "
            f"{pos.currency} ({pos.cost_basis_method})"
        )
        if pos.average_cost_per_share is not None:
            click.echo(f"  Average cost: {pos.average_cost_per_share:,.4f} {pos.currency}")
        for lot in pos.lots:
            click.echo(
                f"  {lot.acquisition_date.isoformat()}  {lot.shares:>10} @ "
                f"{lot.cost_per_share:>10,.4f}  {lot.holding_classification}"
            )


@cli.command()
@click.option("--year", type=int, default=LAST_YEAR, help="Tax year")
@click.option("--us-person", is_flag=True, help="Taxpayer is a US person")
@click.option("--irs-tax-paid", type=str, default=None, help="Tax paid to the IRS (USD)")
@click.pass_context
@handle_errors
def dividends(ctx, year, us_person, irs_tax_paid):
    """Dividend income and foreign tax credit (rubrik 452/496)."""
    generator = DividendTaxReportGenerator(load_dataset(_data_dir(ctx)), _rates(ctx))
    report = generator.generate(year, us_person, _amount(irs_tax_paid))

    click.echo("=" * 60)
    click.echo(f"DIVIDENDS - {year}")
    click.echo("=" * 60)
    click.echo(f"\nPayments:           {len(report.dividends)}")
    click.echo(f"Gross dividends:    USD {report.gross_dividends:,.2f}")
    click.echo(f"Withheld at source: USD {report.withheld:,.2f}")
    click.echo(f"Net received:       USD {report.net_received:,.2f}")
    click.echo(f"\nRubrik 452 (gross):          DKK {report.gross_dividends_dkk:,.2f}")
    click.echo(f"Rubrik 496 (foreign credit): DKK {report.foreign_tax_credit_dkk:,.2f}")


@cli.command("tax-calc")
@click.option("--salary", type=str, required=True, help="Yearly salary (DKK)")
@click.option("--fradrag", type=str, default="0", help="Deductions (DKK)")
@click.option("--on-7p", type=str, default=None, help="Equity amount reported under 7P (DKK)")
@click.option("--not-on-7p", type=str, default=None, help="Equity amount not under 7P (DKK)")
@click.option("--allowance-7p", type=str, default=None, help="Employer 7P allowance (DKK)")
@click.option("--from-grants", is_flag=True, help="Take 7P amounts from grants.csv")
@click.option("--year", type=int, default=LATEST_TAX_TABLE, help="Income year")
@click.pass_context
@handle_errors
def tax_calc(ctx, salary, fradrag, on_7p, not_on_7p, allowance_7p, from_grants, year):
    """Calculate Danish income tax with 7P relief."""
    if from_grants:
        dataset = load_dataset(_data_dir(ctx))
        summary = summarize_7p(dataset.grants, _rates(ctx), year)
        on_7p = on_7p or summary.amount_on_7p_dkk
        not_on_7p = not_on_7p or summary.amount_not_on_7p_dkk

    tax_input = TaxInput.create(
        yearly_salary_dkk=salary,
        fradrag_dkk=fradrag,
        amount_on_7p_dkk=on_7p or "0",
        amount_not_on_7p_dkk=not_on_7p or "0",
        year=year,
        allowance_7p_dkk=_amount(allowance_7p),
    )
    result = calculate_danish_tax(tax_input)

    click.echo("=" * 60)
    click.echo(f"DANISH INCOME TAX - {year}")
    click.echo("=" * 60)
    click.echo(f"\nTotal income:       DKK {result.total_income:,.2f}")
    click.echo(f"AM-bidrag:          DKK {result.am_bidrag:,.2f}")
    click.echo(f"Taxable after ded.: DKK {result.taxable_income_after_deductions:,.2f}")
    click.echo(f"Municipal tax:      DKK {result.municipal_tax:,.2f}")
    click.echo(f"Bottom tax:         DKK {result.bottom_tax:,.2f}")
    click.echo(f"Top tax:            DKK {result.top_tax:,.2f}")
    click.echo(f"7P allowance:       DKK {result.allowance_7p:,.2f}")
    click.echo(f"7P reduction:       DKK {result.tax_7p_reduction:,.2f}")
    click.echo("-" * 60)
    click.echo(f"Total tax:          DKK {result.total_tax:,.2f}")
    click.echo(f"Effective rate:     {result.effective_tax_rate * 100:.2f}%")
    click.echo(f"Net income:         DKK {result.net_income:,.2f}")


@cli.command("set-method")
@click.argument("ticker")
@click.argument("method", type=click.Choice([m.value for m in CostBasisMethod]))
@click.pass_context
@handle_errors
def set_method(ctx, ticker, method):
    """Set the cost basis method for a ticker."""
    settings = _settings(ctx)
    settings.set_method(ticker.upper(), method)
    click.echo(f"{ticker.upper()}: {method} (historical disposals are recalculated)")


@cli.command()
@click.argument("on_date", metavar="DATE", type=DATE_TYPE)
@click.pass_context
@handle_errors
def rate(ctx, on_date):
    """Look up the USD/DKK rate for a date."""
    on_date = on_date.date()
    service = _rates(ctx)
    value = service.rate_for(on_date)
    click.echo(f"{on_date.isoformat()}: 1 USD = {value} DKK")


@cli.command("set-rate")
@click.argument("on_date", metavar="DATE", type=DATE_TYPE)
@click.argument("value", metavar="RATE", type=str)
@click.pass_context
@handle_errors
def set_rate(ctx, on_date, value):
    """Set a manual USD/DKK rate for a date."""
    entry = _rates(ctx).set_manual_rate(on_date.date(), value)
    click.echo(f"Manual rate for {entry.date.isoformat()}: {entry.usd_to_dkk}")


@cli.command("cached-rates")
@click.option("--limit", type=int, default=20, help="Number of entries")
@click.pass_context
@handle_errors
def cached_rates(ctx, limit):
    """List cached exchange rates, newest first."""
    entries = _rates(ctx).get_cached_rates(limit)
    if not entries:
        click.echo("No cached rates.")
        return
    for entry in entries:
        click.echo(f"{entry.date.isoformat()}  {entry.usd_to_dkk:>10}  {entry.source}")


@cli.command("prefetch-rates")
@click.argument("start", type=DATE_TYPE)
@click.argument("end", type=DATE_TYPE)
@click.option("--workers", type=int, default=None, help="Parallel requests")
@click.pass_context
@handle_errors
def prefetch_rates(ctx, start, end, workers):
    """Fetch and cache rates for a date range."""
    count = _rates(ctx).prefetch_range(start.date(), end.date(), workers)
    click.echo(f"Cached {count} new rates")


@cli.command("tax-report")
@click.option("--year", type=int, default=LAST_YEAR, help="Tax year")
@click.option("--format", type=click.Choice(["console", "json", "csv"]), default="console")
@click.option("--output", "-o", type=click.Path(), help="Output filename (json)")
@click.option("--reports-dir", type=click.Path(file_okay=False), default=None, help="Output directory")
@click.option("--us-person", is_flag=True, help="Taxpayer is a US person")
@click.option("--irs-tax-paid", type=str, default=None, help="Tax paid to the IRS (USD)")
@click.option("--salary", type=str, default=None, help="Yearly salary (DKK) for the income tax section")
@click.option("--fradrag", type=str, default="0", help="Deductions (DKK)")
@click.pass_context
@handle_errors
def tax_report(ctx, year, format, output, reports_dir, us_person, irs_tax_paid, salary, fradrag):
    """Generate the annual tax report."""
    rates = _rates(ctx)
    dataset = load_dataset(_data_dir(ctx))

    tax_input = None
    if salary is not None:
        summary = summarize_7p(dataset.grants, rates, year)
        tax_input = TaxInput.create(
            yearly_salary_dkk=salary,
            fradrag_dkk=fradrag,
            amount_on_7p_dkk=summary.amount_on_7p_dkk,
            amount_not_on_7p_dkk=summary.amount_not_on_7p_dkk,
            year=year,
        )

    reporter = TaxReporter(
        _gains_generator(ctx, dataset, rates),
        DividendTaxReportGenerator(dataset, rates),
        reports_dir=reports_dir,
    )
    report = reporter.generate_annual_report(year, us_person, _amount(irs_tax_paid), tax_input)

    if format == "console":
        reporter.print_report(report)
    elif format == "json":
        path = reporter.export_json(report, output)
        click.echo(f"Saved: {path}")
    elif format == "csv":
        paths = reporter.export_csv(report)
        for name, path in paths.items():
            click.echo(f"Saved {name}: {path}")


def main():
    """Entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
