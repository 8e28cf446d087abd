"""
flashlend CLI - inspect configuration, quote premiums and simulate loans.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich import box
from rich.console import Console
from rich.table import Table

from flashlend.core.config_manager import ConfigManager, build_provider
from flashlend.core.defi.token_ledger import InMemoryTokenLedger
from flashlend.core.exceptions import ConfigurationError, FlashLoanError
from flashlend.core.logging_config import setup_logging_from_config

console = Console()
logger = logging.getLogger(__name__)

SIMULATED_BORROWER = "simulated-borrower"


def _load_config(ctx: click.Context) -> ConfigManager:
    """Load configuration and route protocol logs to stderr as JSON."""
    try:
        config = ConfigManager(
            environment=ctx.obj["environment"],
            config_dir=ctx.obj["config_dir"],
            load_env_file=False,
        )
    except ConfigurationError as exc:
        raise click.ClickException(exc.message) from exc

    setup_logging_from_config(
        config.logging,
        environment=config.environment.value,
        level=ctx.obj["log_level"],
        stream=click.get_text_stream("stderr"),
    )
    return config


def _emit(ctx: click.Context, payload: Dict[str, Any], title: str) -> None:
    """Render a flat payload as JSON or a rich table."""
    if ctx.obj.get("json_output"):
        click.echo(json.dumps(payload, indent=2, default=str))
        return

    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in payload.items():
        table.add_row(str(key), str(value))
    console.print(table)


@click.group()
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding default.yaml and <environment>.yaml.",
)
@click.option(
    "--environment",
    type=click.Choice(["development", "staging", "production"]),
    default="development",
    show_default=True,
    help="Configuration environment.",
)
@click.option("--json-output", is_flag=True, help="Output raw JSON")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_dir: Optional[Path],
    environment: str,
    json_output: bool,
    log_level: str,
):
    """
    flashlend - uncollateralized single-call lending.

    Inspect configured assets, quote premiums and dry-run flash loans
    against an in-memory token ledger.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_dir"] = config_dir
    ctx.obj["environment"] = environment
    ctx.obj["json_output"] = json_output
    ctx.obj["log_level"] = log_level.upper()


@cli.command("assets")
@click.pass_context
def assets(ctx: click.Context):
    """List configured assets and their loan parameters."""
    config = _load_config(ctx)

    if ctx.obj.get("json_output"):
        click.echo(json.dumps(config.to_dict()["assets"], indent=2))
        return

    table = Table(title="Listed assets", box=box.SIMPLE)
    for column in ("Asset", "Min", "Max", "Base bps", "Dynamic bps", "Max duration"):
        table.add_column(column)
    for asset, params in sorted(config.assets.items()):
        table.add_row(
            asset,
            str(params.min_amount),
            str(params.max_amount),
            str(params.base_premium_rate_bps),
            str(params.dynamic_premium_rate_bps),
            str(params.max_duration),
        )
    console.print(table)


@cli.command("quote")
@click.argument("asset")
@click.argument("amount", type=click.IntRange(min=0))
@click.pass_context
def quote(ctx: click.Context, asset: str, amount: int):
    """Quote the premium for borrowing AMOUNT of ASSET."""
    config = _load_config(ctx)
    provider = build_provider(config)
    try:
        premium = provider.calculate_premium(asset, amount)
    except FlashLoanError as exc:
        raise click.ClickException(exc.message) from exc

    _emit(
        ctx,
        {"asset": asset, "amount": amount, "premium": premium, "repayment": amount + premium},
        "Premium quote",
    )


@cli.command("simulate")
@click.argument("asset")
@click.argument("amount", type=click.IntRange(min=0))
@click.option(
    "--seed-liquidity",
    type=click.IntRange(min=1),
    default=None,
    help="Liquidity deposited before the loan (defaults to the asset's max amount).",
)
@click.option("--underpay", is_flag=True, help="Borrower repays principal only.")
@click.pass_context
def simulate(
    ctx: click.Context,
    asset: str,
    amount: int,
    seed_liquidity: Optional[int],
    underpay: bool,
):
    """Run one flash loan of AMOUNT of ASSET against an in-memory ledger."""
    config = _load_config(ctx)
    tokens = InMemoryTokenLedger()
    provider = build_provider(config, token_ledger=tokens)
    owner = config.protocol.owner

    if asset not in config.assets:
        raise click.ClickException(f"Asset {asset} is not configured")

    liquidity = seed_liquidity or config.assets[asset].max_amount
    tokens.mint(asset, owner, liquidity)
    provider.deposit_liquidity(owner, asset, liquidity)
    provider.authorize_caller(owner, SIMULATED_BORROWER)

    # Borrower holds enough to cover the premium out of pocket
    tokens.mint(asset, SIMULATED_BORROWER, provider.calculate_premium(asset, amount))

    def borrower(loan_asset: str, loan_amount: int, premium: int, payload: bytes) -> bool:
        repayment = loan_amount if underpay else loan_amount + premium
        tokens.transfer(loan_asset, SIMULATED_BORROWER, provider.address, repayment)
        return True

    outcome: Dict[str, Any] = {"asset": asset, "amount": amount}
    try:
        execution = provider.execute_flash_loan(SIMULATED_BORROWER, asset, amount, borrower)
    except FlashLoanError as exc:
        outcome.update({"status": "reverted", "error": type(exc).__name__, "reason": exc.message})
    else:
        outcome.update({"status": execution.state.value, "premium": execution.premium})

    entry = provider.ledger_entry(asset)
    outcome.update(entry.to_dict())
    outcome["available_liquidity"] = provider.available_liquidity(asset)
    logger.info(
        "Simulated flash loan",
        extra={"event": "cli.simulated", "asset": asset[:10], "status": outcome["status"]},
    )

    _emit(ctx, outcome, "Flash loan simulation")
    if outcome["status"] != "committed":
        ctx.exit(1)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
