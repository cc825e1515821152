# Simple CLI for the Trade Router
import random

import click

from core.config.settings import Settings
from core.logging import configure_logging
from core.resilience import RateLimitManager, get_repair_action, is_broken_connection, normalize_provider_error
from core.utils.exceptions import ProviderError, RoutingIncompatibilityError
from services.portfolio_manager import ConnectedAccount
from services.trading_engine.models import OrderType, TradingRequest
from services.trading_engine.routing import BrokerageCompatibilityEngine, BrokerageRouter


def _parse_account(value: str) -> ConnectedAccount:
    """Parse ``provider[:balance]`` into a brokerage account."""
    provider, _, balance = value.partition(":")
    if not provider:
        raise click.BadParameter(f"invalid account '{value}', expected provider[:balance]")
    try:
        amount = float(balance) if balance else 0.0
    except ValueError:
        raise click.BadParameter(f"invalid balance in '{value}'")
    return ConnectedAccount(id=provider, provider=provider, balance=amount)


@click.group()
@click.pass_context
def cli(ctx):
    """Trade Router CLI"""
    settings = Settings()
    configure_logging(settings)
    ctx.obj = settings


@cli.command()
@click.option("--attempts", default=5, show_default=True, type=click.IntRange(min=1),
              help="Number of retry attempts to show")
@click.option("--seed", default=None, type=int, help="Seed the jitter for a reproducible schedule")
@click.pass_obj
def backoff(settings: Settings, attempts: int, seed):
    """Print the 429 backoff schedule for the configured rate limits"""
    limiter = RateLimitManager(settings.rate_limit, rng=random.Random(seed))
    for attempt in range(attempts):
        click.echo(f"attempt {attempt}: {limiter.compute_backoff(attempt):.2f}s")


@cli.command()
@click.option("--status", type=int, default=None, help="HTTP status returned by the provider")
@click.option("--code", default=None, help="Provider error code")
@click.option("--message", default="", help="Provider error message")
def classify(status, code, message):
    """Classify a provider error"""
    error = ProviderError(message, status=status, code=code)
    broken = is_broken_connection(error)
    click.echo(f"broken_connection: {str(broken).lower()}")
    if broken:
        click.echo(f"repair_action: {get_repair_action(code, status).value}")
    click.echo(f"error_code: {normalize_provider_error(error).code}")


@cli.command()
@click.argument("symbol")
@click.argument("quantity", type=float)
@click.option("--side", type=click.Choice(["buy", "sell"]), default="buy", show_default=True)
@click.option("--limit-price", type=float, default=None, help="Limit price; market order when omitted")
@click.option("--brokerage", default=None, help="Route to this brokerage only")
@click.option("--account", "accounts", multiple=True, required=True,
              help="Connected brokerage as provider[:balance]; repeatable")
@click.pass_obj
def route(settings: Settings, symbol, quantity, side, limit_price, brokerage, accounts):
    """Score connected brokerages for an order and show the pick"""
    connected = [_parse_account(value) for value in accounts]
    request = TradingRequest(
        user_id="cli",
        symbol=symbol,
        quantity=quantity,
        side=side,
        order_type=OrderType.LIMIT if limit_price is not None else OrderType.MARKET,
        limit_price=limit_price,
        brokerage_id=brokerage,
    )

    compatibility = BrokerageCompatibilityEngine()
    router = BrokerageRouter(storage=None, compatibility=compatibility, settings=settings.routing)
    compatibility_result = compatibility.check_asset_compatibility(request.symbol, [a.provider for a in connected])
    click.echo(f"asset_type: {compatibility_result.asset_type.value}")

    candidates = compatibility_result.compatible_brokerages
    for score in router.score_brokerages(request, candidates, connected):
        click.echo(
            f"{score.brokerage_id}: total={score.total:.2f} fee={score.fee_score:.2f} "
            f"balance={score.balance_score:.2f} specialization={score.specialization_score:.2f} "
            f"speed={score.speed_score:.2f}"
        )

    try:
        decision = router.select_brokerage(request, connected)
    except RoutingIncompatibilityError as e:
        raise click.ClickException(e.message)
    click.echo(f"selected: {decision.brokerage_id} "
               f"(fee ${decision.estimated_fee:.2f}, {decision.execution_time})")


if __name__ == "__main__":
    cli()
