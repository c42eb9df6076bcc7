"""
boc-relay command-line interface.

Usage:
    boc-relay [OPTIONS] COMMAND [ARGS]...

Exit codes: 0 when the operation was included (or a direct transaction was
prepared), 1 on relay failures, 2 on caller errors.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from typing import Any, List, Optional, Union

import click
from rich.console import Console
from rich.table import Table

from .config import EndpointConfig, RelayConfig, build_default_config, get_chain, supported_chains
from .coordinator import RelayCoordinator
from .direct import DirectCall, GaslessRouter
from .errors import InvalidIntent
from .intent import CallIntent, default_encoder
from .logging_utils import setup_logging
from .settlement import Failed, Included, Settlement

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CALLER_ERROR = 2


def _parse_args(raw: str) -> List[Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e.msg}", param_hint="--args")
    if not isinstance(value, list):
        raise click.BadParameter("must be a JSON array", param_hint="--args")
    return value


def _with_overrides(
    config: RelayConfig,
    chain: Optional[str],
    rpc_url: Optional[str],
    sponsor_url: Optional[str],
    bundler_url: Optional[str],
) -> RelayConfig:
    if chain:
        base = get_chain(chain)
        config = replace(
            config,
            chain=replace(base, entry_point=config.chain.entry_point),
            execution=replace(config.execution, url=rpc_url or base.default_rpc),
        )
    if rpc_url:
        config = replace(config, execution=replace(config.execution, url=rpc_url))
    if sponsor_url:
        # The bundler follows the sponsor unless it was configured separately
        follows_sponsor = config.bundler.url in ("", config.sponsor.url)
        config = replace(config, sponsor=replace(config.sponsor, url=sponsor_url))
        if follows_sponsor:
            config = replace(config, bundler=EndpointConfig(sponsor_url, config.sponsor.timeout_seconds))
    if bundler_url:
        config = replace(config, bundler=replace(config.bundler, url=bundler_url))
    return config


def _exit_code(outcome: Union[DirectCall, Settlement]) -> int:
    if isinstance(outcome, Failed):
        return EXIT_CALLER_ERROR if outcome.is_caller_error else EXIT_FAILED
    return EXIT_OK


def _print_outcome(outcome: Union[DirectCall, Settlement], as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(outcome.to_dict()))
        return

    if isinstance(outcome, DirectCall):
        console.print("\n[bold blue]Caller can pay gas; sign and send:[/bold blue]\n")
        console.print(f"  To: [cyan]{outcome.to}[/cyan]")
        console.print(f"  Data: {outcome.data}")
        console.print(f"  Gas: {outcome.gas}")
        console.print(f"  Gas Price: {outcome.gas_price} wei")
    elif isinstance(outcome, Included):
        console.print(f"\n[green]✓ Included in {outcome.transaction_hash}[/green]")
        if outcome.user_op_hash:
            console.print(f"  User operation: {outcome.user_op_hash}")
        if outcome.success is False:
            console.print("  [yellow]The call reverted on-chain[/yellow]")
    else:
        color = "yellow" if outcome.is_transient else "red"
        console.print(f"\n[{color}]✗ {outcome.kind.value}: {outcome.message}[/{color}]")
        if outcome.user_op_hash:
            console.print(f"  User operation: {outcome.user_op_hash}")
    console.print()


@click.group()
@click.version_option(package_name="boc-relay", message="%(prog)s %(version)s")
@click.option("--chain", type=click.Choice(supported_chains()), help="Execution network")
@click.option("--rpc-url", help="Execution network JSON-RPC URL")
@click.option("--sponsor-url", help="Paymaster JSON-RPC URL")
@click.option("--bundler-url", help="Bundler JSON-RPC URL (defaults to the sponsor URL)")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, chain: str | None, rpc_url: str | None, sponsor_url: str | None, bundler_url: str | None, verbose: bool):
    """boc-relay - gasless contract calls through an ERC-4337 paymaster."""
    ctx.ensure_object(dict)
    setup_logging("DEBUG" if verbose else "WARNING")

    config = build_default_config()
    ctx.obj["config"] = _with_overrides(config, chain, rpc_url, sponsor_url, bundler_url)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("target")
@click.argument("function")
@click.option("--args", "raw_args", default="[]", help="Function arguments as a JSON array")
@click.option("--caller", required=True, help="Address the operation is sent from")
@click.option("--signature", help="Ready-made account signature (hex)")
@click.option("--deadline", type=float, help="Overall deadline in seconds")
@click.option("--direct/--no-direct", default=False, help="Return a transaction request when the caller can pay gas")
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON")
@click.pass_context
def relay(
    ctx,
    target: str,
    function: str,
    raw_args: str,
    caller: str,
    signature: str | None,
    deadline: float | None,
    direct: bool,
    as_json: bool,
):
    """Relay FUNCTION on contract TARGET without the caller paying gas."""
    config: RelayConfig = ctx.obj["config"]
    intent = CallIntent(target, function, tuple(_parse_args(raw_args)))

    if not config.sponsor.url:
        console.print("[red]Error: no sponsor URL configured (--sponsor-url or BOC_RELAY_SPONSOR_URL)[/red]")
        ctx.exit(EXIT_CALLER_ERROR)

    async def run() -> Union[DirectCall, Settlement]:
        if direct:
            async with GaslessRouter.from_config(config) as router:
                return await router.dispatch(intent, caller, signature=signature, deadline_seconds=deadline)
        async with RelayCoordinator.from_config(config) as coordinator:
            return await coordinator.relay(intent, caller, signature=signature, deadline_seconds=deadline)

    outcome = asyncio.run(run())
    _print_outcome(outcome, as_json)
    ctx.exit(_exit_code(outcome))


@cli.command()
@click.argument("user_op_hash")
@click.option("--attempts", type=click.IntRange(min=1), help="Maximum number of lookups")
@click.option("--interval", type=click.FloatRange(min=0), help="Seconds between lookups")
@click.option("--json", "as_json", is_flag=True, help="Print the outcome as JSON")
@click.pass_context
def receipt(ctx, user_op_hash: str, attempts: int | None, interval: float | None, as_json: bool):
    """Poll the bundler for the receipt of USER_OP_HASH."""
    config: RelayConfig = ctx.obj["config"]
    polling = replace(
        config.polling,
        max_attempts=attempts if attempts is not None else config.polling.max_attempts,
        interval_seconds=interval if interval is not None else config.polling.interval_seconds,
    )
    config = replace(config, polling=polling)

    if not config.bundler.url:
        console.print("[red]Error: no bundler URL configured (--bundler-url or BOC_RELAY_BUNDLER_URL)[/red]")
        ctx.exit(EXIT_CALLER_ERROR)
    if not config.sponsor.url:
        # Tracking never calls the sponsor
        config = replace(config, sponsor=config.bundler)

    async def run() -> Settlement:
        async with RelayCoordinator.from_config(config) as coordinator:
            return await coordinator.track(user_op_hash)

    outcome = asyncio.run(run())
    _print_outcome(outcome, as_json)
    ctx.exit(_exit_code(outcome))


@cli.command()
@click.argument("target")
@click.argument("function")
@click.option("--args", "raw_args", default="[]", help="Function arguments as a JSON array")
@click.option("--signature-file", type=click.File("r"), help="Extra function signatures, one per line")
@click.pass_context
def encode(ctx, target: str, function: str, raw_args: str, signature_file):
    """Print the calldata for FUNCTION on contract TARGET."""
    extra = []
    if signature_file is not None:
        extra = [line.strip() for line in signature_file if line.strip() and not line.startswith("#")]

    try:
        encoder = default_encoder(extra)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--signature-file")

    intent = CallIntent(target, function, tuple(_parse_args(raw_args)))
    try:
        click.echo(encoder.encode_hex(intent))
    except InvalidIntent as e:
        console.print(f"[red]Error: {e.message}[/red]")
        ctx.exit(EXIT_CALLER_ERROR)


@cli.command(name="config")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@click.pass_context
def show_config(ctx, as_json: bool):
    """Show the effective configuration."""
    config: RelayConfig = ctx.obj["config"]
    summary = config.to_dict()

    if as_json:
        click.echo(json.dumps(summary))
        return

    table = Table(title="boc-relay configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in summary.items():
        table.add_row(key, "[yellow]Not configured[/yellow]" if value in (None, "") else str(value))
    console.print(table)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
