"""
cstore CLI

Deploy the Storage contract and talk to a deployed instance.

Commands:
  deploy  - Deploy the contract (and optionally run the save/read check)
  save    - Call save on a deployed contract
  read    - Read data() from a deployed contract
  whoami  - Show the configured signing address
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, NoReturn, Optional, TypeVar

import click

from . import __version__
from .artifacts import load_artifact
from .chain.rpc import RpcClient
from .config import DEFAULT_CONFIG_PATH, RuntimeConfig, load_config
from .deployer import Deployer, DeployReport, ExerciseOutcome
from .errors import DeployError
from .storage import DataItem
from .wallet.eth import derive_address, load_private_key

T = TypeVar("T")


# ============ Output ============


def _label(name: str, value: object) -> None:
    click.echo(click.style(f"  {name:<14}", dim=True) + str(value))


def _fail(exc: DeployError) -> NoReturn:
    click.secho(f"ERROR: {exc.describe()}", fg="red", err=True)
    sys.exit(exc.exit_code)


def _guard(action: Callable[[], T]) -> T:
    """Run ``action``; fatal errors end the process with their exit code."""
    try:
        return action()
    except DeployError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        click.secho("Interrupted.", fg="yellow", err=True)
        sys.exit(130)


def _print_exercise(outcome: ExerciseOutcome) -> None:
    click.echo()
    how = "save(DataItem)" if outcome.use_struct else "save(string,string,string)"
    click.secho(f"Contract test ({how})", fg="cyan")
    _label("Submitted:", outcome.submitted)
    if outcome.tx_hash:
        _label("Save tx:", outcome.tx_hash)
    if outcome.error is not None:
        click.secho(f"  Test failed: {outcome.error.describe()}", fg="red")
        return
    for item in outcome.logged:
        _label("Log data:", item)
    if not outcome.logged:
        _label("Log data:", "(no DataSaved log from contract)")
    _label("Stored data:", outcome.stored)
    if outcome.consistent:
        click.secho("  Log and stored state agree.", fg="green")
    else:
        click.secho("  Log and stored state DISAGREE.", fg="red")


def _print_report(report: DeployReport) -> None:
    deployment = report.deployment
    click.secho("Contract deployed successfully!", fg="green", bold=True)
    _label("Address:", deployment.address)
    _label("Transaction:", deployment.tx_hash)
    _label("Block:", deployment.block_number)
    _label("Gas used:", deployment.gas_used)
    if report.exercise is not None:
        _print_exercise(report.exercise)


# ============ Main CLI Group ============


@click.group()
@click.version_option(version=__version__, prog_name="cstore")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="YAML configuration file",
)
@click.option("-v", "--verbose", count=True, help="-v for progress, -vv for wire detail")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, verbose: int) -> None:
    """Deploy and exercise the Storage contract."""
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = config_path


def _config(ctx: click.Context) -> RuntimeConfig:
    return _guard(lambda: load_config(ctx.obj))


def _connect(config: RuntimeConfig, timeout: Optional[float] = None) -> Deployer:
    artifact = load_artifact(config.build.directory, config.build.contract_name)
    rpc = RpcClient.connect(config.ethereum.rpc_url)
    try:
        deployer = Deployer.from_config(config, rpc, artifact)
    except DeployError:
        rpc.close()
        raise
    if timeout is not None:
        deployer.timeout = timeout
    return deployer


# ============ Commands ============


@cli.command()
@click.option("--test/--no-test", "run_test", default=None, help="Override test.enable from the config")
@click.option("--struct", "use_struct", is_flag=True, help="Use the save(DataItem) overload for the test call")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for each transaction")
@click.pass_context
def deploy(ctx: click.Context, run_test: Optional[bool], use_struct: bool, timeout: Optional[float]) -> None:
    """Deploy the contract, then optionally save and read back a test item."""
    config = _config(ctx)
    click.echo("Starting contract deployment...")
    _label("RPC:", config.ethereum.rpc_url)
    _label("Artifact:", config.build.directory / config.build.contract_name)

    deployer = _guard(lambda: _connect(config, timeout))
    with deployer.rpc:
        _label("From:", deployer.signer.address)
        _label("Chain ID:", deployer.chain_id)
        _label("Gas limit:", deployer.gas_limit)
        _label("Gas price:", f"{_guard(deployer.rpc.suggest_gas_price)} wei")
        click.echo()

        enabled = config.test.enable if run_test is None else run_test
        test_item = None
        if enabled:
            test_item = DataItem(config.test.test_key, config.test.test_field, config.test.test_value)

        click.echo("Deploying contract...")
        report = _guard(lambda: deployer.run(test_item, use_struct=use_struct))

    _print_report(report)
    click.echo()
    click.echo("Deployment completed!")


@cli.command()
@click.option("--address", required=True, help="Deployed Storage contract address")
@click.option("--key", required=True)
@click.option("--field", "field_", required=True)
@click.option("--value", required=True)
@click.option("--struct", "use_struct", is_flag=True, help="Use the save(DataItem) overload")
@click.pass_context
def save(ctx: click.Context, address: str, key: str, field_: str, value: str, use_struct: bool) -> None:
    """Call save on a deployed contract."""
    config = _config(ctx)
    deployer = _guard(lambda: _connect(config))
    with deployer.rpc:
        outcome = _guard(lambda: deployer.exercise(address, DataItem(key, field_, value), use_struct))
    _print_exercise(outcome)
    if not outcome.succeeded:
        sys.exit(outcome.error.exit_code if outcome.error else 1)


@cli.command()
@click.option("--address", required=True, help="Deployed Storage contract address")
@click.pass_context
def read(ctx: click.Context, address: str) -> None:
    """Read data() from a deployed contract."""
    config = _config(ctx)
    deployer = _guard(lambda: _connect(config))
    with deployer.rpc:
        item = _guard(lambda: deployer.read(address))
    _label("Key:", item.key)
    _label("Field:", item.field)
    _label("Value:", item.value)


@cli.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show the signing address for the configured key."""
    config = _config(ctx)
    address = _guard(lambda: derive_address(config.ethereum.private_key or load_private_key()))
    click.echo(f"Address: {address}")


# ============ Entry Points ============


def main() -> None:
    """cstore CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
