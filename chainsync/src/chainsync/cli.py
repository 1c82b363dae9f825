"""
chainsync command line interface.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer
from loguru import logger

from chainsync.address import InvalidAddressError, address_to_scripthash
from chainsync.cli_common import setup_cli
from chainsync.faucet import FaucetClient, FaucetError, FaucetResult
from chainsync.funding import FundingError
from chainsync.models import FundingStatus, Utxo
from chainsync.network import ConnectionFailure, ElectrumError
from chainsync.service import ChainSyncService
from chainsync.settings import ChainSyncSettings, ensure_config_file

app = typer.Typer(
    name="chainsync",
    help="Bitcoin Cash UTXO sync over Electrum",
    add_completion=False,
)

NetworkOption = Annotated[
    str | None,
    typer.Option("--network", "-n", help="mainnet, chipnet, testnet4 or regtest"),
]
ServerOption = Annotated[
    str | None, typer.Option("--server", "-s", help="Electrum server host:port")
]
TlsOption = Annotated[
    bool | None, typer.Option("--tls/--no-tls", help="Use TLS for the Electrum connection")
]
LogLevelOption = Annotated[
    str | None, typer.Option("--log-level", "-l", help="TRACE, DEBUG, INFO, WARNING, ERROR")
]


def main() -> None:
    """Entry point for the ``chainsync`` console script."""
    app()


def _format_utxo(utxo: Utxo) -> str:
    state = f"height {utxo.height}" if utxo.is_confirmed else "unconfirmed"
    return f"  {utxo.outpoint}  {utxo.value:>14,} sats  ({state})"


def _print_status(status: FundingStatus) -> None:
    line = (
        f"[{status.status.value}] {status.total_value:,} sats "
        f"({status.confirmed_value:,} confirmed, {status.unconfirmed_value:,} unconfirmed)"
    )
    if status.error:
        line += f" - {status.error}"
    typer.echo(line)


def _build_service(settings: ChainSyncSettings) -> ChainSyncService:
    return ChainSyncService.from_settings(settings)


@app.command()
def digest(
    address: Annotated[str, typer.Argument(help="CashAddr or legacy address")],
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Print the Electrum script hash of an address."""
    settings = setup_cli(log_level, network=network)
    try:
        typer.echo(address_to_scripthash(address, settings.network_config.network))
    except InvalidAddressError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


@app.command()
def utxos(
    address: Annotated[str, typer.Argument(help="Address to query")],
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON")] = False,
    network: NetworkOption = None,
    server: ServerOption = None,
    tls: TlsOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """List the unspent outputs of an address."""
    settings = setup_cli(log_level, network=network, server=server, tls=tls)

    async def _run() -> list[Utxo]:
        async with _build_service(settings) as service:
            return await service.fetch_utxos(address)

    try:
        result = asyncio.run(_run())
    except (InvalidAddressError, ConnectionFailure, ElectrumError) as e:
        logger.error(f"UTXO query failed: {e}")
        raise typer.Exit(1) from e

    if as_json:
        typer.echo(json.dumps([u.model_dump() for u in result], indent=2))
        return
    typer.echo(f"{len(result)} UTXO(s), {sum(u.value for u in result):,} sats")
    for utxo in result:
        typer.echo(_format_utxo(utxo))


@app.command()
def balance(
    address: Annotated[str, typer.Argument(help="Address to query")],
    network: NetworkOption = None,
    server: ServerOption = None,
    tls: TlsOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Print the total unspent value of an address in sats."""
    settings = setup_cli(log_level, network=network, server=server, tls=tls)

    async def _run() -> int:
        async with _build_service(settings) as service:
            return await service.fetch_balance(address)

    try:
        typer.echo(asyncio.run(_run()))
    except (InvalidAddressError, ConnectionFailure, ElectrumError) as e:
        logger.error(f"Balance query failed: {e}")
        raise typer.Exit(1) from e


@app.command()
def watch(
    address: Annotated[str, typer.Argument(help="Address to watch")],
    duration: Annotated[
        float | None, typer.Option("--duration", "-d", help="Stop after N seconds")
    ] = None,
    network: NetworkOption = None,
    server: ServerOption = None,
    tls: TlsOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Print the UTXO set every time the address changes on chain."""
    settings = setup_cli(log_level, network=network, server=server, tls=tls)

    def on_update(result: list[Utxo]) -> None:
        typer.echo(f"{len(result)} UTXO(s), {sum(u.value for u in result):,} sats")
        for utxo in result:
            typer.echo(_format_utxo(utxo))

    async def _run() -> None:
        async with _build_service(settings) as service:
            unsubscribe = await service.subscribe_to_address(address, on_update)
            try:
                if duration is None:
                    await asyncio.Event().wait()
                else:
                    await asyncio.sleep(duration)
            finally:
                unsubscribe()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("Stopped")
    except (InvalidAddressError, ConnectionFailure, ElectrumError) as e:
        logger.error(f"Subscription failed: {e}")
        raise typer.Exit(1) from e


@app.command()
def fund(
    address: Annotated[str, typer.Argument(help="Address expected to receive funds")],
    amount: Annotated[int, typer.Option("--amount", "-a", help="Required amount in sats")],
    timeout: Annotated[
        float | None, typer.Option("--timeout", "-t", help="Give up after N seconds")
    ] = None,
    require_confirmed: Annotated[
        bool,
        typer.Option(
            "--require-confirmed",
            help="Only count confirmed outputs (ignore 0-conf)",
        ),
    ] = False,
    network: NetworkOption = None,
    server: ServerOption = None,
    tls: TlsOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Wait until an address has received at least AMOUNT sats."""
    settings = setup_cli(log_level, network=network, server=server, tls=tls)

    async def _run() -> str | None:
        async with _build_service(settings) as service:
            if require_confirmed:
                service.accept_unconfirmed = False
            typer.echo(f"Payment request: {service.payment_uri(address, amount)}")
            status = await service.poll_for_funding(address, amount, _print_status, timeout)
            return service.get_explorer_link(status.txid) if status.txid else None

    try:
        link = asyncio.run(_run())
    except FundingError as e:
        logger.error(f"Funding not received: {e}")
        raise typer.Exit(2) from e

    typer.echo(f"Funded: {link}" if link else "Funded")


@app.command()
def faucet(
    address: Annotated[str, typer.Argument(help="P2PKH testnet address")],
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Ask the testnet faucet to send coins to ADDRESS."""
    settings = setup_cli(log_level, network=network)

    async def _run() -> FaucetResult:
        client = FaucetClient(
            url=settings.faucet.url,
            network=settings.network_config.network,
            timeout=settings.faucet.timeout,
        )
        try:
            return await client.request_funds(address)
        finally:
            await client.close()

    try:
        result = asyncio.run(_run())
    except FaucetError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e

    if not result.success:
        logger.error(f"Funding failed: {result.error}")
        raise typer.Exit(1)
    typer.echo(f"Faucet transaction: {result.txid}" if result.txid else "Funds requested")


@app.command()
def explorer(
    value: Annotated[str, typer.Argument(help="Address or transaction id")],
    network: NetworkOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Print the block explorer link for an address or txid."""
    settings = setup_cli(log_level, network=network)
    # No connection is opened until a query runs
    service = _build_service(settings)
    typer.echo(service.get_explorer_link(value))


@app.command("config-init")
def config_init() -> None:
    """Write a commented config template if none exists."""
    created, path = ensure_config_file()
    typer.echo(f"{'Created' if created else 'Config already exists at'} {path}")


if __name__ == "__main__":
    main()
