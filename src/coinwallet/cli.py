"""
Coin Wallet CLI - derive addresses, sync the UTXO ledger and send coins.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path

import typer
from loguru import logger

from coinwallet.config import BackendType, WalletConfig, create_backend
from coinwallet.constants import GAP_LIMIT, CoinType, NetworkType
from coinwallet.errors import WalletError
from coinwallet.wallet.account import CoinAccount, Wallet
from coinwallet.wallet.bip32 import mnemonic_to_seed
from coinwallet.wallet.models import Send

app = typer.Typer(
    name="coin-wallet",
    help="HD multi-coin wallet (Bitcoin, Litecoin)",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


@dataclass
class WalletOptions:
    """Options shared by every command."""

    seed: str | None
    seed_file: Path | None
    mnemonic: str | None
    config: WalletConfig


def _load_seed(options: WalletOptions) -> bytes:
    if options.seed_file:
        if not options.seed_file.exists():
            logger.error(f"Seed file not found: {options.seed_file}")
            raise typer.Exit(1)
        options.seed = options.seed_file.read_text().strip()

    if options.seed:
        try:
            return bytes.fromhex(options.seed)
        except ValueError:
            logger.error("Seed must be hex encoded")
            raise typer.Exit(1)

    if options.mnemonic:
        return mnemonic_to_seed(options.mnemonic)

    logger.error("Seed required. Use --seed, --seed-file, --mnemonic or WALLET_SEED env var")
    raise typer.Exit(1)


def _open_account(ctx: typer.Context, with_source: bool = True) -> CoinAccount:
    options: WalletOptions = ctx.obj
    config = options.config
    seed = _load_seed(options)

    config.data_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        wallet = Wallet(seed, config.data_file)
        return wallet.coin_account(
            config.coin,
            config.network,
            config.account,
            source=create_backend(config) if with_source else None,
            fee_per_kb=config.fee_per_kb,
            gap_limit=config.gap_limit,
        )
    except (WalletError, ValueError) as e:
        logger.error(f"Failed to open wallet: {e}")
        raise typer.Exit(1)


def _parse_hex_data(hex_data: str | None) -> bytes | None:
    if hex_data is None:
        return None
    try:
        return bytes.fromhex(hex_data)
    except ValueError:
        logger.error(f"Invalid hex data: {hex_data}")
        raise typer.Exit(1)


def _parse_send(entry: str) -> Send:
    address, sep, amount = entry.partition(",")
    if not sep or not address:
        logger.error(f"Invalid payment '{entry}', expected ADDRESS,AMOUNT")
        raise typer.Exit(1)
    try:
        return Send(address=address, amount=int(amount))
    except ValueError:
        logger.error(f"Invalid amount in '{entry}'")
        raise typer.Exit(1)


def _send(ctx: typer.Context, sends: list[Send], hex_data: str | None, fee: int | None) -> None:
    aux_data = _parse_hex_data(hex_data)

    with _open_account(ctx) as account:
        try:
            account.discover()
            txid, raw_tx = account.send(sends, aux_data=aux_data, fee_per_kb=fee)
        except (WalletError, ValueError) as e:
            logger.error(f"Failed to send: {e}")
            raise typer.Exit(1)

    typer.echo(json.dumps({"txId": txid, "rawTx": raw_tx}))


@app.callback()
def main_options(
    ctx: typer.Context,
    seed: str = typer.Option(None, "--seed", envvar="WALLET_SEED", help="Hex encoded seed"),
    seed_file: Path | None = typer.Option(None, "--seed-file", "-f", help="File with hex seed"),
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    coin: CoinType = typer.Option(CoinType.BTC, "--coin", "-c", case_sensitive=False),
    testnet: bool = typer.Option(False, "--testnet", "-t", help="Use the test network"),
    account: int = typer.Option(0, "--account", "-a", min=0, help="BIP44 account index"),
    data_file: Path = typer.Option(
        Path.home() / ".coinwallet" / "wallet.lmdb", "--data-file", "-d", envvar="WALLET_DATA_FILE"
    ),
    gap_limit: int = typer.Option(GAP_LIMIT, "--gap-limit", min=1),
    backend_type: BackendType = typer.Option(
        BackendType.BITCOIND, "--backend", "-b", help="Backend: bitcoind | esplora"
    ),
    rpc_url: str = typer.Option("http://127.0.0.1:8332", "--rpc-url", envvar="WALLET_RPC_URL"),
    rpc_user: str = typer.Option("", "--rpc-user", envvar="WALLET_RPC_USER"),
    rpc_password: str = typer.Option("", "--rpc-password", envvar="WALLET_RPC_PASSWORD"),
    esplora_url: str | None = typer.Option(None, "--esplora-url", envvar="ESPLORA_URL"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Options shared by all commands."""
    setup_logging(log_level)

    if backend_type == BackendType.ESPLORA:
        backend_config = {"base_url": esplora_url} if esplora_url else {}
    else:
        backend_config = {"rpc_url": rpc_url, "rpc_user": rpc_user, "rpc_password": rpc_password}

    config = WalletConfig(
        coin=coin,
        network=NetworkType.TESTNET if testnet else NetworkType.MAINNET,
        account=account,
        data_file=data_file,
        gap_limit=gap_limit,
        backend_type=backend_type,
        backend_config=backend_config,
    )
    ctx.obj = WalletOptions(seed=seed, seed_file=seed_file, mnemonic=mnemonic, config=config)


@app.command()
def info(ctx: typer.Context) -> None:
    """Display account information."""
    with _open_account(ctx, with_source=False) as account:
        typer.echo(f"Coin:        {account.coin.value} ({account.network.value})")
        typer.echo(f"Account:     {account.account_index}")
        typer.echo(f"Identifier:  {account.identifier}")
        typer.echo(f"xpub:        {account.account_key.extended_public_key(account.params)}")
        typer.echo(f"Last index:  {account.ledger.get_last_index()}")
        typer.echo(f"Fee per kB:  {account.fee_per_kb}")


@app.command()
def newaddress(
    ctx: typer.Context,
    change: bool = typer.Option(False, "--change", help="Internal (change) chain address"),
) -> None:
    """Print the next unused receive address."""
    with _open_account(ctx, with_source=False) as account:
        address = account.new_change_address() if change else account.new_external_address()
    typer.echo(address)


@app.command()
def sync(ctx: typer.Context) -> None:
    """Scan the blockchain for used addresses and refresh the UTXO ledger."""
    with _open_account(ctx) as account:
        try:
            result = account.discover()
        except WalletError as e:
            logger.error(f"Failed to sync: {e}")
            raise typer.Exit(1)

        balance = account.get_balance()

    typer.echo(f"Used addresses: {len(result.used_addresses)}")
    typer.echo(f"Last index:     {result.last_index}")
    typer.echo(f"Balance:        {balance:,}")


@app.command()
def balance(
    ctx: typer.Context,
    sync_first: bool = typer.Option(False, "--sync", "-s", help="Sync before reporting"),
) -> None:
    """Print the balance of the stored UTXO set in minor units."""
    with _open_account(ctx, with_source=sync_first) as account:
        if sync_first:
            try:
                account.discover()
            except WalletError as e:
                logger.error(f"Failed to sync: {e}")
                raise typer.Exit(1)
        total = account.get_balance()
    typer.echo(str(total))


@app.command()
def send(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Recipient address"),
    amount: int = typer.Argument(..., min=0, help="Amount in minor units"),
    hex_data: str = typer.Option(None, "--hex-data", help="OP_RETURN payload (hex)"),
    fee: int = typer.Option(None, "--fee", min=0, help="Fee rate per kB (minor units)"),
) -> None:
    """Send coins to one address."""
    _send(ctx, [Send(address=address, amount=amount)], hex_data, fee)


@app.command()
def sendmany(
    ctx: typer.Context,
    payments: list[str] = typer.Argument(..., help="ADDRESS,AMOUNT pairs"),
    hex_data: str = typer.Option(None, "--hex-data", help="OP_RETURN payload (hex)"),
    fee: int = typer.Option(None, "--fee", min=0, help="Fee rate per kB (minor units)"),
) -> None:
    """Send coins to several addresses in one transaction."""
    _send(ctx, [_parse_send(entry) for entry in payments], hex_data, fee)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
