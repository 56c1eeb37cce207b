#!/usr/bin/env python3
"""Simple CLI for trying swapbridge locally"""

import argparse
import asyncio
from typing import Optional, Union

from swapbridge.config import settings
from swapbridge.core.quotes.engine import QuoteSnapshot
from swapbridge.core.quotes.models import AssetRef, QuoteParams
from swapbridge.logging_config import setup_logging
from swapbridge.providers import ChangeNowProvider, LiFiProvider
from swapbridge.runtime import SwapBridgeRuntime


def parse_chain(value: str) -> Union[int, str]:
    return int(value) if value.isdigit() else value.lower()


def print_snapshot(snapshot: QuoteSnapshot) -> None:
    """Pretty print a quote snapshot"""
    print(f"\nStatus: {snapshot.status.value}")
    print("=" * 50)

    if snapshot.invalid_reason:
        print(f"⚠️  {snapshot.invalid_reason}")
        return

    if snapshot.error:
        print(f"❌ {snapshot.error}")
        if snapshot.minimum_amount:
            print(f"   Minimum amount: {snapshot.minimum_amount}")
        return

    quote = snapshot.quote
    if quote is None:
        print("No quote available")
        return

    print(f"Provider: {quote.provider_name}{f' ({quote.tool})' if quote.tool else ''}")
    print(f"You receive: {snapshot.formatted_output_amount} {quote.to_asset.symbol}")
    print(f"Minimum received: {quote.to_amount_min} (base units)")
    if snapshot.exchange_rate is not None:
        print(f"Rate: 1 {quote.from_asset.symbol} = {snapshot.exchange_rate:.6f} {quote.to_asset.symbol}")
    if snapshot.estimated_minutes is not None:
        print(f"Estimated time: ~{snapshot.estimated_minutes} min")
    if quote.fee_usd is not None:
        print(f"Fees: ${quote.fee_usd:,.2f}")


async def cli_quote(args: argparse.Namespace) -> None:
    """CLI command to fetch a quote"""
    params = QuoteParams(
        source_chain=parse_chain(args.from_chain),
        dest_chain=parse_chain(args.to_chain),
        source_asset=AssetRef(parse_chain(args.from_chain), args.from_token, args.from_symbol, args.from_decimals),
        dest_asset=AssetRef(parse_chain(args.to_chain), args.to_token, args.to_symbol, args.to_decimals),
        amount=args.amount,
        sender_address=args.sender,
        slippage_bps=args.slippage_bps,
    )

    runtime = SwapBridgeRuntime()
    await runtime.start()
    try:
        engine = runtime.new_quote_engine(debounce_seconds=0)
        print(f"🔍 Fetching quote from {', '.join(p.name for p in runtime.providers) or 'no providers'}...")
        engine.update(params)
        snapshot = await engine.wait_until_resolved(timeout=args.timeout)
        print_snapshot(snapshot)
    except asyncio.TimeoutError:
        print("❌ Timed out waiting for a quote")
    finally:
        await runtime.stop()


async def cli_status(args: argparse.Namespace) -> None:
    """CLI command to check a bridge transaction"""
    provider = ChangeNowProvider() if args.provider == "changenow" else LiFiProvider()
    result = await provider.get_status(
        args.tx_hash,
        parse_chain(args.from_chain),
        parse_chain(args.to_chain),
        provider_hint=args.bridge,
    )
    print(f"\nStatus: {result.status.value}")
    if result.substatus:
        print(f"Substatus: {result.substatus}")
    if result.dest_tx_hash:
        print(f"Destination tx: {result.dest_tx_hash}")
    if result.dest_amount:
        print(f"Received: {result.dest_amount}")


async def cli_history(owner: str, clear: bool = False) -> None:
    """CLI command to list stored bridge transactions"""
    if not settings.persistent_history:
        print("⚠️  TRANSACTIONS_DIR is not set; history is only kept in memory by the server")

    runtime = SwapBridgeRuntime()
    await runtime.store.set_active_account(owner)

    if clear:
        removed = await runtime.store.clear_history()
        print(f"🧹 Removed {removed} finished transactions")

    transactions = runtime.store.list()
    print(f"\nBridge history for {owner.lower()} ({runtime.store.pending_count} pending)")
    print("=" * 50)
    if not transactions:
        print("No transactions")
        return

    for i, tx in enumerate(transactions, 1):
        print(
            f"{i:2d}. {tx.created_at:%Y-%m-%d %H:%M} {tx.state.value:<18} "
            f"{tx.source_asset.symbol} {tx.source_chain} -> {tx.dest_chain} via {tx.provider_name}"
        )
        if tx.source_tx_hash:
            print(f"    source: {tx.source_tx_hash}")
        if tx.dest_tx_hash:
            print(f"    dest:   {tx.dest_tx_hash}")
        if tx.error:
            print(f"    error:  {tx.error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SwapBridge CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    quote_parser = subparsers.add_parser("quote", help="Get the best quote across providers")
    quote_parser.add_argument("--from-chain", required=True, help="Source chain id (or 'solana')")
    quote_parser.add_argument("--to-chain", required=True, help="Destination chain id (or 'solana')")
    quote_parser.add_argument("--from-token", required=True, help="Source token address")
    quote_parser.add_argument("--to-token", required=True, help="Destination token address")
    quote_parser.add_argument("--amount", required=True, help="Human-readable amount, e.g. 100")
    quote_parser.add_argument("--from-symbol", default="", help="Source token symbol")
    quote_parser.add_argument("--to-symbol", default="", help="Destination token symbol")
    quote_parser.add_argument("--from-decimals", type=int, default=18, help="Source token decimals")
    quote_parser.add_argument("--to-decimals", type=int, default=18, help="Destination token decimals")
    quote_parser.add_argument("--sender", default=None, help="Sender wallet address")
    quote_parser.add_argument("--slippage-bps", type=int, default=50, help="Slippage in basis points")
    quote_parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for a result")

    status_parser = subparsers.add_parser("status", help="Check a bridge transaction with a status provider")
    status_parser.add_argument("tx_hash", help="Source transaction hash (ChangeNow: exchange id)")
    status_parser.add_argument("--from-chain", required=True, help="Source chain id")
    status_parser.add_argument("--to-chain", required=True, help="Destination chain id")
    status_parser.add_argument("--provider", choices=["lifi", "changenow"], default="lifi")
    status_parser.add_argument("--bridge", default=None, help="Bridge tool hint (e.g. stargate)")

    history_parser = subparsers.add_parser("history", help="List stored bridge transactions")
    history_parser.add_argument("owner", help="Wallet address")
    history_parser.add_argument("--clear", action="store_true", help="Remove finished transactions first")

    return parser


async def main(argv: Optional[list] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level or "WARNING")
    command = args.command.lower()

    if command == "quote":
        await cli_quote(args)

    elif command == "status":
        await cli_status(args)

    elif command == "history":
        await cli_history(args.owner, args.clear)

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()


if __name__ == "__main__":
    asyncio.run(main())
