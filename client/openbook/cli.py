"""
Command line access to OpenBook v1 and v2 markets

Usage:
    # Place a bid worth 5 quote tokens at 2.1
    openbook v1 place -t 5.0 -s bid -b 0 -e -p 2.1

    # Take up to 3 quote tokens of asks priced at most 2.2
    openbook v2 market -t 3.0 -s bid -p 2.2 -e

    # Cancel every resting order, then settle
    openbook v1 cancel -e
    openbook v1 settle -e

    # Market, book and balances
    openbook v2 info

Configuration comes from the environment (or a .env file): RPC_URL, KEY_PATH,
OOS_KEY and INDEX_KEY.
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv
from loguru import logger

from openbook.client import OBClient, create_client
from openbook.config import ClientConfig
from openbook.errors import OpenBookError
from openbook.markets import DEFAULT_V1_MARKET, DEFAULT_V2_MARKET
from openbook.orderbook import Side

LOG_LEVELS = {0: "INFO", 1: "DEBUG"}

# commands that act through the signer's open orders account
TRADING_COMMANDS = {
    "place",
    "market",
    "cancel",
    "settle",
    "cancel-settle-place",
    "cancel-settle-place-bid",
    "cancel-settle-place-ask",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openbook", description="Trade on OpenBook v1 and v2 markets"
    )
    parser.add_argument("-d", "--debug", action="count", default=0, help="More logging, repeatable")
    versions = parser.add_subparsers(dest="version", required=True)

    for version, default_market in (("v1", DEFAULT_V1_MARKET), ("v2", DEFAULT_V2_MARKET)):
        sub = versions.add_parser(version, help=f"OpenBook {version} market")
        sub.add_argument("-m", "--market-id", default=default_market, help="Market address")
        commands = sub.add_subparsers(dest="command", required=True)

        place = commands.add_parser("place", help="Place a post only limit order")
        place.add_argument("-t", "--target-notional", type=float, required=True)
        place.add_argument("-s", "--side", type=Side.from_str, required=True, help="bid or ask")
        place.add_argument("-b", "--best-offset", type=float, default=0.0)
        place.add_argument("-e", "--execute", action="store_true", help="Send instead of printing")
        place.add_argument("-p", "--price", type=float, default=None)

        market = commands.add_parser("market", help="Place an immediate or cancel order")
        market.add_argument("-t", "--target-notional", type=float, required=True)
        market.add_argument("-s", "--side", type=Side.from_str, required=True, help="bid or ask")
        market.add_argument("-p", "--limit-price", type=float, required=True)
        market.add_argument("-e", "--execute", action="store_true", help="Send instead of printing")

        for name, help_text in (("cancel", "Cancel all resting orders"), ("settle", "Settle free balances")):
            cmd = commands.add_parser(name, help=help_text)
            cmd.add_argument("-e", "--execute", action="store_true", help="Send instead of printing")

        csp = commands.add_parser("cancel-settle-place", help="Cancel, settle and quote both sides")
        csp.add_argument("-u", "--ask-notional", type=float, required=True)
        csp.add_argument("-t", "--bid-notional", type=float, required=True)
        csp.add_argument("-p", "--bid-price", type=float, required=True)
        csp.add_argument("-a", "--ask-price", type=float, required=True)

        cspb = commands.add_parser("cancel-settle-place-bid", help="Cancel, settle and bid")
        cspb.add_argument("-t", "--bid-notional", type=float, required=True)
        cspb.add_argument("-b", "--bid-price", type=float, required=True)

        cspa = commands.add_parser("cancel-settle-place-ask", help="Cancel, settle and offer")
        cspa.add_argument("-t", "--ask-notional", type=float, required=True)
        cspa.add_argument("-a", "--ask-price", type=float, required=True)

        commands.add_parser("cancel-settle", help="Cancel all resting orders and settle")

        for name in ("match", "consume", "consume-permissioned"):
            cmd = commands.add_parser(name, help=f"{name.replace('-', ' ').capitalize()} crank")
            cmd.add_argument("-l", "--limit", type=int, required=True)

        commands.add_parser("load", help="Resting order ids of the signer")
        commands.add_parser("find", help="Open orders accounts of the signer")
        commands.add_parser("info", help="Market, book and balances")

    return parser


def configure_logging(verbosity: int):
    logger.remove()
    logger.add(sys.stderr, level=LOG_LEVELS.get(verbosity, "TRACE"))


async def dispatch(client: OBClient, args: argparse.Namespace):
    command = args.command
    if command == "place":
        return await client.place_limit_order(
            args.target_notional, args.side, args.best_offset, args.execute, args.price
        )
    if command == "market":
        return await client.place_market_order(args.target_notional, args.side, args.limit_price, args.execute)
    if command == "cancel":
        return await client.cancel_orders(args.execute)
    if command == "settle":
        return await client.settle_balance(args.execute)
    if command == "cancel-settle-place":
        return await client.cancel_settle_place(
            args.ask_notional, args.bid_notional, args.bid_price, args.ask_price
        )
    if command == "cancel-settle-place-bid":
        return await client.cancel_settle_place_bid(args.bid_notional, args.bid_price)
    if command == "cancel-settle-place-ask":
        return await client.cancel_settle_place_ask(args.ask_notional, args.ask_price)
    if command == "cancel-settle":
        return await client.cancel_settle()
    if command == "match":
        return await client.match_orders(args.limit)
    if command == "consume":
        return await client.consume_events([client.open_orders_address], args.limit)
    if command == "consume-permissioned":
        return await client.consume_events_permissioned([client.open_orders_address], args.limit)
    if command == "load":
        return await client.load_orders_for_owner()
    if command == "find":
        return [account.address for account in await client.find_open_orders_accounts(force=True)]
    if command == "info":
        return await info(client)
    raise ValueError(f"Unknown command {command}")


async def info(client: OBClient) -> str:
    view = await client.refresh(force=True)
    market = client.market
    base, quote = await client.get_token_balances()
    oo_base, oo_quote = await client.open_orders_balances()
    lines = [
        f"market:       {market.address} ({market.name or 'v' + str(market.version)})",
        f"program:      {market.program_id}",
        f"base mint:    {market.base_mint} ({market.base_decimals} decimals, lot {market.base_lot_size})",
        f"quote mint:   {market.quote_mint} ({market.quote_decimals} decimals, lot {market.quote_lot_size})",
        f"open orders:  {client.open_orders_address}",
        f"best bid:     {view.highest_bid}",
        f"best ask:     {view.lowest_ask}",
        f"own orders:   {len(view.orders)}",
        f"wallet:       base {base} quote {quote}",
        f"open orders balances: base {oo_base} quote {oo_quote}",
        "bids:",
        str(view.bid_book.order_bookify(market.converter, group=True).head(10)),
        "asks:",
        str(view.ask_book.order_bookify(market.converter, group=True).head(10)),
    ]
    return "\n".join(lines)


async def run(args: argparse.Namespace, config: Optional[ClientConfig] = None) -> int:
    config = config or ClientConfig.from_env()
    client = await create_client(
        config.commitment,
        args.market_id,
        create_accounts=args.command in TRADING_COMMANDS,
        cache_duration=config.cache_duration,
        config=config,
    )
    async with client:
        try:
            result = await dispatch(client, args)
        except OpenBookError as e:
            logger.error("{} failed: {}", args.command, e)
            return 1
    print(result)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.debug)
    try:
        return asyncio.run(run(args))
    except OpenBookError as e:
        logger.error("{}", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
