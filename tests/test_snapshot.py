from decimal import Decimal

import pytest

from factories import account, key, leaf, mint, v1_market, v1_open_orders, v1_slab, v2_book_side, v2_market, v2_open_orders
from openbook.errors import DecodeError, MissingAccount, OwnershipMismatch
from openbook.orderbook import Side
from openbook.program_ids import OPENBOOK_V2_PROGRAM_ID, SRM_PROGRAM_ID, SYSTEM_PROGRAM_ID
from openbook.snapshot import MarketSnapshotBuilder
from openbook.v1.protocol import V1Protocol
from openbook.v2.protocol import V2Protocol

MARKET = key(5)
OPEN_ORDERS = key(6)
OTHER = key(7)


def _v1_market(fetcher, bids=(), asks=()):
    fetcher.add(account(MARKET, SRM_PROGRAM_ID, v1_market(MARKET, SRM_PROGRAM_ID)))
    fetcher.add(account(key(10), SYSTEM_PROGRAM_ID, mint(9)))
    fetcher.add(account(key(11), SYSTEM_PROGRAM_ID, mint(6)))
    fetcher.add(account(key(16), SRM_PROGRAM_ID, v1_slab(Side.BID, list(bids))))
    fetcher.add(account(key(17), SRM_PROGRAM_ID, v1_slab(Side.ASK, list(asks))))
    return V1Protocol(SRM_PROGRAM_ID)


@pytest.mark.asyncio
async def test_v1_market_loads_decimals(fetcher):
    protocol = _v1_market(fetcher)
    market = await protocol.load_market(fetcher, MARKET)

    assert market.base_decimals == 9
    assert market.quote_decimals == 6
    assert market.bids == key(16)
    assert market.request_queue == key(14)
    assert market.converter.price_lots_to_native(150_000) == Decimal("150")


@pytest.mark.asyncio
async def test_v1_market_own_address_checked_before_mints(fetcher):
    fetcher.add(account(MARKET, SRM_PROGRAM_ID, v1_market(OTHER, SRM_PROGRAM_ID)))

    with pytest.raises(OwnershipMismatch):
        await V1Protocol(SRM_PROGRAM_ID).load_market(fetcher, MARKET)
    assert fetcher.requested == [MARKET]


@pytest.mark.asyncio
async def test_v1_market_wrong_program(fetcher):
    fetcher.add(account(MARKET, OPENBOOK_V2_PROGRAM_ID, v1_market(MARKET, SRM_PROGRAM_ID)))
    with pytest.raises(OwnershipMismatch):
        await V1Protocol(SRM_PROGRAM_ID).load_market(fetcher, MARKET)


@pytest.mark.asyncio
async def test_v1_market_not_a_market(fetcher):
    fetcher.add(account(MARKET, SRM_PROGRAM_ID, v1_market(MARKET, SRM_PROGRAM_ID, account_flags=1)))
    with pytest.raises(DecodeError):
        await V1Protocol(SRM_PROGRAM_ID).load_market(fetcher, MARKET)


@pytest.mark.asyncio
async def test_snapshot_best_prices_and_owned_orders(fetcher):
    bids = [leaf(149_000, 1, OTHER, 5), leaf(150_000, 2, OPEN_ORDERS, 3, client_order_id=77)]
    asks = [leaf(151_000, 3, OTHER, 4), leaf(152_500, 4, OPEN_ORDERS, 2)]
    protocol = _v1_market(fetcher, bids, asks)
    market = await protocol.load_market(fetcher, MARKET)
    fetcher.add(
        account(
            OPEN_ORDERS,
            SRM_PROGRAM_ID,
            v1_open_orders(
                MARKET,
                key(1),
                [((150_000 << 64) | 2, 77, Side.BID), ((152_500 << 64) | 4, 0, Side.ASK)],
                base_token_free=1_000,
                base_token_total=3_000,
            ),
        )
    )

    view = await MarketSnapshotBuilder(protocol, fetcher).refresh(market, OPEN_ORDERS)

    assert view.highest_bid == Decimal("150")
    assert view.lowest_ask == Decimal("151")
    assert view.best_bid_lots == 150_000
    assert [o.client_order_id for o in view.bids] == [77]
    assert [o.price for o in view.asks] == [Decimal("152.5")]
    assert len(view.orders) == 2
    assert view.account.base_locked == 2_000
    assert {o.side for o in view.account.orders} == {Side.BID, Side.ASK}


@pytest.mark.asyncio
async def test_snapshot_empty_book_reports_zero(fetcher):
    protocol = _v1_market(fetcher)
    market = await protocol.load_market(fetcher, MARKET)

    view = await MarketSnapshotBuilder(protocol, fetcher).refresh(market, None)

    assert view.highest_bid == 0
    assert view.lowest_ask == 0
    assert view.orders == []
    assert view.account is None


@pytest.mark.asyncio
async def test_snapshot_checks_owner_before_reading_books(fetcher):
    protocol = _v1_market(fetcher)
    market = await protocol.load_market(fetcher, MARKET)
    fetcher.add(account(MARKET, SYSTEM_PROGRAM_ID, v1_market(MARKET, SRM_PROGRAM_ID)))
    fetcher.requested.clear()

    with pytest.raises(OwnershipMismatch):
        await MarketSnapshotBuilder(protocol, fetcher).refresh(market, OPEN_ORDERS)
    assert fetcher.requested == [MARKET]


@pytest.mark.asyncio
async def test_snapshot_missing_book(fetcher):
    protocol = _v1_market(fetcher)
    market = await protocol.load_market(fetcher, MARKET)
    del fetcher.accounts[key(17)]

    with pytest.raises(MissingAccount):
        await MarketSnapshotBuilder(protocol, fetcher).refresh(market, None)


@pytest.mark.asyncio
async def test_v2_snapshot(fetcher):
    owner = key(1)
    fetcher.add(account(MARKET, OPENBOOK_V2_PROGRAM_ID, v2_market()))
    fetcher.add(account(key(22), OPENBOOK_V2_PROGRAM_ID, v2_book_side(Side.BID, [leaf(149, 1, OPEN_ORDERS, 8)])))
    fetcher.add(account(key(23), OPENBOOK_V2_PROGRAM_ID, v2_book_side(Side.ASK, [])))
    fetcher.add(
        account(
            OPEN_ORDERS,
            OPENBOOK_V2_PROGRAM_ID,
            v2_open_orders(MARKET, owner, [((149 << 64) | 1, 5, Side.BID)], bids_quote_lots=1_192, quote_free_native=10),
        )
    )
    protocol = V2Protocol(OPENBOOK_V2_PROGRAM_ID)
    market = await protocol.load_market(fetcher, MARKET)

    assert market.name == "SOL-USDC"
    assert market.open_orders_admin is None
    assert market.authority == key(20)

    view = await MarketSnapshotBuilder(protocol, fetcher).refresh(market, OPEN_ORDERS)

    # 149 lots * 1 quote lot * 1e9 / (1e6 base lot * 1e6)
    assert view.highest_bid == Decimal("0.149")
    assert view.lowest_ask == 0
    assert [o.quantity for o in view.bids] == [8]
    assert view.account.quote_locked == 1_192
    assert view.account.quote_total == 1_202
    assert view.account.name == "random"
    assert [o.client_order_id for o in view.account.orders] == [5]
