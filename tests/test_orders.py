from decimal import Decimal

import pytest

from openbook.errors import InvalidPrice, InvalidSize
from openbook.orderbook import OrderType, Side
from openbook.orders import BestQuotes, OrderIntentCompiler
from openbook.units import I64_MAX, LotConverter

BEST = BestQuotes(highest_bid=Decimal("150"), lowest_ask=Decimal("151"))


def _compiler(**kwargs):
    converter = LotConverter(base_decimals=9, quote_decimals=6, base_lot_size=100_000_000, quote_lot_size=100)
    return OrderIntentCompiler(converter, expiry_horizon=30, clock=lambda: 1_000, **kwargs)


def test_bid_at_best_with_fee_buffer():
    intent = _compiler().compile(Side.BID, 100, BEST)

    assert intent.price == Decimal("150")
    assert intent.price_lots == 150_000
    assert intent.base_lots == 6
    # 6 * 150000 * 1.1
    assert intent.max_quote_lots_including_fees == 990_000
    assert intent.max_native_quote_including_fees == 99_000_000
    assert intent.expiry_timestamp == 1_030
    assert intent.order_type == OrderType.POST_ONLY
    assert 0 <= intent.client_order_id < 2 ** 64


def test_offset_moves_away_from_the_touch():
    compiler = _compiler()
    assert compiler.compile(Side.BID, 100, BEST, offset="0.5").price == Decimal("149.5")
    assert compiler.compile(Side.ASK, 100, BEST, offset="0.5").price == Decimal("151.5")


def test_target_price_wins_over_offset():
    intent = _compiler().compile(Side.ASK, 100, BEST, offset=3, target_price=200)
    assert intent.price == Decimal("200")
    assert intent.price_lots == 200_000
    assert intent.base_lots == 5


def test_tiny_notional_compiles_to_nothing():
    assert _compiler().compile(Side.BID, 1, BEST) is None


def test_custom_fee_buffer():
    intent = _compiler(fee_buffer=1.0).compile(Side.BID, 100, BEST)
    assert intent.max_quote_lots_including_fees == 900_000


@pytest.mark.parametrize(
    "side,best,offset",
    [
        (Side.BID, BestQuotes(), 0),
        (Side.ASK, BestQuotes(), 0),
        (Side.BID, BEST, 200),
    ],
)
def test_non_positive_price_rejected(side, best, offset):
    with pytest.raises(InvalidPrice):
        _compiler().compile(side, 100, best, offset)


def test_price_below_one_lot_rejected():
    with pytest.raises(InvalidPrice):
        _compiler().compile(Side.BID, 1_000_000, BEST, target_price="0.0001")


def test_order_type_override():
    compiler = _compiler()
    intent = compiler.compile(Side.BID, 100, BEST, order_type=OrderType.IMMEDIATE_OR_CANCEL)
    assert intent.order_type == OrderType.IMMEDIATE_OR_CANCEL
    assert compiler.compile(Side.BID, 100, BEST).order_type == OrderType.POST_ONLY


def test_oversized_order_on_signed_fields_rejected():
    converter = LotConverter(
        base_decimals=9, quote_decimals=6, base_lot_size=1_000_000, quote_lot_size=1, max_price_lots=I64_MAX
    )
    compiler = OrderIntentCompiler(converter, expiry_horizon=30, clock=lambda: 1_000)

    with pytest.raises(InvalidSize, match="Quote lots"):
        compiler.compile(Side.BID, 10 ** 15, BestQuotes(), target_price=150)


def test_native_quote_overflow_rejected():
    # lots still fit, the native amount does not
    with pytest.raises(InvalidSize, match="Native quote"):
        _compiler().compile(Side.BID, 2 * 10 ** 13, BEST)


def test_base_lots_overflow_rejected():
    with pytest.raises(InvalidSize, match="Base lots"):
        _compiler(max_quantity=1_000).compile(Side.ASK, 10 ** 6, BEST)


def test_largest_fitting_order_compiles():
    intent = _compiler().compile(Side.BID, 10 ** 13, BEST)
    assert intent.max_native_quote_including_fees <= 2 ** 64 - 1
