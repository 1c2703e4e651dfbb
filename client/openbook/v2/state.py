from construct import Array, Bytes, Const, Float64l, Int8ul, Int16ul, Int32ul, Int64sl, Int64ul, Padding, Struct

from openbook.errors import DecodeError
from openbook.orderbook import InnerNode, OrderNode, OrderTree, Side
from openbook.utils.layouts import PUBLIC_KEY, U128, parse
from openbook.utils.solana import account_discriminator

MARKET_DISCRIMINATOR = account_discriminator("Market")
BOOK_SIDE_DISCRIMINATOR = account_discriminator("BookSide")
OPEN_ORDERS_ACCOUNT_DISCRIMINATOR = account_discriminator("OpenOrdersAccount")

MAX_ORDERTREE_NODES = 1024
MAX_OPEN_ORDERS = 24
NODE_SIZE = 88

ORACLE_CONFIG_LAYOUT = Struct(
    "conf_filter" / Float64l,
    "max_staleness_slots" / Int64sl,
    Padding(72),
)

MARKET_LAYOUT = Struct(
    Const(MARKET_DISCRIMINATOR),
    "bump" / Int8ul,
    "base_decimals" / Int8ul,
    "quote_decimals" / Int8ul,
    Padding(5),
    "market_authority" / PUBLIC_KEY,
    "time_expiry" / Int64sl,
    "collect_fee_admin" / PUBLIC_KEY,
    "open_orders_admin" / PUBLIC_KEY,
    "consume_events_admin" / PUBLIC_KEY,
    "close_market_admin" / PUBLIC_KEY,
    "name" / Bytes(16),
    "bids" / PUBLIC_KEY,
    "asks" / PUBLIC_KEY,
    "event_heap" / PUBLIC_KEY,
    "oracle_a" / PUBLIC_KEY,
    "oracle_b" / PUBLIC_KEY,
    "oracle_config" / ORACLE_CONFIG_LAYOUT,
    "quote_lot_size" / Int64sl,
    "base_lot_size" / Int64sl,
    "seq_num" / Int64ul,
    "registration_time" / Int64sl,
    "maker_fee" / Int64sl,
    "taker_fee" / Int64sl,
    "fees_accrued" / U128,
    "fees_to_referrers" / U128,
    "referrer_rebates_accrued" / Int64ul,
    "fees_available" / Int64ul,
    "maker_volume" / U128,
    "taker_volume_wo_oo" / U128,
    "base_mint" / PUBLIC_KEY,
    "quote_mint" / PUBLIC_KEY,
    "market_base_vault" / PUBLIC_KEY,
    "base_deposit_total" / Int64ul,
    "market_quote_vault" / PUBLIC_KEY,
    "quote_deposit_total" / Int64ul,
    Padding(128),
)
MARKET_SIZE = MARKET_LAYOUT.sizeof()

ORDER_TREE_ROOT_LAYOUT = Struct(
    "maybe_node" / Int32ul,
    "leaf_count" / Int32ul,
)

BOOK_SIDE_HEADER_LAYOUT = Struct(
    Const(BOOK_SIDE_DISCRIMINATOR),
    "roots" / Array(2, ORDER_TREE_ROOT_LAYOUT),
    Padding(4 * ORDER_TREE_ROOT_LAYOUT.sizeof()),
    Padding(256),
    "order_tree_type" / Int8ul,
    Padding(3),
    "bump_index" / Int32ul,
    "free_list_len" / Int32ul,
    "free_list_head" / Int32ul,
    Padding(512),
)
BOOK_SIDE_HEADER_SIZE = BOOK_SIDE_HEADER_LAYOUT.sizeof()
BOOK_SIDE_SIZE = BOOK_SIDE_HEADER_SIZE + MAX_ORDERTREE_NODES * NODE_SIZE

INNER_NODE_LAYOUT = Struct(
    "tag" / Int8ul,
    Padding(3),
    "prefix_len" / Int32ul,
    "key" / U128,
    "children" / Array(2, Int32ul),
    "child_earliest_expiry" / Array(2, Int64ul),
    Padding(40),
)

LEAF_NODE_LAYOUT = Struct(
    "tag" / Int8ul,
    "owner_slot" / Int8ul,
    "time_in_force" / Int16ul,
    Padding(4),
    "key" / U128,
    "owner" / PUBLIC_KEY,
    "quantity" / Int64sl,
    "timestamp" / Int64ul,
    "peg_limit" / Int64sl,
    "client_order_id" / Int64ul,
)

POSITION_LAYOUT = Struct(
    "bids_base_lots" / Int64sl,
    "asks_base_lots" / Int64sl,
    "base_free_native" / Int64ul,
    "quote_free_native" / Int64ul,
    "locked_maker_fees" / Int64ul,
    "referrer_rebates_available" / Int64ul,
    "penalty_heap_count" / Int64ul,
    "maker_volume" / U128,
    "taker_volume" / U128,
    "bids_quote_lots" / Int64sl,
    Padding(64),
)

OPEN_ORDER_LAYOUT = Struct(
    "id" / U128,
    "client_id" / Int64ul,
    "locked_price" / Int64sl,
    "is_free" / Int8ul,
    "side_and_tree" / Int8ul,
    Padding(6),
    Padding(32),
)

OPEN_ORDERS_ACCOUNT_LAYOUT = Struct(
    Const(OPEN_ORDERS_ACCOUNT_DISCRIMINATOR),
    "owner" / PUBLIC_KEY,
    "market" / PUBLIC_KEY,
    "name" / Bytes(32),
    "delegate" / PUBLIC_KEY,
    "account_num" / Int32ul,
    "bump" / Int8ul,
    "version" / Int8ul,
    Padding(2),
    "position" / POSITION_LAYOUT,
    "open_orders" / Array(MAX_OPEN_ORDERS, OPEN_ORDER_LAYOUT),
)
OPEN_ORDERS_ACCOUNT_SIZE = OPEN_ORDERS_ACCOUNT_LAYOUT.sizeof()
OPEN_ORDERS_OWNER_OFFSET = 8
OPEN_ORDERS_MARKET_OFFSET = 40


class OrderTreeType:
    BIDS = 0
    ASKS = 1


class NodeTag:
    UNINITIALIZED = 0
    INNER = 1
    LEAF = 2
    FREE = 3
    LAST_FREE = 4


# fixed price orders; oracle pegged orders need an oracle price to rank
FIXED_TREE = 0
ORACLE_PEGGED_TREE = 1


def decode_name(raw: bytes) -> str:
    return raw.rstrip(b"\x00").decode("utf-8", errors="replace")


def decode_market(data: bytes):
    return parse(MARKET_LAYOUT, data, "Market")


def decode_open_orders_account(data: bytes):
    return parse(OPEN_ORDERS_ACCOUNT_LAYOUT, data, "OpenOrdersAccount")


def decode_book_side(data: bytes, side: Side, tree: int = FIXED_TREE) -> OrderTree:
    if len(data) == 0:
        return OrderTree([], None, 0)

    header = parse(BOOK_SIDE_HEADER_LAYOUT, data, "BookSide")
    expected = OrderTreeType.BIDS if side == Side.BID else OrderTreeType.ASKS
    if header.order_tree_type != expected:
        raise DecodeError(f"BookSide: tree type {header.order_tree_type} is not {side.name}")
    if header.bump_index > MAX_ORDERTREE_NODES:
        raise DecodeError(f"BookSide: bump index {header.bump_index} exceeds {MAX_ORDERTREE_NODES}")

    nodes = []
    for i in range(header.bump_index):
        offset = BOOK_SIDE_HEADER_SIZE + i * NODE_SIZE
        if offset >= len(data):
            raise DecodeError(f"BookSide: node {i} beyond {len(data)} byte buffer")
        tag = data[offset]
        if tag == NodeTag.INNER:
            raw = parse(INNER_NODE_LAYOUT, data, "BookSide inner node", offset)
            nodes.append(InnerNode(raw.prefix_len, raw.key, tuple(raw.children)))
        elif tag == NodeTag.LEAF:
            raw = parse(LEAF_NODE_LAYOUT, data, "BookSide leaf node", offset)
            nodes.append(
                OrderNode(
                    key=raw.key,
                    owner=raw.owner,
                    quantity=raw.quantity,
                    client_order_id=raw.client_order_id,
                    owner_slot=raw.owner_slot,
                    timestamp=raw.timestamp,
                    time_in_force=raw.time_in_force,
                )
            )
        elif tag in (NodeTag.UNINITIALIZED, NodeTag.FREE, NodeTag.LAST_FREE):
            nodes.append(None)
        else:
            raise DecodeError(f"BookSide: unknown node tag {tag} at {i}")

    root = header.roots[tree]
    return OrderTree(nodes, root.maybe_node, root.leaf_count)
