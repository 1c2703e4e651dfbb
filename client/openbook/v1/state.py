from enum import IntFlag

from construct import Array, Bytes, Const, Flag, Int8ul, Int32ul, Int64ul, Padding, Struct

from openbook.errors import DecodeError
from openbook.orderbook import InnerNode, OrderNode, OrderTree, Side
from openbook.utils.layouts import PUBLIC_KEY, U128, parse

ACCOUNT_HEAD_PADDING = b"serum"
ACCOUNT_TAIL_PADDING = b"padding"


class AccountFlag(IntFlag):
    INITIALIZED = 1 << 0
    MARKET = 1 << 1
    OPEN_ORDERS = 1 << 2
    REQUEST_QUEUE = 1 << 3
    EVENT_QUEUE = 1 << 4
    BIDS = 1 << 5
    ASKS = 1 << 6
    DISABLED = 1 << 7
    CLOSED = 1 << 8
    PERMISSIONED = 1 << 9
    CRANK_AUTHORITY_REQUIRED = 1 << 10


MARKET_STATE_LAYOUT = Struct(
    Const(ACCOUNT_HEAD_PADDING),
    "account_flags" / Int64ul,
    "own_address" / PUBLIC_KEY,
    "vault_signer_nonce" / Int64ul,
    "coin_mint" / PUBLIC_KEY,
    "pc_mint" / PUBLIC_KEY,
    "coin_vault" / PUBLIC_KEY,
    "coin_deposits_total" / Int64ul,
    "coin_fees_accrued" / Int64ul,
    "pc_vault" / PUBLIC_KEY,
    "pc_deposits_total" / Int64ul,
    "pc_fees_accrued" / Int64ul,
    "pc_dust_threshold" / Int64ul,
    "req_q" / PUBLIC_KEY,
    "event_q" / PUBLIC_KEY,
    "bids" / PUBLIC_KEY,
    "asks" / PUBLIC_KEY,
    "coin_lot_size" / Int64ul,
    "pc_lot_size" / Int64ul,
    "fee_rate_bps" / Int64ul,
    "referrer_rebates_accrued" / Int64ul,
)
MARKET_STATE_SIZE = MARKET_STATE_LAYOUT.sizeof() + len(ACCOUNT_TAIL_PADDING)

# permissioned markets append these after referrer_rebates_accrued
MARKET_AUTHORITIES_LAYOUT = Struct(
    "open_orders_authority" / PUBLIC_KEY,
    "prune_authority" / PUBLIC_KEY,
    "consume_events_authority" / PUBLIC_KEY,
)

OPEN_ORDERS_LAYOUT = Struct(
    Const(ACCOUNT_HEAD_PADDING),
    "account_flags" / Int64ul,
    "market" / PUBLIC_KEY,
    "owner" / PUBLIC_KEY,
    "base_token_free" / Int64ul,
    "base_token_total" / Int64ul,
    "quote_token_free" / Int64ul,
    "quote_token_total" / Int64ul,
    "free_slot_bits" / U128,
    "is_bid_bits" / U128,
    "orders" / Array(128, U128),
    "client_ids" / Array(128, Int64ul),
    "referrer_rebates_accrued" / Int64ul,
    Const(ACCOUNT_TAIL_PADDING),
)
OPEN_ORDERS_SIZE = OPEN_ORDERS_LAYOUT.sizeof()
OPEN_ORDERS_MARKET_OFFSET = 13
OPEN_ORDERS_OWNER_OFFSET = 45

SLAB_HEADER_LAYOUT = Struct(
    Const(ACCOUNT_HEAD_PADDING),
    "account_flags" / Int64ul,
    "bump_index" / Int64ul,
    "free_list_len" / Int64ul,
    "free_list_head" / Int32ul,
    "root_node" / Int32ul,
    "leaf_count" / Int64ul,
)
SLAB_HEADER_SIZE = SLAB_HEADER_LAYOUT.sizeof()

NODE_SIZE = 72


class NodeTag:
    UNINITIALIZED = 0
    INNER = 1
    LEAF = 2
    FREE = 3
    LAST_FREE = 4


INNER_NODE_LAYOUT = Struct(
    "tag" / Int32ul,
    "prefix_len" / Int32ul,
    "key" / U128,
    "children" / Array(2, Int32ul),
    Padding(40),
)

LEAF_NODE_LAYOUT = Struct(
    "tag" / Int32ul,
    "owner_slot" / Int8ul,
    "fee_tier" / Int8ul,
    Padding(2),
    "key" / U128,
    "owner" / PUBLIC_KEY,
    "quantity" / Int64ul,
    "client_order_id" / Int64ul,
)

MINT_LAYOUT = Struct(
    "mint_authority_option" / Int32ul,
    "mint_authority" / Bytes(32),
    "supply" / Int64ul,
    "decimals" / Int8ul,
    "is_initialized" / Flag,
    "freeze_authority_option" / Int32ul,
    "freeze_authority" / Bytes(32),
)


def decode_market_state(data: bytes):
    state = parse(MARKET_STATE_LAYOUT, data, "MarketState")
    flags = AccountFlag(state.account_flags)
    if not flags & AccountFlag.MARKET or not flags & AccountFlag.INITIALIZED:
        raise DecodeError(f"MarketState: account flags {flags!r} are not an initialized market")
    state.consume_events_authority = None
    if flags & AccountFlag.PERMISSIONED:
        authorities = parse(
            MARKET_AUTHORITIES_LAYOUT, data, "MarketState authorities", MARKET_STATE_LAYOUT.sizeof()
        )
        state.consume_events_authority = authorities.consume_events_authority
    return state


def decode_mint_decimals(data: bytes) -> int:
    return parse(MINT_LAYOUT, data, "Mint").decimals


def decode_open_orders(data: bytes):
    state = parse(OPEN_ORDERS_LAYOUT, data, "OpenOrders")
    if not AccountFlag(state.account_flags) & AccountFlag.OPEN_ORDERS:
        raise DecodeError("OpenOrders: account is not an open orders account")
    return state


def decode_slab(data: bytes, side: Side) -> OrderTree:
    """Decode a bids or asks slab into a walkable tree.

    An empty buffer is an empty book.
    """
    if len(data) == 0:
        return OrderTree([], None, 0)

    header = parse(SLAB_HEADER_LAYOUT, data, "Slab")
    expected = AccountFlag.BIDS if side == Side.BID else AccountFlag.ASKS
    if not AccountFlag(header.account_flags) & expected:
        raise DecodeError(f"Slab: account flags {header.account_flags:#x} are not {expected!r}")

    capacity = (len(data) - SLAB_HEADER_SIZE - len(ACCOUNT_TAIL_PADDING)) // NODE_SIZE
    if header.bump_index > capacity:
        raise DecodeError(f"Slab: bump index {header.bump_index} exceeds capacity {capacity}")

    nodes = []
    for i in range(header.bump_index):
        offset = SLAB_HEADER_SIZE + i * NODE_SIZE
        tag = int.from_bytes(data[offset:offset + 4], "little")
        if tag == NodeTag.INNER:
            raw = parse(INNER_NODE_LAYOUT, data, "Slab inner node", offset)
            nodes.append(InnerNode(raw.prefix_len, raw.key, tuple(raw.children)))
        elif tag == NodeTag.LEAF:
            raw = parse(LEAF_NODE_LAYOUT, data, "Slab leaf node", offset)
            nodes.append(
                OrderNode(
                    key=raw.key,
                    owner=raw.owner,
                    quantity=raw.quantity,
                    client_order_id=raw.client_order_id,
                    owner_slot=raw.owner_slot,
                    fee_tier=raw.fee_tier,
                )
            )
        elif tag in (NodeTag.UNINITIALIZED, NodeTag.FREE, NodeTag.LAST_FREE):
            nodes.append(None)
        else:
            raise DecodeError(f"Slab: unknown node tag {tag} at {i}")

    return OrderTree(nodes, header.root_node, header.leaf_count)
