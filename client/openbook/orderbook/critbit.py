from typing import Iterator, Optional, Sequence, Union

from openbook.errors import DecodeError
from openbook.orderbook.base import InnerNode, OrderNode, Side

Node = Union[InnerNode, OrderNode, None]


class OrderTree:
    """Read-only crit-bit tree over a decoded node arena.

    Keys are ``price << 64 | sequence``, so an in-order walk is price-time order.
    Walking never touches the arena, so one decoded tree can be walked any number
    of times.
    """

    def __init__(self, nodes: Sequence[Node], root: Optional[int], leaf_count: int):
        self.nodes = nodes
        self.leaf_count = leaf_count
        self.root = root if leaf_count > 0 else None
        self._validate()

    def _validate(self):
        if self.root is None:
            return
        size = len(self.nodes)
        if self.root >= size:
            raise DecodeError(f"Root node {self.root} outside arena of {size} nodes")
        for handle, node in enumerate(self.nodes):
            if isinstance(node, InnerNode):
                for child in node.children:
                    if child >= size or self.nodes[child] is None:
                        raise DecodeError(f"Node {handle} points at empty slot {child}")
        if self.nodes[self.root] is None:
            raise DecodeError(f"Root node {self.root} is not in use")

    def walk(self, side: Side, max_depth: Optional[int] = None) -> Iterator[OrderNode]:
        """Leaves best price first: highest key first for bids, lowest for asks."""
        if self.root is None or max_depth == 0:
            return
        first, second = (1, 0) if side == Side.BID else (0, 1)
        stack = [self.root]
        yielded = 0
        visited = 0
        while stack:
            handle = stack.pop()
            visited += 1
            if visited > len(self.nodes):
                raise DecodeError("Cycle in order tree")
            node = self.nodes[handle]
            if isinstance(node, InnerNode):
                stack.append(node.children[second])
                stack.append(node.children[first])
            elif isinstance(node, OrderNode):
                yield node
                yielded += 1
                if max_depth is not None and yielded >= max_depth:
                    return
            else:
                raise DecodeError(f"Unexpected node at {handle}")
