from __future__ import annotations

from typing import Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")

_ORDERS = ("default", "postorder", "preorder", "topological")


class Depset(Generic[T]):
    """
    An immutable, ordered collection of items built out of direct items layered on top of other depsets.

    Depsets are how transitive information travels up the dependency graph: each target creates a new depset
    containing its own items plus the depsets of its dependencies, rather than copying and merging lists. The
    flattened form (`to_list`) contains every distinct item exactly once, in an order determined only by the
    structure of the graph.

    Orders:
      * `default` / `postorder`: items of transitive depsets first (left to right), then direct items
      * `preorder`: direct items first, then transitive depsets (left to right)
      * `topological`: every item appears before the items of the depsets it was layered on top of
    """

    def __init__(self, direct: Iterable[T] = (), transitive: Iterable[Depset[T]] = (), *, order: str = "default"):
        if order not in _ORDERS:
            raise ValueError(f"invalid depset order {order!r}, expected one of {', '.join(_ORDERS)}")
        self.order = order

        direct = tuple(direct)
        for item in direct:
            if isinstance(item, Depset):
                raise TypeError("depsets cannot be direct items of other depsets, pass them as transitive")
            try:
                hash(item)
            except TypeError:
                raise TypeError(f"depset items must be hashable, got {type(item).__name__}") from None
        self._direct = direct

        children = []
        for child in transitive:
            if not isinstance(child, Depset):
                raise TypeError(f"expected depset in transitive, got {type(child).__name__}")
            if not _orders_compatible(order, child.order):
                raise ValueError(f"cannot merge depset with order {child.order!r} into depset with order {order!r}")
            # Empty children contribute nothing
            if child.is_empty():
                continue
            children.append(child)
        self._transitive = tuple(children)

        self._flat: Optional[List[T]] = None

    def is_empty(self) -> bool:
        return not self._direct and not self._transitive

    def to_list(self) -> List[T]:
        if self._flat is None:
            if self.order == "preorder":
                self._flat = self._flatten_preorder()
            elif self.order == "topological":
                self._flat = self._flatten_topological()
            else:
                self._flat = self._flatten_postorder()
        return list(self._flat)

    def _flatten_postorder(self) -> List[T]:
        output = []
        seen_items = set()
        seen_nodes = set()

        # Entries are (node, children_done)
        stack = [(self, False)]
        while stack:
            node, children_done = stack.pop()
            if children_done:
                for item in node._direct:
                    if item not in seen_items:
                        seen_items.add(item)
                        output.append(item)
                continue
            if id(node) in seen_nodes:
                continue
            seen_nodes.add(id(node))
            stack.append((node, True))
            stack.extend((child, False) for child in reversed(node._transitive))
        return output

    def _flatten_preorder(self) -> List[T]:
        output = []
        seen_items = set()
        seen_nodes = set()

        stack = [self]
        while stack:
            node = stack.pop()
            if id(node) in seen_nodes:
                continue
            seen_nodes.add(id(node))
            for item in node._direct:
                if item not in seen_items:
                    seen_items.add(item)
                    output.append(item)
            stack.extend(reversed(node._transitive))
        return output

    def _flatten_topological(self) -> List[T]:
        # Reverse of a right-to-left postorder walk
        output = []
        seen_items = set()
        seen_nodes = set()

        stack = [(self, False)]
        while stack:
            node, children_done = stack.pop()
            if children_done:
                for item in reversed(node._direct):
                    if item not in seen_items:
                        seen_items.add(item)
                        output.append(item)
                continue
            if id(node) in seen_nodes:
                continue
            seen_nodes.add(id(node))
            stack.append((node, True))
            stack.extend((child, False) for child in node._transitive)
        output.reverse()
        return output

    def to_json(self):
        return self.to_list()

    def __repr__(self):
        return f"depset({self.to_list()!r}, order={self.order!r})"


def _orders_compatible(parent: str, child: str) -> bool:
    return parent == "default" or child == "default" or parent == child


def depset(direct: Iterable[T] = (), transitive: Iterable[Depset[T]] = (), *, order: str = "default") -> Depset[T]:
    return Depset(direct, transitive, order=order)
