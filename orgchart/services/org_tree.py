"""Materialize the flat org chart collection into an ordered forest.

Nodes are grouped by ``parent_id``; each sibling group is ordered by walking
its ``prev_id``/``next_id`` chain from the head (the member whose ``prev_id``
is ``None``). Nothing here touches the database and input nodes are never
mutated, so the builder is safe to call on every request.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class TreeNode:
    id: str
    name: str
    position: str
    parent_id: str | None
    prev_id: str | None
    next_id: str | None
    children: list[TreeNode] = field(default_factory=list)

    @classmethod
    def from_node(cls, node: Any) -> TreeNode:
        return cls(
            id=node.id,
            name=node.name,
            position=node.position,
            parent_id=node.parent_id,
            prev_id=node.prev_id,
            next_id=node.next_id,
        )


def order_siblings(siblings: Sequence[Any]) -> list[Any]:
    """Return one sibling group in chain order.

    Members the walk does not reach are left out. A group without a head is
    returned in its input order. The walk stops at the first repeated id so a
    cyclic chain cannot loop forever.
    """
    index = {sibling.id: sibling for sibling in siblings}
    head = next((sibling for sibling in siblings if sibling.prev_id is None), None)
    if head is None:
        return list(siblings)

    ordered: list[Any] = []
    seen: set[str] = set()
    current = head
    while current is not None and current.id not in seen:
        seen.add(current.id)
        ordered.append(current)
        current = index.get(current.next_id) if current.next_id else None
    return ordered


def _order_subtree(node: TreeNode) -> None:
    if not node.children:
        return
    node.children = order_siblings(node.children)
    for child in node.children:
        _order_subtree(child)


def build_tree(nodes: Iterable[Any]) -> list[TreeNode]:
    flat = list(nodes)
    by_id: dict[str, TreeNode] = {node.id: TreeNode.from_node(node) for node in flat}

    roots: list[TreeNode] = []
    for node in flat:
        tree_node = by_id[node.id]
        if node.parent_id:
            parent = by_id.get(node.parent_id)
            # orphans (parent gone) are not rendered
            if parent is not None:
                parent.children.append(tree_node)
        else:
            roots.append(tree_node)

    ordered_roots = order_siblings(roots)
    for root in ordered_roots:
        _order_subtree(root)
    return ordered_roots


def walk_levels(forest: Iterable[TreeNode], level: int = 0) -> Iterator[tuple[TreeNode, int]]:
    for node in forest:
        yield node, level
        yield from walk_levels(node.children, level + 1)


def _connections_below(parent: TreeNode) -> Iterator[tuple[str, str]]:
    for child in parent.children:
        yield parent.id, child.id
        yield from _connections_below(child)


def iter_connections(forest: Iterable[TreeNode]) -> Iterator[tuple[str, str]]:
    """Yield ``(parent_id, child_id)`` pairs depth-first in rendered order."""
    for root in forest:
        yield from _connections_below(root)
