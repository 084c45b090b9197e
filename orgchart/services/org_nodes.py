from __future__ import annotations

import hashlib
import logging
from typing import Callable, TypeVar

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orgchart.errors import ApiError, NodeHasChildrenError, NodeNotFoundError
from orgchart.models import OrgNode, new_node_id
from orgchart.schemas import OrgNodeCreate, OrgNodeUpdate

logger = logging.getLogger("orgchart.nodes")

CHAIN_WRITE_ATTEMPTS = 3

T = TypeVar("T")


def _sibling_group_clause(parent_id: str | None):  # type: ignore[no-untyped-def]
    if parent_id is None:
        return OrgNode.parent_id.is_(None)
    return OrgNode.parent_id == parent_id


def _commit(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


def sibling_group_lock_key(parent_id: str | None) -> int:
    """Stable signed 64-bit key for ``pg_advisory_xact_lock``."""
    digest = hashlib.blake2b(f"org_nodes:{parent_id or ''}".encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def lock_sibling_group(db: Session, parent_id: str | None) -> None:
    """Serialise chain writers of one sibling group until the transaction ends.

    PostgreSQL gets a transaction-scoped advisory lock, which also covers the
    empty group where there is no tail row to lock. Other dialects rely on the
    compare-and-set checks in ``create_node`` and ``delete_node``.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": sibling_group_lock_key(parent_id)})


def _retry_chain_write(db: Session, attempt_write: Callable[[], T | None], *, action: str) -> T:
    # attempt_write returns None when a concurrent writer changed the group
    for attempt in range(1, CHAIN_WRITE_ATTEMPTS + 1):
        result = attempt_write()
        if result is not None:
            return result
        db.rollback()
        logger.warning("sibling_chain_conflict", extra={"action": action, "attempt": attempt})
    raise ApiError(
        status_code=409,
        code="SIBLING_CHAIN_CONFLICT",
        message="Sibling order changed concurrently. Please retry.",
    )


def list_nodes(db: Session) -> list[OrgNode]:
    stmt = select(OrgNode).order_by(OrgNode.created_at.asc(), OrgNode.id.asc())
    return list(db.scalars(stmt).all())


def get_node(db: Session, node_id: str, *, lock: bool = False) -> OrgNode:
    if lock:
        node = db.get(OrgNode, node_id, with_for_update=True, populate_existing=True)
    else:
        node = db.get(OrgNode, node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    return node


def find_sibling_tail(db: Session, parent_id: str | None, *, lock: bool = False) -> OrgNode | None:
    stmt = (
        select(OrgNode)
        .where(_sibling_group_clause(parent_id), OrgNode.next_id.is_(None))
        .order_by(OrgNode.created_at.desc(), OrgNode.id.desc())
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.scalars(stmt).first()


def _count_open_tails(db: Session, parent_id: str | None) -> int:
    stmt = (
        select(func.count())
        .select_from(OrgNode)
        .where(_sibling_group_clause(parent_id), OrgNode.next_id.is_(None))
    )
    return int(db.scalar(stmt) or 0)


def _append_to_group(db: Session, payload: OrgNodeCreate) -> OrgNode | None:
    parent_id = payload.parent_id
    if parent_id is not None and db.get(OrgNode, parent_id, with_for_update=True) is None:
        raise NodeNotFoundError(parent_id, code="PARENT_NOT_FOUND")

    lock_sibling_group(db, parent_id)
    tail = find_sibling_tail(db, parent_id, lock=True)
    node = OrgNode(
        id=new_node_id(),
        name=payload.name,
        position=payload.position,
        parent_id=parent_id,
        prev_id=tail.id if tail is not None else None,
        next_id=None,
    )
    db.add(node)
    db.flush()

    if tail is not None:
        claimed = db.execute(
            update(OrgNode)
            .where(OrgNode.id == tail.id, OrgNode.next_id.is_(None))
            .values(next_id=node.id)
        )
        if claimed.rowcount != 1:
            return None
    elif _count_open_tails(db, parent_id) != 1:
        # another writer started the group after we found it empty
        return None
    return node


def create_node(db: Session, payload: OrgNodeCreate) -> OrgNode:
    node = _retry_chain_write(db, lambda: _append_to_group(db, payload), action="create")
    # new node and old tail commit together
    _commit(db)
    db.refresh(node)

    logger.info(
        "org_node_created",
        extra={
            "node_id": node.id,
            "parent_id": node.parent_id,
            "prev_id": node.prev_id,
        },
    )
    return node


def update_node(db: Session, node_id: str, payload: OrgNodeUpdate) -> OrgNode:
    node = get_node(db, node_id)
    node.name = payload.name
    node.position = payload.position
    _commit(db)
    db.refresh(node)
    logger.info("org_node_updated", extra={"node_id": node.id})
    return node


def _collect_descendants(db: Session, node_id: str) -> list[OrgNode]:
    descendants: list[OrgNode] = []
    seen: set[str] = {node_id}
    frontier = [node_id]
    while frontier:
        children = list(db.scalars(select(OrgNode).where(OrgNode.parent_id.in_(frontier))).all())
        frontier = []
        for child in children:
            if child.id in seen:
                continue
            seen.add(child.id)
            descendants.append(child)
            frontier.append(child.id)
    return descendants


def _same_group_neighbour(db: Session, node: OrgNode, neighbour_id: str | None) -> OrgNode | None:
    if not neighbour_id:
        return None
    neighbour = db.get(OrgNode, neighbour_id, with_for_update=True)
    if neighbour is None or neighbour.parent_id != node.parent_id:
        return None
    return neighbour


def sibling_ids_pointing_at(db: Session, node: OrgNode) -> set[str]:
    stmt = select(OrgNode.id).where(
        _sibling_group_clause(node.parent_id),
        OrgNode.id != node.id,
        (OrgNode.prev_id == node.id) | (OrgNode.next_id == node.id),
    )
    return set(db.scalars(stmt).all())


def unlink_node(db: Session, node: OrgNode) -> None:
    """Splice ``node`` out of its sibling chain without flushing."""
    prev_node = _same_group_neighbour(db, node, node.prev_id)
    next_node = _same_group_neighbour(db, node, node.next_id)
    if prev_node is not None and prev_node.next_id == node.id:
        prev_node.next_id = next_node.id if next_node is not None else None
    if next_node is not None and next_node.prev_id == node.id:
        next_node.prev_id = prev_node.id if prev_node is not None else None


def _remove_from_group(db: Session, node_id: str, cascade: bool) -> list[str] | None:
    parent_id = get_node(db, node_id).parent_id
    lock_sibling_group(db, parent_id)
    node = get_node(db, node_id, lock=True)
    descendants = _collect_descendants(db, node.id)
    if descendants and not cascade:
        raise NodeHasChildrenError(node.id, child_count=len(descendants))

    deleted_ids = [node.id, *(item.id for item in descendants)]
    known_pointers = sibling_ids_pointing_at(db, node)
    unlink_node(db, node)
    db.flush()

    # a sibling appended after our read would be left pointing at a deleted row
    if sibling_ids_pointing_at(db, node) - known_pointers:
        return None

    for descendant in descendants:
        db.delete(descendant)
    db.delete(node)
    return deleted_ids


def delete_node(db: Session, node_id: str, *, cascade: bool = False) -> list[str]:
    deleted_ids = _retry_chain_write(db, lambda: _remove_from_group(db, node_id, cascade), action="delete")
    _commit(db)

    logger.info(
        "org_node_deleted",
        extra={
            "node_id": deleted_ids[0],
            "cascade": cascade,
            "deleted_count": len(deleted_ids),
        },
    )
    return deleted_ids
