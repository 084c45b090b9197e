from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from orgchart.models import OrgNode
from orgchart.services.org_nodes import list_nodes
from orgchart.services.org_tree import order_siblings

logger = logging.getLogger("orgchart.integrity")


@dataclass(frozen=True, slots=True)
class ChainIssue:
    code: str
    parent_id: str | None
    node_id: str | None
    detail: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "parent_id": self.parent_id,
            "node_id": self.node_id,
            "detail": self.detail,
        }


@dataclass(frozen=True, slots=True)
class ChainReport:
    ok: bool
    checked_at_utc: datetime
    node_count: int
    group_count: int
    issues: list[ChainIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "node_count": self.node_count,
            "group_count": self.group_count,
            "issue_count": len(self.issues),
            "issues": [issue.to_dict() for issue in self.issues],
        }


def group_by_parent(nodes: Iterable[Any]) -> dict[str | None, list[Any]]:
    groups: dict[str | None, list[Any]] = defaultdict(list)
    for node in nodes:
        groups[node.parent_id or None].append(node)
    return dict(groups)


def _check_pointer(
    issues: list[ChainIssue],
    *,
    node: Any,
    pointer: str,
    target_id: str | None,
    by_id: dict[str, Any],
    member_ids: set[str],
) -> None:
    if target_id is None:
        return
    group = node.parent_id or None
    dangling_code = "DANGLING_PREV" if pointer == "prev_id" else "DANGLING_NEXT"
    if target_id not in by_id:
        issues.append(ChainIssue(dangling_code, group, node.id, f"{pointer} points to missing node {target_id}"))
        return
    if target_id not in member_ids:
        issues.append(
            ChainIssue("CROSS_GROUP_LINK", group, node.id, f"{pointer} points outside the sibling group: {target_id}")
        )
        return
    back_pointer = "next_id" if pointer == "prev_id" else "prev_id"
    if getattr(by_id[target_id], back_pointer) != node.id:
        issues.append(
            ChainIssue("BROKEN_BACKLINK", group, node.id, f"{target_id}.{back_pointer} does not point back")
        )


def _check_group(parent_id: str | None, members: list[Any], by_id: dict[str, Any]) -> list[ChainIssue]:
    issues: list[ChainIssue] = []
    member_ids = {member.id for member in members}

    if parent_id is not None and parent_id not in by_id:
        for member in members:
            issues.append(ChainIssue("ORPHAN_PARENT", parent_id, member.id, f"parent {parent_id} does not exist"))

    heads = [member for member in members if member.prev_id is None]
    tails = [member for member in members if member.next_id is None]
    if not heads:
        issues.append(ChainIssue("NO_HEAD", parent_id, None, "no member has an empty prev_id"))
    elif len(heads) > 1:
        issues.append(
            ChainIssue("MULTIPLE_HEADS", parent_id, None, "heads: " + ", ".join(head.id for head in heads))
        )
    if len(tails) > 1:
        issues.append(
            ChainIssue("MULTIPLE_TAILS", parent_id, None, "tails: " + ", ".join(tail.id for tail in tails))
        )

    for member in members:
        _check_pointer(issues, node=member, pointer="prev_id", target_id=member.prev_id, by_id=by_id, member_ids=member_ids)
        _check_pointer(issues, node=member, pointer="next_id", target_id=member.next_id, by_id=by_id, member_ids=member_ids)

    if heads:
        index = {member.id: member for member in members}
        seen: set[str] = set()
        current = heads[0]
        while current is not None:
            if current.id in seen:
                issues.append(ChainIssue("CYCLE", parent_id, current.id, "chain revisits this node"))
                break
            seen.add(current.id)
            current = index.get(current.next_id) if current.next_id else None
        for member in members:
            if member.id not in seen:
                issues.append(ChainIssue("UNREACHABLE", parent_id, member.id, "not reachable from the head"))

    return issues


def check_sibling_chains(nodes: Iterable[Any]) -> ChainReport:
    flat = list(nodes)
    by_id = {node.id: node for node in flat}
    groups = group_by_parent(flat)

    issues: list[ChainIssue] = []
    for parent_id, members in groups.items():
        issues.extend(_check_group(parent_id, members, by_id))

    return ChainReport(
        ok=not issues,
        checked_at_utc=datetime.now(timezone.utc),
        node_count=len(flat),
        group_count=len(groups),
        issues=issues,
    )


def repaired_group_order(members: list[Any]) -> list[Any]:
    """Rendered order first, then whatever the walk missed in input order."""
    ordered = order_siblings(members)
    reached = {member.id for member in ordered}
    return ordered + [member for member in members if member.id not in reached]


def repair_sibling_chains(db: Session) -> int:
    nodes = list_nodes(db)
    relinked = 0
    for members in group_by_parent(nodes).values():
        ordered: list[OrgNode] = repaired_group_order(members)
        for index, node in enumerate(ordered):
            prev_id = ordered[index - 1].id if index > 0 else None
            next_id = ordered[index + 1].id if index + 1 < len(ordered) else None
            if node.prev_id == prev_id and node.next_id == next_id:
                continue
            node.prev_id = prev_id
            node.next_id = next_id
            relinked += 1

    if relinked:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
    logger.info("org_chain_repaired", extra={"relinked": relinked, "node_count": len(nodes)})
    return relinked
