from __future__ import annotations

import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orgchart.db import Base
from orgchart.errors import ApiError, NodeNotFoundError
from orgchart.models import OrgNode
from orgchart.schemas import OrgNodeCreate, OrgNodeUpdate
from orgchart.services import org_nodes
from orgchart.services.org_integrity import check_sibling_chains
from orgchart.services.org_nodes import (
    create_node,
    delete_node,
    get_node,
    list_nodes,
    lock_sibling_group,
    sibling_group_lock_key,
    update_node,
)
from orgchart.services.org_tree import build_tree


def _sqlite_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)()


class OrgNodeServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _sqlite_session()

    def tearDown(self) -> None:
        self.db.close()

    def _add(self, name: str, parent_id: str | None = None) -> OrgNode:
        return create_node(self.db, OrgNodeCreate(name=name, position="Staff", parent_id=parent_id))

    def _reload(self, node_id: str) -> OrgNode:
        return get_node(self.db, node_id)

    def test_first_child_has_no_sibling_pointers(self) -> None:
        ceo = self._add("Ada Lovelace")
        child = self._add("Grace Hopper", ceo.id)

        self.assertIsNone(child.prev_id)
        self.assertIsNone(child.next_id)
        self.assertEqual(child.parent_id, ceo.id)

    def test_insert_appends_to_tail(self) -> None:
        ceo = self._add("Ada Lovelace")
        first = self._add("Grace Hopper", ceo.id)
        tail = self._add("Alan Turing", ceo.id)

        added = self._add("Edsger Dijkstra", ceo.id)

        tail = self._reload(tail.id)
        self.assertEqual(tail.next_id, added.id)
        self.assertEqual(added.prev_id, tail.id)
        self.assertIsNone(added.next_id)
        self.assertEqual(self._reload(first.id).next_id, tail.id)

        forest = build_tree(list_nodes(self.db))
        self.assertEqual(
            [child.name for child in forest[0].children],
            ["Grace Hopper", "Alan Turing", "Edsger Dijkstra"],
        )

    def test_roots_are_linked_too(self) -> None:
        first = self._add("Root One")
        second = self._add("Root Two")

        self.assertEqual(self._reload(first.id).next_id, second.id)
        self.assertEqual(second.prev_id, first.id)
        self.assertEqual([node.id for node in build_tree(list_nodes(self.db))], [first.id, second.id])

    def test_create_under_missing_parent_is_rejected(self) -> None:
        with self.assertRaises(NodeNotFoundError) as ctx:
            self._add("Nobody", "missing")

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "PARENT_NOT_FOUND")
        self.assertEqual(list_nodes(self.db), [])

    def test_update_changes_fields_only(self) -> None:
        ceo = self._add("Ada Lovelace")
        left = self._add("Left", ceo.id)
        right = self._add("Right", ceo.id)

        updated = update_node(self.db, left.id, OrgNodeUpdate(name="Left Renamed", position="Lead"))

        self.assertEqual(updated.name, "Left Renamed")
        self.assertEqual(updated.position, "Lead")
        self.assertEqual(updated.parent_id, ceo.id)
        self.assertIsNone(updated.prev_id)
        self.assertEqual(updated.next_id, right.id)

    def test_update_missing_node(self) -> None:
        with self.assertRaises(NodeNotFoundError):
            update_node(self.db, "missing", OrgNodeUpdate(name="X", position="Y"))

    def test_delete_middle_relinks_neighbours(self) -> None:
        ceo = self._add("Ada Lovelace")
        a = self._add("A", ceo.id)
        b = self._add("B", ceo.id)
        c = self._add("C", ceo.id)

        deleted = delete_node(self.db, b.id)

        self.assertEqual(deleted, [b.id])
        self.assertEqual(self._reload(a.id).next_id, c.id)
        self.assertEqual(self._reload(c.id).prev_id, a.id)
        forest = build_tree(list_nodes(self.db))
        self.assertEqual([child.name for child in forest[0].children], ["A", "C"])

    def test_delete_head_promotes_next(self) -> None:
        first = self._add("First")
        second = self._add("Second")

        delete_node(self.db, first.id)

        second = self._reload(second.id)
        self.assertIsNone(second.prev_id)
        self.assertIsNone(second.next_id)

    def test_delete_tail_then_insert_links_to_new_tail(self) -> None:
        first = self._add("First")
        second = self._add("Second")

        delete_node(self.db, second.id)
        third = self._add("Third")

        self.assertEqual(third.prev_id, first.id)
        self.assertEqual(self._reload(first.id).next_id, third.id)

    def test_delete_with_children_requires_cascade(self) -> None:
        ceo = self._add("Ada Lovelace")
        self._add("Report", ceo.id)

        with self.assertRaises(ApiError) as ctx:
            delete_node(self.db, ceo.id)

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "NODE_HAS_CHILDREN")
        self.assertEqual(ctx.exception.details, {"node_id": ceo.id, "child_count": 1})
        self.assertEqual(len(list_nodes(self.db)), 2)

    def test_cascade_delete_removes_subtree(self) -> None:
        keep = self._add("Keep")
        ceo = self._add("Ada Lovelace")
        lead = self._add("Lead", ceo.id)
        dev = self._add("Dev", lead.id)

        deleted = delete_node(self.db, ceo.id, cascade=True)

        self.assertEqual(set(deleted), {ceo.id, lead.id, dev.id})
        remaining = list_nodes(self.db)
        self.assertEqual([node.id for node in remaining], [keep.id])
        self.assertIsNone(remaining[0].next_id)

    def test_delete_missing_node(self) -> None:
        with self.assertRaises(NodeNotFoundError):
            delete_node(self.db, "missing")

    def test_list_nodes_orders_by_creation(self) -> None:
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.db.add_all(
            [
                OrgNode(id="late", name="Late", position="P", created_at=base + timedelta(minutes=5)),
                OrgNode(id="early", name="Early", position="P", created_at=base),
            ]
        )
        self.db.commit()

        self.assertEqual([node.id for node in list_nodes(self.db)], ["early", "late"])

    def test_failed_commit_rolls_back_insert_and_tail_link(self) -> None:
        first = self._add("First")
        failure = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with patch.object(self.db, "commit", side_effect=failure):
            with self.assertRaises(OperationalError):
                self._add("Second")

        self.assertEqual([(node.id, node.next_id) for node in list_nodes(self.db)], [(first.id, None)])

    def test_failed_commit_rolls_back_delete_relinking(self) -> None:
        ceo = self._add("Ada Lovelace")
        a = self._add("A", ceo.id)
        b = self._add("B", ceo.id)
        c = self._add("C", ceo.id)
        failure = OperationalError("COMMIT", {}, Exception("disk I/O error"))

        with patch.object(self.db, "commit", side_effect=failure):
            with self.assertRaises(OperationalError):
                delete_node(self.db, b.id)

        self.assertEqual(len(list_nodes(self.db)), 4)
        self.assertEqual(self._reload(a.id).next_id, b.id)
        self.assertEqual(self._reload(c.id).prev_id, b.id)
        self.assertEqual(self._reload(b.id).next_id, c.id)

    def test_insert_gives_up_after_repeated_conflicts(self) -> None:
        with patch("orgchart.services.org_nodes._append_to_group", return_value=None) as append:
            with self.assertRaises(ApiError) as ctx:
                self._add("Never Stored")

        self.assertEqual(append.call_count, org_nodes.CHAIN_WRITE_ATTEMPTS)
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "SIBLING_CHAIN_CONFLICT")
        self.assertEqual(list_nodes(self.db), [])


class SiblingGroupLockTests(unittest.TestCase):
    def test_lock_key_is_stable_signed_bigint(self) -> None:
        key = sibling_group_lock_key("4f1c")

        self.assertEqual(key, sibling_group_lock_key("4f1c"))
        self.assertNotEqual(key, sibling_group_lock_key(None))
        self.assertTrue(-(2**63) <= key < 2**63)

    def test_postgres_takes_transaction_advisory_lock(self) -> None:
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "postgresql"

        lock_sibling_group(db, "4f1c")

        statement, params = db.execute.call_args.args
        self.assertIn("pg_advisory_xact_lock", str(statement))
        self.assertEqual(params, {"key": sibling_group_lock_key("4f1c")})

    def test_other_dialects_skip_advisory_lock(self) -> None:
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "sqlite"

        lock_sibling_group(db, None)

        db.execute.assert_not_called()


class ConcurrentSiblingWriteTests(unittest.TestCase):
    """Two sessions on one database file; the second writer works from a stale read."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.engine = create_engine(f"sqlite:///{os.path.join(self._tmp.name, 'org.db')}")
        Base.metadata.create_all(self.engine)
        factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.first = factory()
        self.second = factory()
        self.ceo = create_node(self.first, OrgNodeCreate(name="CEO", position="CEO"))

    def tearDown(self) -> None:
        self.first.close()
        self.second.close()
        self.engine.dispose()
        self._tmp.cleanup()

    def _payload(self, name: str) -> OrgNodeCreate:
        return OrgNodeCreate(name=name, position="Staff", parent_id=self.ceo.id)

    def _children(self) -> tuple[list[str], list[str]]:
        self.first.expire_all()
        nodes = list_nodes(self.first)
        names = [child.name for child in build_tree(nodes)[0].children]
        return names, [issue.code for issue in check_sibling_chains(nodes).issues]

    def _insert_after_first_read(self, name: str):  # type: ignore[no-untyped-def]
        real_find = org_nodes.find_sibling_tail
        interleaved: list[str] = []

        def find(db, parent_id, *, lock=False):  # type: ignore[no-untyped-def]
            found = real_find(db, parent_id, lock=lock)
            if db is self.second and not interleaved:
                interleaved.append(name)
                create_node(self.first, self._payload(name))
            return found

        return patch("orgchart.services.org_nodes.find_sibling_tail", side_effect=find)

    def test_insert_after_tail_moved_links_to_new_tail(self) -> None:
        create_node(self.first, self._payload("T"))

        with self._insert_after_first_read("X"):
            late = create_node(self.second, self._payload("Y"))

        names, issues = self._children()
        self.assertEqual(names, ["T", "X", "Y"])
        self.assertEqual(issues, [])
        self.assertIsNone(late.next_id)

    def test_insert_into_group_filled_concurrently(self) -> None:
        with self._insert_after_first_read("X"):
            create_node(self.second, self._payload("Y"))

        names, issues = self._children()
        self.assertEqual(names, ["X", "Y"])
        self.assertEqual(issues, [])

    def test_delete_relinks_sibling_appended_concurrently(self) -> None:
        create_node(self.first, self._payload("T"))
        removed = create_node(self.first, self._payload("U"))
        real_pointers = org_nodes.sibling_ids_pointing_at
        interleaved: list[bool] = []

        def pointers(db, node):  # type: ignore[no-untyped-def]
            found = real_pointers(db, node)
            if db is self.second and not interleaved:
                interleaved.append(True)
                create_node(self.first, self._payload("X"))
            return found

        with patch("orgchart.services.org_nodes.sibling_ids_pointing_at", side_effect=pointers):
            deleted = delete_node(self.second, removed.id)

        self.assertEqual(deleted, [removed.id])
        names, issues = self._children()
        self.assertEqual(names, ["T", "X"])
        self.assertEqual(issues, [])


if __name__ == "__main__":
    unittest.main()
