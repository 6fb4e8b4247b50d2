import os
import tempfile
import unittest

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from gedtree import create_app
from gedtree.changes import (
    accept,
    accept_record,
    latest_pending,
    pending_changes,
    pending_count,
    propose,
    reject,
    reject_record,
)
from gedtree.db import get_engine
from gedtree.models import Change, ChangeStatus, Individual
from gedtree.settings import create_user
from gedtree.tree import create_tree

OLD = "0 @X1@ INDI\n1 NAME Ann /Lee/"
NEW = "0 @X1@ INDI\n1 NAME Ann /Smith/"


class TestChangeLedger(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "test.sqlite")
        self.app = create_app({
            "TESTING": True,
            "DATABASE": self.db_path,
        })
        self.Session = sessionmaker(bind=get_engine())
        self.session = self.Session()
        self.tree = create_tree(self.session, "smith", "Smith family")
        self.user = create_user(self.session, "alice")
        self.session.commit()

    def tearDown(self):
        self.session.close()
        get_engine().dispose()
        self.tmpdir.cleanup()

    def _stored(self, xref="X1"):
        record = self.tree.records.get(xref)
        return record.gedcom if record else None

    def _propose(self, old, new):
        change = propose(self.session, self.tree.id, "X1", old, new, self.user)
        self.session.commit()
        return change

    def test_accept_creation(self):
        change = self._propose("", OLD)
        self.assertIsNone(self._stored())

        self.assertTrue(accept(self.session, change))
        self.session.commit()

        self.assertEqual(self._stored(), OLD)
        self.assertEqual(change.status, ChangeStatus.ACCEPTED.value)
        self.assertEqual(change.user_id, self.user.id)

    def test_accept_twice_is_a_no_op(self):
        change = self._propose("", OLD)
        accept(self.session, change)
        self.session.commit()

        self.assertFalse(accept(self.session, change))
        self.assertFalse(reject(self.session, change))
        self.session.commit()

        self.assertEqual(self._stored(), OLD)
        self.assertEqual(change.status, ChangeStatus.ACCEPTED.value)
        self.assertEqual(self.session.scalar(select(func.count()).select_from(Individual)), 1)

    def test_reject_update_keeps_old_content(self):
        self.tree.records.put(OLD)
        change = self._propose(OLD, NEW)

        self.assertTrue(reject(self.session, change))
        self.session.commit()

        self.assertEqual(self._stored(), OLD)
        self.assertEqual(change.status, ChangeStatus.REJECTED.value)
        self.assertFalse(accept(self.session, change))
        self.assertEqual(self._stored(), OLD)

    def test_reject_creation_leaves_nothing(self):
        change = self._propose("", OLD)
        reject(self.session, change)
        self.session.commit()
        self.assertIsNone(self._stored())
        self.assertIsNone(self.tree.records.make("X1"))

    def test_accept_deletion(self):
        self.tree.records.put(OLD)
        change = self._propose(OLD, "")

        self.assertTrue(self.tree.records.make("X1").is_pending_deletion)
        accept(self.session, change)
        self.session.commit()

        self.assertIsNone(self._stored())
        self.assertEqual(self.session.get(Change, change.id).status, ChangeStatus.ACCEPTED.value)

    def test_changes_resolved_in_another_session(self):
        change = self._propose("", OLD)

        other = self.Session()
        try:
            stale = other.get(Change, change.id)
            self.assertTrue(accept(self.session, change))
            self.session.commit()

            self.assertFalse(accept(other, stale))
            self.assertFalse(reject(other, stale))
            other.commit()
        finally:
            other.close()

        self.assertEqual(self.session.get(Change, change.id).status, ChangeStatus.ACCEPTED.value)

    def test_pending_queries(self):
        self.tree.records.put(OLD)
        first = self._propose(OLD, NEW)
        second = self._propose(NEW, NEW + "\n1 SEX F")

        self.assertEqual(pending_count(self.session, self.tree.id), 2)
        self.assertEqual([c.id for c in pending_changes(self.session, self.tree.id)], [first.id, second.id])
        self.assertEqual(pending_changes(self.session, self.tree.id, "X2"), [])
        self.assertEqual(latest_pending(self.session, self.tree.id, "X1").id, second.id)
        self.assertEqual(self.tree.records.make("X1").pending, NEW + "\n1 SEX F")

    def test_accept_record_applies_in_order(self):
        self.tree.records.put(OLD)
        self._propose(OLD, NEW)
        self._propose(NEW, NEW + "\n1 SEX F")

        self.assertEqual(accept_record(self.session, self.tree.id, "X1"), 2)
        self.session.commit()

        self.assertEqual(self._stored(), NEW + "\n1 SEX F")
        self.assertEqual(pending_count(self.session, self.tree.id), 0)

    def test_resolved_changes_are_kept(self):
        self.tree.records.put(OLD)
        accepted = self._propose(OLD, NEW)
        self._propose(NEW, "")
        accept(self.session, accepted)
        self.assertEqual(reject_record(self.session, self.tree.id, "X1"), 1)
        self.session.commit()

        statuses = sorted(self.session.scalars(select(Change.status).where(Change.tree_id == self.tree.id)))
        self.assertEqual(statuses, [ChangeStatus.ACCEPTED.value, ChangeStatus.REJECTED.value])
        self.assertEqual(self._stored(), NEW)


if __name__ == "__main__":
    unittest.main()
