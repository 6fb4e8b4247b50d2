import io
import os
import tempfile
import unittest

from sqlalchemy.orm import sessionmaker

from gedtree import create_app
from gedtree.db import get_engine
from gedtree.settings import PREF_TREE_ROLE, create_user, find_user
from gedtree.tree import find_tree

SAMPLE_GED = b"""0 HEAD
0 @I1@ INDI
1 NAME John /Smith/
1 SEX M
0 @I2@ INDI
1 NAME Jane /Doe/
1 SEX F
0 @I3@ INDI
1 NAME Baby /Smith/
1 SEX F
0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 CHIL @I3@
0 TRLR
"""


class TestApi(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "test.sqlite")

        self.app = create_app({
            "TESTING": True,
            "DATABASE": self.db_path,
        })
        self.Session = sessionmaker(bind=get_engine())
        with self.Session() as session:
            create_user(session, "alice")
            create_user(session, "bob")
            session.commit()

        self.client = self.app.test_client()

    def tearDown(self):
        get_engine().dispose()
        self.tmpdir.cleanup()

    def _create_tree(self, name="smith"):
        r = self.client.post("/api/trees", json={"name": name, "title": "Smith family"})
        self.assertEqual(r.status_code, 201)
        return r.get_json()["id"]

    def _make_moderator(self, tree_id, user_name):
        with self.Session() as session:
            find_tree(session, tree_id).set_user_preference(find_user(session, user_name), PREF_TREE_ROLE, "accept")
            session.commit()

    def test_health(self):
        r = self.client.get("/api/health")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()["ok"])

    def test_create_tree(self):
        tree_id = self._create_tree()
        self.assertIsInstance(tree_id, int)

        r = self.client.post("/api/trees", json={"name": "smith"})
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.get_json()["error_code"], "TREE_EXISTS")

        r = self.client.post("/api/trees", json={"name": "  "})
        self.assertEqual(r.status_code, 400)

    def test_body_must_be_json_object(self):
        r = self.client.post("/api/trees", json=[])
        self.assertEqual(r.status_code, 400)
        r = self.client.post("/api/trees", data="not json", content_type="application/json")
        self.assertEqual(r.status_code, 400)

        tree_id = self._create_tree()
        r = self.client.post(f"/api/trees/{tree_id}/records", json=["0 @@ INDI"], headers={"X-Gedtree-User": "alice"})
        self.assertEqual(r.status_code, 400)
        r = self.client.post(f"/api/trees/{tree_id}/records", json={"gedcom": 42}, headers={"X-Gedtree-User": "alice"})
        self.assertEqual(r.status_code, 400)

    def test_import_then_export(self):
        tree_id = self._create_tree()

        r = self.client.post(
            f"/api/trees/{tree_id}/import",
            data={"file": (io.BytesIO(SAMPLE_GED), "smith.ged")},
            content_type="multipart/form-data",
        )
        self.assertEqual(r.status_code, 200)
        imported = r.get_json()["imported"]
        self.assertEqual(imported["records"], 5)
        self.assertEqual(imported["filename"], "smith.ged")

        r = self.client.get(f"/api/trees/{tree_id}/export")
        self.assertEqual(r.status_code, 200)
        self.assertIn("smith.ged", r.headers["Content-Disposition"])
        self.assertTrue(r.data.startswith(b"0 HEAD\r\n"))
        self.assertIn(b"0 @F1@ FAM\r\n1 HUSB @I1@\r\n", r.data)
        self.assertTrue(r.data.endswith(b"0 TRLR\r\n"))

    def test_import_requires_file(self):
        tree_id = self._create_tree()
        r = self.client.post(f"/api/trees/{tree_id}/import", data={}, content_type="multipart/form-data")
        self.assertEqual(r.status_code, 400)

    def test_unknown_tree(self):
        r = self.client.get("/api/trees/999/export")
        self.assertEqual(r.status_code, 404)
        self.assertEqual(r.get_json()["error_code"], "TREE_NOT_FOUND")

    def test_create_record_and_moderate(self):
        tree_id = self._create_tree()

        r = self.client.post(f"/api/trees/{tree_id}/records", json={"kind": "individual", "gedcom": "0 @@ INDI"})
        self.assertEqual(r.status_code, 401)

        r = self.client.post(
            f"/api/trees/{tree_id}/records",
            json={"kind": "individual", "gedcom": "0 @@ INDI\n1 NAME Ann /Lee/"},
            headers={"X-Gedtree-User": "alice"},
        )
        self.assertEqual(r.status_code, 201)
        created = r.get_json()
        self.assertEqual(created["xref"], "X1")
        self.assertEqual(created["kind"], "individual")
        self.assertEqual(created["gedcom"], "")

        r = self.client.get(f"/api/trees/{tree_id}/changes")
        changes = r.get_json()
        self.assertEqual(len(changes), 1)
        self.assertEqual(changes[0]["user_name"], "alice")
        change_id = changes[0]["id"]

        r = self.client.post(f"/api/changes/{change_id}/accept", headers={"X-Gedtree-User": "alice"})
        self.assertEqual(r.status_code, 403)

        self._make_moderator(tree_id, "bob")
        r = self.client.post(f"/api/changes/{change_id}/accept", headers={"X-Gedtree-User": "bob"})
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()["applied"])
        self.assertEqual(r.get_json()["change"]["status"], "accepted")

        r = self.client.post(f"/api/changes/{change_id}/reject", headers={"X-Gedtree-User": "bob"})
        self.assertFalse(r.get_json()["applied"])
        self.assertEqual(self.client.get(f"/api/trees/{tree_id}/changes").get_json(), [])

    def test_invalid_record(self):
        tree_id = self._create_tree()
        r = self.client.post(
            f"/api/trees/{tree_id}/records",
            json={"kind": "family", "gedcom": "0 @@ INDI"},
            headers={"X-Gedtree-User": "alice"},
        )
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.get_json()["error_code"], "INVALID_RECORD")

        r = self.client.post(
            f"/api/trees/{tree_id}/records",
            json={"kind": "planet", "gedcom": "0 @@ INDI"},
            headers={"X-Gedtree-User": "alice"},
        )
        self.assertEqual(r.status_code, 400)

    def test_delete_tree(self):
        tree_id = self._create_tree()
        r = self.client.delete(f"/api/trees/{tree_id}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.client.get(f"/api/trees/{tree_id}/export").status_code, 404)


if __name__ == "__main__":
    unittest.main()
