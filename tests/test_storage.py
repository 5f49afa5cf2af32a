"""
Tests for the local storage layer.

Uses Python's unittest module.
Tests the SQLite record store, its restore transactions, the preference
store and the dataset view the snapshot encoder reads.
"""

from __future__ import annotations

import json
import shutil
import tempfile
import unittest
from pathlib import Path

from storesync.storage import (
    Collection,
    CollectionItem,
    Customer,
    CustomCategory,
    Invoice,
    InvoiceItem,
    LocalDataset,
    PreferencePrincipalResolver,
    PreferenceStore,
    Product,
    RecordStore,
    Sale,
    StaticPrincipalResolver,
    StorageError,
)
from storesync.storage.preferences import (
    APP_PREFERENCES,
    BACKUP_DATA,
    LAST_BACKUP_TIME,
    LOGIN_TRACKING,
    THEME_PREFERENCES,
    UI_PREFERENCES,
    UI_PREFS_MIRROR,
    USER_DATA,
    USER_PREFERENCES,
)


class TestModels(unittest.TestCase):
    """Tests for row conversion of the record models."""

    def test_bool_and_json_columns(self) -> None:
        collection = Collection(
            id="col1", user_id="u1", associated_customer_ids=("c1", "c2"), enable_chat=False
        )

        row = dict(zip(Collection.columns(), collection.to_row()))

        self.assertEqual(row["enable_chat"], 0)
        self.assertEqual(json.loads(row["associated_customer_ids"]), ["c1", "c2"])
        self.assertEqual(Collection.from_row(row), collection)

    def test_invoice_items_round_trip(self) -> None:
        invoice = Invoice(id="i1", items=[InvoiceItem("Tea", 2, 3.5)])
        row = dict(zip(Invoice.columns(), invoice.to_row()))
        self.assertEqual(Invoice.from_row(row), invoice)


class StoreTestCase(unittest.TestCase):
    """Creates a fresh record store in a temp directory."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.store = RecordStore(Path(self.temp_dir) / "data" / "storesync.db")

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir)


class TestRecordStore(StoreTestCase):
    """Tests for RecordStore reads and writes."""

    def test_creates_database(self) -> None:
        self.assertTrue(self.store.db_path.exists())
        counts = self.store.count_records()
        self.assertEqual(counts["products"], 0)
        self.assertEqual(len(counts), 9)

    def test_reopen_existing_database(self) -> None:
        self.store.save_records([Product(id="p1")])
        reopened = RecordStore(self.store.db_path)
        self.assertEqual(len(reopened.list_records(Product)), 1)

    def test_save_and_list(self) -> None:
        self.store.save_records(
            [Product(id="p2", name="Tea"), Product(id="p1", name="Coffee"), Customer(id="c1")]
        )

        products = self.store.list_records(Product)

        self.assertEqual([p.id for p in products], ["p1", "p2"])
        self.assertEqual(products[0].name, "Coffee")
        self.assertEqual(len(self.store.list_records(Customer)), 1)

    def test_save_replaces_existing(self) -> None:
        self.store.save_records([Product(id="p1", name="Old")])
        self.store.save_records([Product(id="p1", name="New")])

        self.assertEqual(self.store.get_product("p1").name, "New")
        self.assertEqual(self.store.count_records()["products"], 1)

    def test_get_missing_product(self) -> None:
        self.assertIsNone(self.store.get_product("nope"))

    def test_collections_scoped_by_user(self) -> None:
        self.store.save_records(
            [
                Collection(id="a", user_id="u1"),
                Collection(id="b", user_id="u2"),
                CollectionItem("a", "p2", display_order=1),
                CollectionItem("a", "p1", display_order=0),
                CollectionItem("b", "p1"),
            ]
        )

        self.assertEqual([c.id for c in self.store.list_collections("u1")], ["a"])
        items = self.store.list_collection_items("u1")
        self.assertEqual([i.product_id for i in items], ["p1", "p2"])

    def test_list_categories_active_only(self) -> None:
        self.store.save_records(
            [
                CustomCategory(id="c1", user_id="u1", name="Drinks"),
                CustomCategory(id="c2", user_id="u1", name="Old", is_active=False),
                CustomCategory(id="c3", user_id="u2", name="Other"),
            ]
        )

        self.assertEqual(len(self.store.list_categories("u1")), 2)
        active = self.store.list_categories("u1", active_only=True)
        self.assertEqual([c.id for c in active], ["c1"])

    def test_update_product_photo(self) -> None:
        self.store.save_records([Product(id="p1", photo_url="https://x/p1.jpg")])

        self.assertTrue(self.store.update_product_photo("p1", "/local/p1.jpg"))
        self.assertFalse(self.store.update_product_photo("missing", "/local/x.jpg"))
        self.assertEqual(self.store.get_product("p1").photo_url, "/local/p1.jpg")

    def test_upsert_category_inserts_then_updates(self) -> None:
        """Test categories are matched by (user, name) and keep their id."""
        inserted = self.store.upsert_category(
            CustomCategory(id="c1", user_id="u1", name="Drinks", color="#000000")
        )
        updated = self.store.upsert_category(
            CustomCategory(id="c9", user_id="u1", name="Drinks", color="#FFFFFF")
        )

        self.assertFalse(inserted)
        self.assertTrue(updated)
        categories = self.store.list_categories("u1")
        self.assertEqual(len(categories), 1)
        self.assertEqual(categories[0].id, "c1")
        self.assertEqual(categories[0].color, "#FFFFFF")

    def test_statistics(self) -> None:
        self.store.save_records([Sale(id="s1")])

        stats = self.store.get_statistics()

        self.assertEqual(stats["tables"]["sales"], 1)
        self.assertGreater(stats["database_size_bytes"], 0)


class TestTransactions(StoreTestCase):
    """Tests for restore transactions and savepoints."""

    def test_commit(self) -> None:
        self.store.save_records([Product(id="old")])

        with self.store.transaction() as session:
            deleted = session.clear(Product)
            session.insert_many([Product(id="new1"), Product(id="new2")])

        self.assertEqual(deleted, 1)
        self.assertEqual(
            [p.id for p in self.store.list_records(Product)], ["new1", "new2"]
        )

    def test_rollback_on_exception(self) -> None:
        self.store.save_records([Product(id="old")])

        with self.assertRaises(RuntimeError):
            with self.store.transaction() as session:
                session.clear(Product)
                session.insert(Product(id="new"))
                raise RuntimeError("cancelled")

        self.assertEqual([p.id for p in self.store.list_records(Product)], ["old"])

    def test_failed_insert_rolls_back(self) -> None:
        self.store.save_records([Sale(id="keep")])

        with self.assertRaises(StorageError):
            with self.store.transaction() as session:
                session.clear(Sale)
                session.insert_many([Sale(id="s1")])
                session.insert(CollectionItem("missing", "p1"))

        self.assertEqual([s.id for s in self.store.list_records(Sale)], ["keep"])

    def test_repeated_id_last_wins(self) -> None:
        self.store.save_records([Product(id="p1", name="Stored")])

        with self.store.transaction() as session:
            written = session.insert_many(
                [Product(id="p1", name="First"), Product(id="p1", name="Second")]
            )

        self.assertEqual(written, 2)
        products = self.store.list_records(Product)
        self.assertEqual([(p.id, p.name) for p in products], [("p1", "Second")])

    def test_insert_empty_list(self) -> None:
        with self.store.transaction() as session:
            self.assertEqual(session.insert_many([]), 0)

    def test_savepoint_keeps_transaction_usable(self) -> None:
        with self.store.transaction() as session:
            session.insert(Customer(id="c1"))
            with self.assertRaises(StorageError):
                with session.savepoint():
                    session.insert(Customer(id="c2"))
                    session.insert(CollectionItem("missing", "p1"))
            session.insert(Customer(id="c3"))

        ids = [c.id for c in self.store.list_records(Customer)]
        self.assertEqual(ids, ["c1", "c3"])

    def test_item_requires_collection(self) -> None:
        with self.store.transaction() as session:
            with self.assertRaises(StorageError):
                with session.savepoint():
                    session.insert(CollectionItem("missing", "p1"))

        self.assertEqual(self.store.count_records()["collection_items"], 0)

    def test_clear_collections_cascades_to_items(self) -> None:
        self.store.save_records(
            [
                Collection(id="mine", user_id="u1"),
                Collection(id="theirs", user_id="u2"),
                CollectionItem("mine", "p1"),
                CollectionItem("theirs", "p1"),
            ]
        )

        with self.store.transaction() as session:
            self.assertEqual(session.clear_collections("u1"), 1)

        self.assertEqual([c.id for c in self.store.list_records(Collection)], ["theirs"])
        items = self.store.list_records(CollectionItem)
        self.assertEqual([i.collection_id for i in items], ["theirs"])

    def test_clear_categories_per_user(self) -> None:
        self.store.save_records(
            [
                CustomCategory(id="a", user_id="u1"),
                CustomCategory(id="b", user_id="u2"),
            ]
        )

        with self.store.transaction() as session:
            session.clear_categories("u1")

        self.assertEqual(
            [c.id for c in self.store.list_records(CustomCategory)], ["b"]
        )


class TestPreferences(unittest.TestCase):
    """Tests for the namespaced preference store."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        self.store = PreferenceStore(Path(self.temp_dir) / "preferences")

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir)

    def test_typed_getters(self) -> None:
        prefs = self.store.namespace("test")
        prefs.update({"name": "Ana", "count": 3, "scale": 1.5, "flag": True})

        self.assertEqual(prefs.get_string("name"), "Ana")
        self.assertEqual(prefs.get_int("count"), 3)
        self.assertEqual(prefs.get_float("scale"), 1.5)
        self.assertEqual(prefs.get_float("count"), 3.0)
        self.assertTrue(prefs.get_bool("flag"))

    def test_wrong_type_returns_default(self) -> None:
        prefs = self.store.namespace("test")
        prefs.update({"name": 5, "flag": "yes", "count": True})

        self.assertEqual(prefs.get_string("name", "x"), "x")
        self.assertFalse(prefs.get_bool("flag"))
        self.assertEqual(prefs.get_int("count", -1), -1)

    def test_persisted_across_instances(self) -> None:
        self.store.namespace("test").put("key", "value")

        reopened = PreferenceStore(self.store.base_dir)

        self.assertEqual(reopened.namespace("test").get_string("key"), "value")
        self.assertTrue((self.store.base_dir / "test.json").exists())

    def test_none_removes_key(self) -> None:
        prefs = self.store.namespace("test")
        prefs.update({"a": 1, "b": 2})
        prefs.put("a", None)
        prefs.remove("b")

        self.assertEqual(prefs.all(), {})

    def test_clear(self) -> None:
        prefs = self.store.namespace("test")
        prefs.put("a", 1)
        prefs.clear()
        self.assertFalse(prefs.contains("a"))

    def test_unreadable_file_is_empty(self) -> None:
        self.store.base_dir.mkdir(parents=True)
        (self.store.base_dir / "broken.json").write_text("{not json")

        self.assertEqual(self.store.namespace("broken").all(), {})

    def test_last_backup_time(self) -> None:
        self.assertIsNone(self.store.last_backup_time())

        self.store.namespace(BACKUP_DATA).put(LAST_BACKUP_TIME, 1_700_000_000_000)

        self.assertEqual(self.store.last_backup_time(), 1_700_000_000_000)

    def test_principal_resolvers(self) -> None:
        resolver = PreferencePrincipalResolver(self.store)
        self.assertIsNone(resolver.current_principal())

        self.store.namespace(USER_DATA).put("user_id", "user-1")

        self.assertEqual(resolver.current_principal(), "user-1")
        self.assertEqual(StaticPrincipalResolver("u2").current_principal(), "u2")


class TestLocalDataset(unittest.TestCase):
    """Tests for the dataset view read by the snapshot encoder."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        base = Path(self.temp_dir)
        self.records = RecordStore(base / "storesync.db")
        self.preferences = PreferenceStore(base / "preferences")

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir)

    def test_collections_need_principal(self) -> None:
        self.records.save_records(
            [Collection(id="col1", user_id="u1"), CollectionItem("col1", "p1")]
        )

        anonymous = LocalDataset(self.records, self.preferences)
        owner = LocalDataset(self.records, self.preferences, principal_id="u1")

        self.assertEqual(anonymous.collections(), [])
        self.assertEqual(anonymous.collection_items(), [])
        self.assertEqual(len(owner.collections()), 1)
        self.assertEqual(len(owner.collection_items()), 1)

    def test_user_profile(self) -> None:
        self.preferences.namespace(USER_PREFERENCES).update(
            {
                "user_name": "Ana",
                "user_email": "ana@example.com",
                "profile_photo_url": "/data/images/profile/me.jpg",
                "business_social_media": '{"instagram": "@ana"}',
                "email_verified": True,
                "user_created_at": 1000,
            }
        )
        self.preferences.namespace(LOGIN_TRACKING).update(
            {"last_login_timestamp": 5000, "first_login_timestamp": -1, "login_count": 4}
        )

        profile = LocalDataset(self.records, self.preferences, "u1").user_profile()

        self.assertEqual(profile.id, "u1")
        self.assertEqual(profile.name, "Ana")
        self.assertEqual(profile.profile_photo_file_name, "me.jpg")
        self.assertEqual(profile.business_social_media, {"instagram": "@ana"})
        self.assertTrue(profile.is_email_verified)
        self.assertTrue(profile.is_cloud_sync_enabled)
        self.assertEqual(profile.last_login_at, 5000)
        self.assertIsNone(profile.first_login_at)
        self.assertEqual(profile.login_count, 4)
        self.assertEqual(profile.created_at, 1000)

    def test_settings_flattened(self) -> None:
        self.preferences.namespace(APP_PREFERENCES).update(
            {"language": "es", "app_scale": "stale", "sound": True}
        )
        self.preferences.namespace(UI_PREFERENCES).put("app_scale", 1.2)
        self.preferences.namespace(UI_PREFS_MIRROR).put("app_scale", 1.3)
        self.preferences.namespace(THEME_PREFERENCES).update(
            {"current_theme": "dark", "is_dark_theme": True}
        )

        settings = LocalDataset(self.records, self.preferences).settings()

        self.assertEqual(settings["language"], "es")
        self.assertEqual(settings["sound"], "true")
        self.assertEqual(settings["app_scale"], "1.3")
        theme = json.loads(settings["theme"])
        self.assertEqual(theme["current_theme"], "dark")
        self.assertTrue(theme["is_dark"])
        self.assertEqual(theme["primary_color"], -1)

    def test_metadata(self) -> None:
        dataset = LocalDataset(self.records, self.preferences, app_version="2.0")
        self.assertEqual(
            dataset.metadata(), {"appVersion": "2.0", "backupType": "complete"}
        )


if __name__ == "__main__":
    unittest.main()
