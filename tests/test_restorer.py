"""
Tests for the transactional restorer.

Uses Python's unittest module.
Tests atomic replacement of the dataset, resilient collection inserts,
post-transaction steps, cancellation and image re-linking.
"""

from __future__ import annotations

import json
import shutil
import tempfile
import unittest
from pathlib import Path
from typing import Any
from unittest.mock import patch

from storesync.assets.resolver import BUSINESS, INVENTORY, PROFILE
from storesync.backup import TransactionalRestorer
from storesync.progress import CancellationToken
from storesync.snapshot import Snapshot
from storesync.storage import (
    Collection,
    CollectionItem,
    Customer,
    CustomCategory,
    PreferenceStore,
    Product,
    RecordStore,
    RestoreSession,
    Sale,
    StaticPrincipalResolver,
    StorageError,
    UserProfile,
)
from storesync.storage.preferences import (
    APP_PREFERENCES,
    LOGIN_TRACKING,
    THEME_PREFERENCES,
    UI_PREFERENCES,
    UI_PREFS_MIRROR,
    USER_PREFERENCES,
)

USER = "user-1"


def sample_document(**overrides: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "version": "1.0",
        "timestamp": 1_700_000_000_000,
        "products": [
            {"id": "p1", "name": "Coffee", "salePrice": 15.0, "photoUrl": "/old/p1.jpg"},
            {"id": "p2", "name": "Tea", "salePrice": 3.5},
        ],
        "customers": [{"id": "c1", "name": "Ana"}],
        "sales": [{"id": "s1", "customerId": "c1", "total": 30.0}],
        "expenses": [{"id": "e1", "amount": 500.0}],
        "collections": [{"id": "col1", "userId": USER, "name": "Summer"}],
        "collectionItems": [
            {"collectionId": "col1", "productId": "p1"},
            {"collectionId": "col1", "productId": "p2", "displayOrder": 1},
        ],
        "invoices": [{"id": "i1", "number": "F-1", "items": []}],
        "stockMovements": [{"id": "m1", "productId": "p1", "quantity": 2}],
        "customCategories": [{"id": "cat1", "userId": USER, "name": "Drinks"}],
        "user": {
            "id": USER,
            "name": "Ana",
            "email": "ana@example.com",
            "businessSocialMedia": {"instagram": "@ana"},
            "lastLoginAt": 1_699_000_000_000,
            "loginCount": 7,
            "isEmailVerified": True,
        },
        "settings": {
            "language": "es",
            "app_scale": "1.25",
            "theme": json.dumps({"current_theme": "dark", "is_dark": True, "primary_color": 42}),
        },
    }
    document.update(overrides)
    return document


class RestorerTestCase(unittest.TestCase):
    """Creates record and preference stores in a temp directory."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        base = Path(self.temp_dir)
        self.records = RecordStore(base / "storesync.db")
        self.preferences = PreferenceStore(base / "preferences")
        self.restorer = TransactionalRestorer(
            self.records, self.preferences, StaticPrincipalResolver(USER)
        )
        self.reports: list[tuple[int, str]] = []

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir)

    def progress(self, percent: int, stage: str) -> None:
        self.reports.append((percent, stage))

    def ids(self, model: type) -> list[str]:
        return [r.id for r in self.records.list_records(model)]


class TestRestore(RestorerTestCase):
    """Tests for restoring a well-formed document."""

    def test_restore_replaces_dataset(self) -> None:
        self.records.save_records([Product(id="stale"), Customer(id="gone")])

        result = self.restorer.restore_from_json(
            json.dumps(sample_document()), self.progress
        )

        self.assertTrue(result.success, result.error)
        self.assertEqual(self.ids(Product), ["p1", "p2"])
        self.assertEqual(self.ids(Customer), ["c1"])
        self.assertEqual(result.counts["products"], 2)
        self.assertEqual(result.counts["collectionItems"], 2)
        self.assertEqual(result.counts["customCategories"], 1)
        self.assertEqual(result.records_restored, 11)
        self.assertEqual(result.message, "Restore completed: 11 records")
        self.assertEqual(result.skipped_records, [])
        self.assertEqual(result.post_errors, [])

    def test_progress_monotonic_to_100(self) -> None:
        self.restorer.restore_from_json(sample_document(), self.progress)

        percents = [p for p, _ in self.reports]
        self.assertEqual(percents, sorted(percents))
        self.assertEqual(percents[0], 0)
        self.assertIn(40, percents)
        self.assertIn(92, percents)
        self.assertEqual(self.reports[-1], (100, "Restore completed"))

    def test_restore_is_idempotent(self) -> None:
        first = self.restorer.restore_from_json(sample_document())
        snapshot_after_first = {
            model: self.records.list_records(model)
            for model in (Product, Customer, Sale, Collection, CollectionItem, CustomCategory)
        }

        second = self.restorer.restore_from_json(sample_document())

        self.assertEqual(first.counts, second.counts)
        for model, records in snapshot_after_first.items():
            self.assertEqual(self.records.list_records(model), records)

    def test_malformed_records_reported(self) -> None:
        document = sample_document(
            products=[{"id": "p1"}, {"name": "no id"}, {"id": "p3", "stockQuantity": "lots"}]
        )

        result = self.restorer.restore_from_json(document)

        self.assertTrue(result.success)
        self.assertEqual(self.ids(Product), ["p1"])
        self.assertEqual(len(result.skipped_records), 2)
        self.assertTrue(result.message.endswith(", 2 skipped"))

    def test_repeated_ids_last_wins(self) -> None:
        document = sample_document(
            products=[{"id": "p1", "name": "First"}, {"id": "p1", "name": "Second"}],
            sales=[{"id": "s1", "total": 1.0}, {"id": "s1", "total": 2.0}],
        )

        result = self.restorer.restore_from_json(document)

        self.assertTrue(result.success, result.error)
        self.assertEqual(
            [(p.id, p.name) for p in self.records.list_records(Product)], [("p1", "Second")]
        )
        self.assertEqual([s.total for s in self.records.list_records(Sale)], [2.0])

    def test_invalid_json_fails_before_touching_data(self) -> None:
        self.records.save_records([Product(id="keep")])

        result = self.restorer.restore_from_json(b"{broken", self.progress)

        self.assertFalse(result.success)
        self.assertIn("not valid JSON", result.error)
        self.assertEqual(self.reports[-1][0], 0)
        self.assertTrue(self.reports[-1][1].startswith("Error: "))
        self.assertEqual(self.ids(Product), ["keep"])


class TestAtomicity(RestorerTestCase):
    """Tests that a failed transaction leaves local data untouched."""

    def setUp(self) -> None:
        super().setUp()
        self.records.save_records(
            [Product(id="old-p"), Sale(id="old-s"), Collection(id="old-col", user_id=USER)]
        )

    def assertUnchanged(self) -> None:
        self.assertEqual(self.ids(Product), ["old-p"])
        self.assertEqual(self.ids(Sale), ["old-s"])
        self.assertEqual(self.ids(Collection), ["old-col"])

    def test_failed_insert_rolls_back(self) -> None:
        insert_many = RestoreSession.insert_many

        def failing_sales(session: RestoreSession, records: list) -> int:
            if records and isinstance(records[0], Sale):
                raise StorageError("Failed to insert into sales: disk I/O error")
            return insert_many(session, records)

        with patch.object(
            RestoreSession, "insert_many", autospec=True, side_effect=failing_sales
        ):
            result = self.restorer.restore_from_json(sample_document(), self.progress)

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Restore failed")
        self.assertIn("disk I/O error", result.error)
        self.assertEqual(self.reports[-1][0], 0)
        self.assertUnchanged()

    def test_cancelled_before_start(self) -> None:
        token = CancellationToken()
        token.cancel()

        result = self.restorer.restore_from_json(sample_document(), cancel=token)

        self.assertFalse(result.success)
        self.assertUnchanged()

    def test_cancelled_mid_transaction(self) -> None:
        token = CancellationToken()

        def cancel_midway(percent: int, stage: str) -> None:
            if percent >= 60:
                token.cancel("stopped by user")

        result = self.restorer.restore_from_json(sample_document(), cancel_midway, token)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "stopped by user")
        self.assertUnchanged()


class TestCollections(RestorerTestCase):
    """Tests for collection ownership and item-level resilience."""

    def test_orphan_item_skipped(self) -> None:
        document = sample_document(
            collectionItems=[
                {"collectionId": "col1", "productId": "p1"},
                {"collectionId": "missing", "productId": "p2"},
                {"collectionId": "col1", "productId": "p2"},
            ]
        )

        result = self.restorer.restore_from_json(document)

        self.assertTrue(result.success)
        self.assertEqual(result.counts["collectionItems"], 2)
        self.assertEqual(len(result.skipped_records), 1)
        self.assertTrue(result.skipped_records[0].startswith("collectionItems (missing/p2)"))
        items = self.records.list_records(CollectionItem)
        self.assertEqual([(i.collection_id, i.product_id) for i in items], [("col1", "p1"), ("col1", "p2")])

    def test_other_users_collections_kept(self) -> None:
        self.records.save_records(
            [
                Collection(id="mine", user_id=USER),
                Collection(id="theirs", user_id="user-2"),
                CustomCategory(id="their-cat", user_id="user-2", name="Drinks"),
            ]
        )

        self.restorer.restore_from_json(sample_document())

        self.assertEqual(self.ids(Collection), ["col1", "theirs"])
        self.assertEqual(
            [c.id for c in self.records.list_categories("user-2")], ["their-cat"]
        )

    def test_without_principal_collections_kept(self) -> None:
        self.records.save_records([Collection(id="existing", user_id=USER)])
        restorer = TransactionalRestorer(self.records, self.preferences)

        result = restorer.restore_from_json(sample_document())

        self.assertTrue(result.success)
        self.assertEqual(self.ids(Collection), ["col1", "existing"])

    def test_without_principal_snapshot_collection_replaces_existing(self) -> None:
        self.records.save_records([Collection(id="col1", user_id=USER, name="Old")])
        restorer = TransactionalRestorer(self.records, self.preferences)

        result = restorer.restore_from_json(sample_document())

        self.assertTrue(result.success, result.error)
        self.assertEqual(result.skipped_records, [])
        collections = self.records.list_records(Collection)
        self.assertEqual([(c.id, c.name) for c in collections], [("col1", "Summer")])

    def test_blank_principal_is_anonymous(self) -> None:
        restorer = TransactionalRestorer(
            self.records, self.preferences, StaticPrincipalResolver("  ")
        )
        self.assertIsNone(restorer.current_principal())


class TestPostSteps(RestorerTestCase):
    """Tests for categories, profile, login info and settings."""

    def test_category_upserted_by_name(self) -> None:
        result = self.restorer.restore_from_json(sample_document())

        categories = self.records.list_categories(USER)
        self.assertEqual([(c.id, c.name) for c in categories], [("cat1", "Drinks")])
        self.assertEqual(result.counts["customCategories"], 1)

    def test_profile_restored(self) -> None:
        self.restorer.restore_from_json(sample_document())

        prefs = self.preferences.namespace(USER_PREFERENCES)
        self.assertEqual(prefs.get_string("user_name"), "Ana")
        self.assertEqual(prefs.get_string("user_email"), "ana@example.com")
        self.assertTrue(prefs.get_bool("email_verified"))
        self.assertEqual(
            json.loads(prefs.get_string("business_social_media")), {"instagram": "@ana"}
        )
        self.assertFalse(prefs.contains("user_phone"))

    def test_login_info_restored(self) -> None:
        self.restorer.restore_from_json(sample_document())

        login = self.preferences.namespace(LOGIN_TRACKING)
        self.assertEqual(login.get_int("last_login_timestamp"), 1_699_000_000_000)
        self.assertEqual(login.get_int("first_login_timestamp"), -1)
        self.assertEqual(login.get_int("login_count"), 7)

    def test_settings_applied(self) -> None:
        self.restorer.restore_from_json(sample_document())

        self.assertEqual(
            self.preferences.namespace(APP_PREFERENCES).get_string("language"), "es"
        )
        self.assertEqual(self.preferences.namespace(UI_PREFS_MIRROR).get_float("app_scale"), 1.25)
        self.assertEqual(self.preferences.namespace(UI_PREFERENCES).get_float("app_scale"), 1.25)
        theme = self.preferences.namespace(THEME_PREFERENCES)
        self.assertEqual(theme.get_string("current_theme"), "dark")
        self.assertTrue(theme.get_bool("is_dark_theme"))
        self.assertEqual(theme.get_int("primary_color"), 42)
        self.assertEqual(theme.get_int("secondary_color"), -1)
        self.assertTrue(theme.get_bool("use_system_theme"))

    def test_bad_settings_do_not_fail_restore(self) -> None:
        document = sample_document(settings={"app_scale": "huge", "theme": "not json"})

        result = self.restorer.restore_from_json(document)

        self.assertTrue(result.success)
        self.assertEqual(len(result.post_errors), 2)
        self.assertFalse(self.preferences.namespace(UI_PREFERENCES).contains("app_scale"))
        self.assertEqual(self.ids(Product), ["p1", "p2"])

    def test_no_user_section(self) -> None:
        document = sample_document()
        del document["user"]

        result = self.restorer.restore_from_json(document)

        self.assertTrue(result.success)
        self.assertEqual(self.preferences.namespace(USER_PREFERENCES).all(), {})


class TestRelink(RestorerTestCase):
    """Tests for pointing photo references at extracted images."""

    def setUp(self) -> None:
        super().setUp()
        self.records.save_records(
            [Product(id="p1", photo_url="/old/p1.jpg"), Product(id="p2", photo_url="/old/p2.jpg")]
        )
        images = Path(self.temp_dir) / "images"
        self.extracted = {
            INVENTORY: [images / "inventory" / "p1.jpg", images / "inventory" / "other.jpg"],
            PROFILE: [images / "profile" / "me.jpg"],
            BUSINESS: [images / "business" / "logo.png"],
        }

    def test_relink_products_and_profile(self) -> None:
        snapshot = Snapshot(
            product_photos={"p1": "p1.jpg", "p2": "p2.jpg", "ghost": "other.jpg"},
            user=UserProfile(
                id=USER, profile_photo_file_name="me.jpg", business_logo_file_name="logo.png"
            ),
        )

        result = self.restorer.relink(snapshot, self.extracted)

        self.assertEqual(result.products, 1)
        self.assertEqual(result.total, 3)
        self.assertEqual(
            self.records.get_product("p1").photo_url, str(self.extracted[INVENTORY][0])
        )
        self.assertEqual(self.records.get_product("p2").photo_url, "/old/p2.jpg")
        prefs = self.preferences.namespace(USER_PREFERENCES)
        self.assertEqual(prefs.get_string("profile_photo_url"), str(self.extracted[PROFILE][0]))
        self.assertEqual(prefs.get_string("business_logo_url"), str(self.extracted[BUSINESS][0]))

    def test_without_side_table_nothing_relinked(self) -> None:
        result = self.restorer.relink(Snapshot(), self.extracted)

        self.assertEqual(result.total, 0)
        self.assertEqual(self.records.get_product("p1").photo_url, "/old/p1.jpg")


if __name__ == "__main__":
    unittest.main()
