"""
Read view of the whole local dataset.

LocalDataset combines the record store and the preference store into the
single reader the snapshot encoder consumes. Collections and custom
categories are scoped to the current principal; everything else is global.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any

from storesync.storage.models import (
    Collection,
    CollectionItem,
    Customer,
    CustomCategory,
    Expense,
    Invoice,
    Product,
    Sale,
    StockMovement,
    UserProfile,
)
from storesync.storage.preferences import (
    APP_PREFERENCES,
    LOGIN_TRACKING,
    THEME_PREFERENCES,
    UI_PREFERENCES,
    UI_PREFS_MIRROR,
    USER_PREFERENCES,
    PreferenceStore,
)
from storesync.storage.record_store import RecordStore

logger = logging.getLogger(__name__)


def _file_name(path: str | None) -> str | None:
    if not path:
        return None
    return os.path.basename(path) or None


class LocalDataset:
    """
    DatasetReader over the local stores.

    Args:
        records: SQLite record store.
        preferences: Preference store holding profile and settings.
        principal_id: Current user id. Without one no collections are read
            and only categories with an empty owner are returned.
        app_version: Reported in the snapshot metadata.
    """

    def __init__(
        self,
        records: RecordStore,
        preferences: PreferenceStore,
        principal_id: str | None = None,
        app_version: str = "1.0",
    ) -> None:
        self.records = records
        self.preferences = preferences
        self.principal_id = principal_id
        self.app_version = app_version

    def products(self) -> list[Product]:
        return self.records.list_records(Product)

    def customers(self) -> list[Customer]:
        return self.records.list_records(Customer)

    def sales(self) -> list[Sale]:
        return self.records.list_records(Sale)

    def expenses(self) -> list[Expense]:
        return self.records.list_records(Expense)

    def collections(self) -> list[Collection]:
        if not self.principal_id:
            return []
        return self.records.list_collections(self.principal_id)

    def collection_items(self) -> list[CollectionItem]:
        if not self.principal_id:
            return []
        return self.records.list_collection_items(self.principal_id)

    def invoices(self) -> list[Invoice]:
        return self.records.list_records(Invoice)

    def stock_movements(self) -> list[StockMovement]:
        return self.records.list_records(StockMovement)

    def custom_categories(self) -> list[CustomCategory]:
        return self.records.list_categories(self.principal_id or "", active_only=True)

    def user_profile(self) -> UserProfile | None:
        prefs = self.preferences.namespace(USER_PREFERENCES).all()
        login = self.preferences.namespace(LOGIN_TRACKING)

        social_media = None
        raw_social = prefs.get("business_social_media")
        if isinstance(raw_social, str) and raw_social:
            try:
                parsed = json.loads(raw_social)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed business_social_media preference")
            else:
                social_media = parsed if isinstance(parsed, dict) else None

        def text(key: str) -> str | None:
            value = prefs.get(key)
            return value if isinstance(value, str) else None

        def millis(key: str) -> int | None:
            # -1 marks "never" in login tracking
            value = login.get_int(key, -1)
            return value if value > 0 else None

        return UserProfile(
            id=self.principal_id or "",
            name=text("user_name") or "",
            email=text("user_email") or "",
            phone=text("user_phone"),
            business_name=text("business_name"),
            business_type=text("business_type"),
            business_rut=text("business_rut"),
            business_address=text("business_address"),
            business_phone=text("business_phone"),
            business_email=text("business_email"),
            business_logo_url=text("business_logo_url"),
            business_social_media=social_media,
            profile_photo_url=text("profile_photo_url"),
            profile_photo_file_name=_file_name(text("profile_photo_url")),
            business_logo_file_name=_file_name(text("business_logo_url")),
            is_email_verified=prefs.get("email_verified") is True,
            last_login_at=millis("last_login_timestamp"),
            first_login_at=millis("first_login_timestamp"),
            login_count=login.get_int("login_count", 0),
            is_cloud_sync_enabled=prefs.get("cloud_sync_enabled", True) is not False,
            created_at=_int(prefs.get("user_created_at")),
            updated_at=_int(prefs.get("user_updated_at")),
        )

    def settings(self) -> dict[str, str]:
        """
        Flatten app preferences, UI scale and theme into a string map.

        ``app_scale`` and ``theme`` always reflect the dedicated namespaces,
        overriding stale copies kept in app_preferences.
        """
        settings: dict[str, str] = {}
        for key, value in self.preferences.namespace(APP_PREFERENCES).all().items():
            settings[key] = value if isinstance(value, str) else json.dumps(value)

        mirror = self.preferences.namespace(UI_PREFS_MIRROR)
        main = self.preferences.namespace(UI_PREFERENCES)
        scale = mirror.get_float("app_scale", main.get_float("app_scale", 1.0))
        settings["app_scale"] = str(scale)

        theme = self.preferences.namespace(THEME_PREFERENCES)
        settings["theme"] = json.dumps(
            {
                "current_theme": theme.get_string("current_theme", "system"),
                "primary_color": theme.get_int("primary_color", -1),
                "secondary_color": theme.get_int("secondary_color", -1),
                "is_dark": theme.get_bool("is_dark_theme", False),
                "use_system_theme": theme.get_bool("use_system_theme", True),
            }
        )
        return settings

    def metadata(self) -> dict[str, str]:
        email = self.preferences.namespace(USER_PREFERENCES).get_string("user_email")
        metadata = {"appVersion": self.app_version, "backupType": "complete"}
        if email:
            metadata["userEmail"] = email
        return metadata


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value
