"""
Transactional restore of a snapshot into local storage.

A restore runs in three phases:

    Parsing (0-40%)                 decode the document (JSON path only)
    Transacting (40-92%)            replace all records in one transaction
    PostTransactionRestore (92-100%)
                                    categories, profile, login info, settings

The transaction either commits completely or leaves the previous dataset
untouched. Inside it, collections and collection items fall back to
item-by-item inserts so a few broken rows do not fail the whole restore.
The post steps run after commit and are isolated from each other: one
failing step is logged and recorded, the others still run.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from storesync.assets.resolver import BUSINESS, INVENTORY, PROFILE
from storesync.progress import (
    NEVER_CANCELLED,
    CancellationToken,
    OperationCancelledError,
    ProgressCallback,
    ProgressReporter,
)
from storesync.snapshot.codec import RecordError, Snapshot, SnapshotDecodeError, decode
from storesync.storage.models import (
    Collection,
    CollectionItem,
    Customer,
    Expense,
    Invoice,
    Product,
    Record,
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
    PrincipalResolver,
)
from storesync.storage.record_store import RecordStore, RestoreSession, StorageError

logger = logging.getLogger(__name__)

# Record types replaced wholesale, in insertion order
_BULK_SECTIONS: tuple[tuple[str, type[Record], str], ...] = (
    ("products", Product, "products"),
    ("customers", Customer, "customers"),
    ("sales", Sale, "sales"),
    ("expenses", Expense, "expenses"),
    ("invoices", Invoice, "invoices"),
    ("stockMovements", StockMovement, "stock_movements"),
)


class RestoreError(Exception):
    """Raised when a restore cannot be completed."""

    pass


@dataclass
class RestoreResult:
    """
    Result of a restore operation.

    Attributes:
        success: True if the records were committed.
        message: Human readable summary.
        counts: Records restored per document section.
        skipped_records: Records that were not restored, with the reason.
        post_errors: Post-transaction steps (or sub-values) that failed.
        images_restored: Image files extracted from an archive.
        relinked: Photo references pointed at extracted images.
        error: Error message if the restore failed.
    """

    success: bool
    message: str = ""
    counts: dict[str, int] = field(default_factory=dict)
    skipped_records: list[str] = field(default_factory=list)
    post_errors: list[str] = field(default_factory=list)
    images_restored: int = 0
    relinked: int = 0
    error: str | None = None

    @property
    def records_restored(self) -> int:
        return sum(self.counts.values())


@dataclass
class RelinkResult:
    """Photo references re-pointed after an archive restore."""

    products: int = 0
    profile_photo: Path | None = None
    business_logo: Path | None = None

    @property
    def total(self) -> int:
        return self.products + (self.profile_photo is not None) + (
            self.business_logo is not None
        )


def _record_key(record: Record) -> str:
    if isinstance(record, CollectionItem):
        return f"{record.collection_id}/{record.product_id}"
    return str(getattr(record, "id", "?"))


def _opt(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if kind is bool:
        return value if isinstance(value, bool) else default
    if kind is int:
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return default
    return value if isinstance(value, kind) else default


class TransactionalRestorer:
    """
    Applies snapshots to the local record and preference stores.

    Example:
        restorer = TransactionalRestorer(records, preferences, principals)
        result = restorer.restore_from_json(payload, progress=print)
        if not result.success:
            print(result.error)

    Args:
        records: Record store to replace.
        preferences: Preference store for profile and settings.
        principals: Resolves the current user. Collections and custom
            categories are only cleared when a user is signed in.
    """

    def __init__(
        self,
        records: RecordStore,
        preferences: PreferenceStore,
        principals: PrincipalResolver | None = None,
    ) -> None:
        self.records = records
        self.preferences = preferences
        self.principals = principals

    def current_principal(self) -> str | None:
        if self.principals is None:
            return None
        principal = self.principals.current_principal()
        return principal if principal and principal.strip() else None

    def restore_from_json(
        self,
        raw: bytes | str | Mapping[str, Any],
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> RestoreResult:
        """
        Decode a snapshot document and apply it.

        Returns:
            RestoreResult. An unreadable document or cancellation yields
            success=False; malformed records are skipped and listed.
        """
        cancel = cancel or NEVER_CANCELLED
        reporter = ProgressReporter(progress)
        try:
            reporter.report(0, "Reading backup...")
            cancel.raise_if_cancelled()
            decoded = decode(raw, principal_id=self.current_principal())
            reporter.report(40, "Backup parsed")
        except (SnapshotDecodeError, OperationCancelledError) as e:
            logger.error(f"Restore failed while parsing: {e}")
            reporter.fail(str(e))
            return RestoreResult(success=False, message="Restore failed", error=str(e))

        return self._apply(decoded.snapshot, reporter, cancel, decoded.errors)

    def apply(
        self,
        snapshot: Snapshot,
        progress: ProgressCallback | None = None,
        cancel: CancellationToken | None = None,
        decode_errors: Sequence[RecordError] = (),
    ) -> RestoreResult:
        """
        Replace the local dataset with a decoded snapshot.

        Args:
            snapshot: Snapshot to apply.
            progress: Receives 40-100%.
            cancel: Checked between stages and before commit.
            decode_errors: Records skipped while decoding, carried into the
                result.
        """
        return self._apply(
            snapshot, ProgressReporter(progress), cancel or NEVER_CANCELLED, decode_errors
        )

    def _apply(
        self,
        snapshot: Snapshot,
        reporter: ProgressReporter,
        cancel: CancellationToken,
        decode_errors: Sequence[RecordError],
    ) -> RestoreResult:
        principal = self.current_principal()
        skipped = [str(e) for e in decode_errors]

        try:
            cancel.raise_if_cancelled()
            reporter.report(40, "Restoring records...")
            with self.records.transaction() as session:
                counts = self._write_records(
                    session, snapshot, principal, reporter, cancel, skipped
                )
                reporter.report(91, "Committing...")
                cancel.raise_if_cancelled()
            reporter.report(92, "Records restored")
        except (StorageError, OperationCancelledError) as e:
            logger.error(f"Restore failed, local data left unchanged: {e}")
            reporter.fail(str(e))
            return RestoreResult(
                success=False,
                message="Restore failed",
                skipped_records=skipped,
                error=str(e),
            )

        post_errors: list[str] = []
        steps: list[tuple[int, str, Callable[[], None]]] = [
            (
                93,
                "Restoring custom categories...",
                lambda: self._restore_categories(snapshot, counts, skipped),
            ),
            (
                94,
                "Restoring user profile...",
                lambda: self._restore_profile(snapshot.user),
            ),
            (
                95,
                "Restoring login information...",
                lambda: self._restore_login_info(snapshot.user),
            ),
            (
                96,
                "Applying settings...",
                lambda: self._apply_settings(snapshot.settings, post_errors),
            ),
        ]
        for percent, stage, step in steps:
            reporter.report(percent, stage)
            try:
                step()
            except Exception as e:
                logger.warning(f"{stage.rstrip('.')} failed: {e}")
                post_errors.append(f"{stage.rstrip('.')}: {e}")

        result = RestoreResult(
            success=True,
            counts=counts,
            skipped_records=skipped,
            post_errors=post_errors,
        )
        result.message = f"Restore completed: {result.records_restored} records"
        if skipped:
            result.message += f", {len(skipped)} skipped"
        reporter.report(100, "Restore completed")
        logger.info(result.message)
        return result

    # -------------------------------------------------------------------------
    # Transaction
    # -------------------------------------------------------------------------

    def _write_records(
        self,
        session: RestoreSession,
        snapshot: Snapshot,
        principal: str | None,
        reporter: ProgressReporter,
        cancel: CancellationToken,
        skipped: list[str],
    ) -> dict[str, int]:
        for _, model, _ in _BULK_SECTIONS:
            session.clear(model)
        if principal:
            session.clear_collections(principal)
            session.clear_categories(principal)
        else:
            logger.info("No signed-in user, keeping existing collections and categories")
        reporter.report(50, "Local data cleared")

        counts: dict[str, int] = {}
        for index, (key, _, attr) in enumerate(_BULK_SECTIONS):
            cancel.raise_if_cancelled()
            records: tuple[Record, ...] = getattr(snapshot, attr)
            counts[key] = session.insert_many(list(records))
            reporter.report(50 + (index + 1) * 5, f"Restored {counts[key]} {key}")

        cancel.raise_if_cancelled()
        counts["collections"] = self._insert_resilient(
            session, "collections", snapshot.collections, skipped
        )
        reporter.report(85, f"Restored {counts['collections']} collections")

        cancel.raise_if_cancelled()
        counts["collectionItems"] = self._insert_resilient(
            session, "collectionItems", snapshot.collection_items, skipped
        )
        reporter.report(90, f"Restored {counts['collectionItems']} collection items")
        return counts

    def _insert_resilient(
        self,
        session: RestoreSession,
        section: str,
        records: Sequence[Collection] | Sequence[CollectionItem],
        skipped: list[str],
    ) -> int:
        """
        Insert records in bulk, falling back to one savepoint per record.

        Returns:
            Number of records inserted.
        """
        if not records:
            return 0
        try:
            with session.savepoint():
                return session.insert_many(list(records))
        except StorageError as e:
            logger.warning(f"Bulk insert of {section} failed, retrying one by one: {e}")

        inserted = 0
        for record in records:
            try:
                with session.savepoint():
                    session.insert(record)
            except StorageError as e:
                logger.warning(f"Skipping {section} record {_record_key(record)}: {e}")
                skipped.append(f"{section} ({_record_key(record)}): {e}")
            else:
                inserted += 1
        return inserted

    # -------------------------------------------------------------------------
    # Post-transaction steps
    # -------------------------------------------------------------------------

    def _restore_categories(
        self, snapshot: Snapshot, counts: dict[str, int], skipped: list[str]
    ) -> None:
        restored = 0
        for category in snapshot.custom_categories:
            try:
                updated = self.records.upsert_category(category)
            except StorageError as e:
                logger.warning(f"Skipping custom category {category.name}: {e}")
                skipped.append(f"customCategories ({category.id}): {e}")
                continue
            restored += 1
            logger.debug(
                f"{'Updated' if updated else 'Inserted'} custom category {category.name}"
            )
        counts["customCategories"] = restored

    def _restore_profile(self, user: UserProfile | None) -> None:
        if user is None:
            return
        social_media = (
            json.dumps(user.business_social_media)
            if user.business_social_media is not None
            else None
        )
        self.preferences.namespace(USER_PREFERENCES).update(
            {
                "user_name": user.name,
                "user_email": user.email,
                "user_phone": user.phone,
                "business_name": user.business_name,
                "business_type": user.business_type,
                "business_rut": user.business_rut,
                "business_address": user.business_address,
                "business_phone": user.business_phone,
                "business_email": user.business_email,
                "business_logo_url": user.business_logo_url,
                "business_social_media": social_media,
                "profile_photo_url": user.profile_photo_url,
                "email_verified": user.is_email_verified,
                "cloud_sync_enabled": user.is_cloud_sync_enabled,
                "user_created_at": user.created_at,
                "user_updated_at": user.updated_at,
            }
        )

    def _restore_login_info(self, user: UserProfile | None) -> None:
        if user is None:
            return
        self.preferences.namespace(LOGIN_TRACKING).update(
            {
                "last_login_timestamp": user.last_login_at or -1,
                "first_login_timestamp": user.first_login_at or -1,
                "login_count": user.login_count,
            }
        )

    def _apply_settings(self, settings: Mapping[str, str], problems: list[str]) -> None:
        if not settings:
            return
        self.preferences.namespace(APP_PREFERENCES).update(dict(settings))

        raw_scale = settings.get("app_scale")
        if raw_scale is not None:
            try:
                scale = float(raw_scale)
            except ValueError:
                logger.warning(f"Ignoring unparsable app_scale: {raw_scale!r}")
                problems.append(f"app_scale: unparsable value {raw_scale!r}")
            else:
                self.preferences.namespace(UI_PREFS_MIRROR).put("app_scale", scale)
                self.preferences.namespace(UI_PREFERENCES).put("app_scale", scale)

        raw_theme = settings.get("theme")
        if raw_theme is not None:
            try:
                theme = json.loads(raw_theme)
            except json.JSONDecodeError as e:
                theme = None
                logger.warning(f"Ignoring unparsable theme settings: {e}")
            if not isinstance(theme, dict):
                problems.append("theme: not a JSON object")
                return
            self.preferences.namespace(THEME_PREFERENCES).update(
                {
                    "current_theme": _opt(theme, "current_theme", str, "system"),
                    "primary_color": _opt(theme, "primary_color", int, -1),
                    "secondary_color": _opt(theme, "secondary_color", int, -1),
                    "is_dark_theme": _opt(theme, "is_dark", bool, False),
                    "use_system_theme": _opt(theme, "use_system_theme", bool, True),
                }
            )

    # -------------------------------------------------------------------------
    # Asset re-linking
    # -------------------------------------------------------------------------

    def relink(
        self, snapshot: Snapshot, extracted_images: Mapping[str, Sequence[Path]]
    ) -> RelinkResult:
        """
        Point photo references at images extracted from an archive.

        Products are matched through the snapshot's productPhotos side-table;
        without one (missing or empty) no product is re-linked. The profile
        photo and business logo are matched by the file names recorded in
        the user profile.
        """
        result = RelinkResult()

        def by_name(category: str) -> dict[str, Path]:
            return {Path(p).name: Path(p) for p in extracted_images.get(category, ())}

        inventory = by_name(INVENTORY)
        for product_id, file_name in sorted(snapshot.product_photos.items()):
            path = inventory.get(file_name)
            if path is None:
                logger.debug(f"No extracted image {file_name} for product {product_id}")
                continue
            try:
                if self.records.update_product_photo(product_id, str(path)):
                    result.products += 1
            except StorageError as e:
                logger.warning(f"Could not relink photo of product {product_id}: {e}")

        user = snapshot.user
        if user is not None:
            prefs = self.preferences.namespace(USER_PREFERENCES)
            profile = by_name(PROFILE).get(user.profile_photo_file_name or "")
            if profile is not None:
                prefs.put("profile_photo_url", str(profile))
                result.profile_photo = profile
            logo = by_name(BUSINESS).get(user.business_logo_file_name or "")
            if logo is not None:
                prefs.put("business_logo_url", str(logo))
                result.business_logo = logo

        logger.info(f"Relinked {result.total} image references")
        return result
