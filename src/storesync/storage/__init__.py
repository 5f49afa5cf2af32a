"""
Local storage for the business dataset.

Records live in a SQLite database; profile, settings and bookkeeping values
live in namespaced JSON preference files.

Storage Structure:
    data/
        storesync.db                        # SQLite database
        preferences/
            {namespace}.json                # one file per namespace

Usage:
    from storesync.storage import RecordStore, PreferenceStore, LocalDataset

    records = RecordStore(settings.database_path)
    preferences = PreferenceStore(settings.preferences_path)
    dataset = LocalDataset(records, preferences, principal_id="user-1")
"""

from storesync.storage.dataset import LocalDataset
from storesync.storage.models import (
    RECORD_TYPES,
    Collection,
    CollectionItem,
    Customer,
    CustomCategory,
    Expense,
    Invoice,
    InvoiceItem,
    Product,
    Record,
    Sale,
    StockMovement,
    UserProfile,
)
from storesync.storage.preferences import (
    PreferencePrincipalResolver,
    Preferences,
    PreferenceStore,
    PrincipalResolver,
    StaticPrincipalResolver,
)
from storesync.storage.record_store import RecordStore, RestoreSession, StorageError

__all__ = [
    # Stores
    "RecordStore",
    "RestoreSession",
    "PreferenceStore",
    "Preferences",
    "LocalDataset",
    "PrincipalResolver",
    "PreferencePrincipalResolver",
    "StaticPrincipalResolver",
    "StorageError",
    # Models
    "Record",
    "RECORD_TYPES",
    "Product",
    "Customer",
    "Sale",
    "Expense",
    "Collection",
    "CollectionItem",
    "Invoice",
    "InvoiceItem",
    "StockMovement",
    "CustomCategory",
    "UserProfile",
]
