"""
Data models for the local business dataset.

This module defines the dataclasses used to represent every record type that
takes part in backup and restore: products, customers, sales, expenses,
collections and their items, invoices, stock movements, custom categories,
and the user profile.

Schema Design Decisions:
    - Primary keys are caller-supplied strings, never generated here
    - Timestamps are epoch milliseconds (int) everywhere
    - References between records (sale -> customer, item -> collection) are
      plain strings matched by value, without enforced integrity
    - Nested values (invoice line items, id lists, social media) are stored
      as JSON TEXT columns in SQLite
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar


class Record:
    """
    Mixin that maps a dataclass to and from a SQLite row.

    Subclasses set TABLE and list the attributes that need conversion in
    BOOL_FIELDS and JSON_FIELDS. Everything else is stored as-is.
    """

    TABLE: ClassVar[str] = ""
    BOOL_FIELDS: ClassVar[tuple[str, ...]] = ()
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def columns(cls) -> list[str]:
        return [f.name for f in fields(cls)]  # type: ignore[arg-type]

    def to_row(self) -> tuple[Any, ...]:
        """Convert to a tuple ordered like columns()."""
        values = []
        for name in self.columns():
            value = getattr(self, name)
            if name in self.BOOL_FIELDS:
                value = 1 if value else 0
            elif name in self.JSON_FIELDS and value is not None:
                value = json.dumps(_plain(value))
            values.append(value)
        return tuple(values)

    @classmethod
    def from_row(cls, row: Any) -> Any:
        """Create from a sqlite3.Row (or any mapping keyed by column)."""
        kwargs = {}
        for name in cls.columns():
            value = row[name]
            if name in cls.BOOL_FIELDS:
                value = bool(value)
            elif name in cls.JSON_FIELDS and value is not None:
                value = cls._load_json_field(name, json.loads(value))
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def _load_json_field(cls, name: str, value: Any) -> Any:
        return value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)  # type: ignore[call-overload]


def _plain(value: Any) -> Any:
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, list):
        return [asdict(v) if hasattr(v, "__dataclass_fields__") else v for v in value]
    return value


@dataclass
class Product(Record):
    """
    Inventory product.

    photo_url is either a local absolute path or a remote object-storage URL.
    After an archive restore it is re-pointed at the extracted local file.
    """

    TABLE: ClassVar[str] = "products"
    BOOL_FIELDS: ClassVar[tuple[str, ...]] = ("is_active",)

    id: str
    name: str = ""
    description: str = ""
    sku: str = ""
    purchase_price: float = 0.0
    sale_price: float = 0.0
    stock_quantity: int = 0
    minimum_stock: int = 0
    custom_category_id: str = "default_1"
    supplier: str = ""
    photo_url: str | None = None
    thumbnail_url: str | None = None
    image_backup_url: str | None = None
    is_active: bool = True
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Customer(Record):
    """Customer record."""

    TABLE: ClassVar[str] = "customers"

    id: str
    name: str = ""
    company_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    total_purchases: float = 0.0
    last_purchase_date: int | None = None
    notes: str = ""
    created_at: int = 0


@dataclass
class Sale(Record):
    """
    Sale record.

    items holds the sold line items as raw JSON text, exactly as the app
    stores them.
    """

    TABLE: ClassVar[str] = "sales"

    id: str
    customer_id: str = ""
    items: str = "[]"
    total: float = 0.0
    date: int = 0
    payment_method: str = "cash"
    note: str = ""
    status: str = "completed"
    canceled_at: int | None = None
    canceled_reason: str = ""


@dataclass
class Expense(Record):
    """Expense record."""

    TABLE: ClassVar[str] = "expenses"

    id: str
    description: str = ""
    amount: float = 0.0
    category: str = ""
    date: int = 0
    notes: str = ""
    supplier: str = ""
    receipt_number: str = ""
    status: str = "completed"
    created_at: int = 0
    updated_at: int = 0


@dataclass
class Collection(Record):
    """
    Product collection shared with customers.

    Collections are owned by a user; restore only clears the collections of
    the current principal.
    """

    TABLE: ClassVar[str] = "collections"
    BOOL_FIELDS: ClassVar[tuple[str, ...]] = ("enable_chat",)
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("associated_customer_ids",)

    id: str
    user_id: str = "unknown"
    name: str = ""
    description: str = ""
    associated_customer_ids: tuple[str, ...] = ()
    created_at: int = 0
    updated_at: int = 0
    status: str = "active"
    color: str = "#FF5722"
    enable_chat: bool = True
    web_template: str = "MODERN"

    @classmethod
    def _load_json_field(cls, name: str, value: Any) -> Any:
        return tuple(value)


@dataclass
class CollectionItem(Record):
    """Product entry inside a collection. Has no id of its own."""

    TABLE: ClassVar[str] = "collection_items"
    BOOL_FIELDS: ClassVar[tuple[str, ...]] = ("is_featured",)

    collection_id: str
    product_id: str
    notes: str | None = None
    display_order: int = 0
    is_featured: bool = False
    special_price: float | None = None


@dataclass
class InvoiceItem:
    """Single invoice line."""

    description: str = ""
    quantity: int = 0
    unit_price: float = 0.0


@dataclass
class Invoice(Record):
    """Invoice with its line items."""

    TABLE: ClassVar[str] = "invoices"
    JSON_FIELDS: ClassVar[tuple[str, ...]] = ("items",)

    id: str
    number: str = ""
    sale_id: str = ""
    customer_id: str = ""
    items: list[InvoiceItem] = field(default_factory=list)
    subtotal: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    date: int = 0
    template: str = "CLASSIC"
    notes: str = ""

    @classmethod
    def _load_json_field(cls, name: str, value: Any) -> Any:
        return [InvoiceItem(**item) for item in value]


@dataclass
class StockMovement(Record):
    """Inventory movement (stock in/out)."""

    TABLE: ClassVar[str] = "stock_movements"

    id: str
    product_id: str = ""
    movement_type: str = "IN"
    quantity: int = 0
    reason: str = "MANUAL_ADJUSTMENT"
    description: str | None = None
    reference_id: str | None = None
    unit_cost: float | None = None
    previous_stock: int = 0
    new_stock: int = 0
    user_id: str | None = None
    timestamp: int = 0
    notes: str | None = None


@dataclass
class CustomCategory(Record):
    """User-defined product category."""

    TABLE: ClassVar[str] = "custom_categories"
    BOOL_FIELDS: ClassVar[tuple[str, ...]] = ("is_active",)

    id: str
    user_id: str
    name: str = ""
    icon: str = "📦"
    color: str = "#9E9E9E"
    description: str = ""
    created_at: int = 0
    updated_at: int = 0
    is_active: bool = True
    sort_order: int = 0


@dataclass
class UserProfile:
    """
    Profile of the user that owns the dataset.

    The profile is not a table: it lives in the preference store under the
    "user_preferences" and "login_tracking" namespaces.
    """

    id: str
    name: str = ""
    email: str = ""
    phone: str | None = None
    business_name: str | None = None
    business_type: str | None = None
    business_rut: str | None = None
    business_address: str | None = None
    business_phone: str | None = None
    business_email: str | None = None
    business_logo_url: str | None = None
    business_social_media: dict[str, Any] | None = None
    profile_photo_url: str | None = None
    profile_photo_file_name: str | None = None
    business_logo_file_name: str | None = None
    is_email_verified: bool = False
    last_login_at: int | None = None
    first_login_at: int | None = None
    login_count: int = 0
    is_cloud_sync_enabled: bool = True
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Tables cleared and re-filled by a restore, in insertion order
RECORD_TYPES: tuple[type[Record], ...] = (
    Product,
    Customer,
    Sale,
    Expense,
    Collection,
    CollectionItem,
    Invoice,
    StockMovement,
    CustomCategory,
)
