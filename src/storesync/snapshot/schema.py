"""
Wire schema of the snapshot document.

Maps every entity attribute to its camelCase document key and the
normalization kind used to decode it. Defaults come from the dataclass
definitions in storesync.storage.models, so they are declared only once.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, fields
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

FORMAT_VERSION = "1.0"

# Field kinds
REQUIRED = "required"  # non-blank string, record is skipped without it
TEXT = "text"
OPTIONAL_TEXT = "optional_text"
INT = "int"
FLOAT = "float"
OPTIONAL_FLOAT = "optional_float"
BOOL = "bool"
TIMESTAMP = "timestamp"
OPTIONAL_TIMESTAMP = "optional_timestamp"
ID_LIST = "id_list"
JSON_TEXT = "json_text"
JSON_OBJECT = "json_object"
INVOICE_ITEMS = "invoice_items"
# Owner ids fall back to the current principal when absent
OWNER = "owner"


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


@dataclass(frozen=True)
class FieldSpec:
    """One attribute of an entity and how it appears in the document."""

    attr: str
    key: str
    kind: str
    default: Any = None


@dataclass(frozen=True)
class SectionSpec:
    """One entity list of the document."""

    key: str
    attr: str
    model: type
    fields: tuple[FieldSpec, ...]
    # Attribute used to label per-record errors
    id_attr: str = "id"


def _specs(model: type, kinds: dict[str, str]) -> tuple[FieldSpec, ...]:
    specs = []
    for f in fields(model):
        default: Any = None
        if f.default is not MISSING:
            default = f.default
        elif f.default_factory is not MISSING:
            default = f.default_factory()
        specs.append(FieldSpec(f.name, camel_case(f.name), kinds[f.name], default))
    return tuple(specs)


PRODUCT_FIELDS = _specs(
    Product,
    {
        "id": REQUIRED,
        "name": TEXT,
        "description": TEXT,
        "sku": TEXT,
        "purchase_price": FLOAT,
        "sale_price": FLOAT,
        "stock_quantity": INT,
        "minimum_stock": INT,
        "custom_category_id": TEXT,
        "supplier": TEXT,
        "photo_url": OPTIONAL_TEXT,
        "thumbnail_url": OPTIONAL_TEXT,
        "image_backup_url": OPTIONAL_TEXT,
        "is_active": BOOL,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    },
)

CUSTOMER_FIELDS = _specs(
    Customer,
    {
        "id": REQUIRED,
        "name": TEXT,
        "company_name": TEXT,
        "email": TEXT,
        "phone": TEXT,
        "address": TEXT,
        "total_purchases": FLOAT,
        "last_purchase_date": OPTIONAL_TIMESTAMP,
        "notes": TEXT,
        "created_at": TIMESTAMP,
    },
)

SALE_FIELDS = _specs(
    Sale,
    {
        "id": REQUIRED,
        "customer_id": TEXT,
        "items": JSON_TEXT,
        "total": FLOAT,
        "date": TIMESTAMP,
        "payment_method": TEXT,
        "note": TEXT,
        "status": TEXT,
        "canceled_at": OPTIONAL_TIMESTAMP,
        "canceled_reason": TEXT,
    },
)

EXPENSE_FIELDS = _specs(
    Expense,
    {
        "id": REQUIRED,
        "description": TEXT,
        "amount": FLOAT,
        "category": TEXT,
        "date": TIMESTAMP,
        "notes": TEXT,
        "supplier": TEXT,
        "receipt_number": TEXT,
        "status": TEXT,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    },
)

COLLECTION_FIELDS = _specs(
    Collection,
    {
        "id": REQUIRED,
        "user_id": OWNER,
        "name": TEXT,
        "description": TEXT,
        "associated_customer_ids": ID_LIST,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
        "status": TEXT,
        "color": TEXT,
        "enable_chat": BOOL,
        "web_template": TEXT,
    },
)

COLLECTION_ITEM_FIELDS = _specs(
    CollectionItem,
    {
        "collection_id": REQUIRED,
        "product_id": REQUIRED,
        "notes": OPTIONAL_TEXT,
        "display_order": INT,
        "is_featured": BOOL,
        "special_price": OPTIONAL_FLOAT,
    },
)

INVOICE_FIELDS = _specs(
    Invoice,
    {
        "id": REQUIRED,
        "number": TEXT,
        "sale_id": TEXT,
        "customer_id": TEXT,
        "items": INVOICE_ITEMS,
        "subtotal": FLOAT,
        "tax": FLOAT,
        "total": FLOAT,
        "date": TIMESTAMP,
        "template": TEXT,
        "notes": TEXT,
    },
)

STOCK_MOVEMENT_FIELDS = _specs(
    StockMovement,
    {
        "id": REQUIRED,
        "product_id": TEXT,
        "movement_type": TEXT,
        "quantity": INT,
        "reason": TEXT,
        "description": OPTIONAL_TEXT,
        "reference_id": OPTIONAL_TEXT,
        "unit_cost": OPTIONAL_FLOAT,
        "previous_stock": INT,
        "new_stock": INT,
        "user_id": OPTIONAL_TEXT,
        "timestamp": TIMESTAMP,
        "notes": OPTIONAL_TEXT,
    },
)

CUSTOM_CATEGORY_FIELDS = _specs(
    CustomCategory,
    {
        "id": REQUIRED,
        "user_id": OWNER,
        "name": TEXT,
        "icon": TEXT,
        "color": TEXT,
        "description": TEXT,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
        "is_active": BOOL,
        "sort_order": INT,
    },
)

USER_PROFILE_FIELDS = _specs(
    UserProfile,
    {
        "id": OWNER,
        "name": TEXT,
        "email": TEXT,
        "phone": OPTIONAL_TEXT,
        "business_name": OPTIONAL_TEXT,
        "business_type": OPTIONAL_TEXT,
        "business_rut": OPTIONAL_TEXT,
        "business_address": OPTIONAL_TEXT,
        "business_phone": OPTIONAL_TEXT,
        "business_email": OPTIONAL_TEXT,
        "business_logo_url": OPTIONAL_TEXT,
        "business_social_media": JSON_OBJECT,
        "profile_photo_url": OPTIONAL_TEXT,
        "profile_photo_file_name": OPTIONAL_TEXT,
        "business_logo_file_name": OPTIONAL_TEXT,
        "is_email_verified": BOOL,
        "last_login_at": OPTIONAL_TIMESTAMP,
        "first_login_at": OPTIONAL_TIMESTAMP,
        "login_count": INT,
        "is_cloud_sync_enabled": BOOL,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    },
)

# Entity lists in document order
SECTIONS: tuple[SectionSpec, ...] = (
    SectionSpec("products", "products", Product, PRODUCT_FIELDS),
    SectionSpec("customers", "customers", Customer, CUSTOMER_FIELDS),
    SectionSpec("sales", "sales", Sale, SALE_FIELDS),
    SectionSpec("expenses", "expenses", Expense, EXPENSE_FIELDS),
    SectionSpec("collections", "collections", Collection, COLLECTION_FIELDS),
    SectionSpec(
        "collectionItems",
        "collection_items",
        CollectionItem,
        COLLECTION_ITEM_FIELDS,
        id_attr="collection_id",
    ),
    SectionSpec("invoices", "invoices", Invoice, INVOICE_FIELDS),
    SectionSpec("stockMovements", "stock_movements", StockMovement, STOCK_MOVEMENT_FIELDS),
    SectionSpec(
        "customCategories", "custom_categories", CustomCategory, CUSTOM_CATEGORY_FIELDS
    ),
)

# Legacy settings objects and the prefix their keys receive
LEGACY_SETTINGS = (
    ("userSettings", "user_"),
    ("companySettings", "company_"),
    ("invoiceSettings", "invoice_"),
)

LEGACY_METADATA_KEYS = ("backupDate", "appVersion", "userEmail")
