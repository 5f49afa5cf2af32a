"""
Snapshot codec: local dataset <-> versioned JSON document.

encode() reads the whole dataset through a DatasetReader and builds an
immutable Snapshot. to_document()/dumps() produce the canonical wire form.
decode() parses a document back, skipping malformed records instead of
failing: each skipped record is reported as a RecordError so callers can
log or count them.

Wire format (keys in document order):

    {
      "version": "1.0",
      "timestamp": 1700000000000,
      "metadata": {"appVersion": "1.0", "backupDate": "...", ...},
      "products": [...], "customers": [...], "sales": [...],
      "expenses": [...], "collections": [...], "collectionItems": [...],
      "invoices": [...], "stockMovements": [...], "customCategories": [...],
      "user": {...},
      "settings": {"app_scale": "1.0", "theme": "{...}", ...},
      "productPhotos": [{"productId": "p1", "fileName": "p1.jpg"}],
      "assetChecksums": {"images/inventory/p1.jpg": "<sha256>"}
    }
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from storesync.snapshot.fields import (
    FieldError,
    epoch_or_iso,
    list_or_csv,
    now_millis,
    to_bool,
    to_float,
    to_int,
    to_json_object,
    to_json_text,
    to_optional_float,
    to_optional_text,
    to_required_text,
    to_setting_value,
    to_text,
)
from storesync.snapshot.schema import (
    BOOL,
    FLOAT,
    FORMAT_VERSION,
    ID_LIST,
    INT,
    INVOICE_ITEMS,
    JSON_OBJECT,
    JSON_TEXT,
    LEGACY_METADATA_KEYS,
    LEGACY_SETTINGS,
    OPTIONAL_FLOAT,
    OPTIONAL_TEXT,
    OPTIONAL_TIMESTAMP,
    OWNER,
    REQUIRED,
    SECTIONS,
    TEXT,
    TIMESTAMP,
    USER_PROFILE_FIELDS,
    FieldSpec,
    SectionSpec,
)
from storesync.storage.models import (
    Collection,
    CollectionItem,
    Customer,
    CustomCategory,
    Expense,
    Invoice,
    InvoiceItem,
    Product,
    Sale,
    StockMovement,
    UserProfile,
)

logger = logging.getLogger(__name__)

# Owner fallback per entity when neither the record nor the principal has one
_OWNER_FALLBACK: dict[type, str | None] = {
    Collection: "unknown",
    CustomCategory: None,
    UserProfile: "",
}


class SnapshotDecodeError(Exception):
    """Raised when a document is not parseable JSON or not an object."""

    pass


@dataclass(frozen=True)
class RecordError:
    """A record skipped during decoding."""

    section: str
    index: int | None
    record_id: str | None
    reason: str

    def __str__(self) -> str:
        location = self.section if self.index is None else f"{self.section}[{self.index}]"
        if self.record_id:
            location += f" ({self.record_id})"
        return f"{location}: {self.reason}"


@dataclass(frozen=True)
class Snapshot:
    """
    Immutable, versioned image of the whole dataset.

    Attributes:
        version: Document format version.
        timestamp: Creation time, epoch milliseconds.
        products ... custom_categories: One tuple per entity type.
        user: Profile of the owning user, if any.
        settings: Flat string-keyed settings map.
        metadata: appVersion, userEmail, backupDate, backupType.
        product_photos: Product id -> asset file name inside the archive.
        asset_checksums: Archive entry name -> SHA-256 hex digest.
    """

    version: str = FORMAT_VERSION
    timestamp: int = 0
    products: tuple[Product, ...] = ()
    customers: tuple[Customer, ...] = ()
    sales: tuple[Sale, ...] = ()
    expenses: tuple[Expense, ...] = ()
    collections: tuple[Collection, ...] = ()
    collection_items: tuple[CollectionItem, ...] = ()
    invoices: tuple[Invoice, ...] = ()
    stock_movements: tuple[StockMovement, ...] = ()
    custom_categories: tuple[CustomCategory, ...] = ()
    user: UserProfile | None = None
    settings: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)
    product_photos: dict[str, str] = field(default_factory=dict)
    asset_checksums: dict[str, str] = field(default_factory=dict)

    def counts(self) -> dict[str, int]:
        """Number of records per document section."""
        return {section.key: len(getattr(self, section.attr)) for section in SECTIONS}

    @property
    def record_count(self) -> int:
        return sum(self.counts().values())


@dataclass
class DecodeResult:
    """Decoded snapshot plus the records that had to be skipped."""

    snapshot: Snapshot
    errors: list[RecordError] = field(default_factory=list)


class DatasetReader(Protocol):
    """Read access to every collection the snapshot captures."""

    def products(self) -> list[Product]: ...

    def customers(self) -> list[Customer]: ...

    def sales(self) -> list[Sale]: ...

    def expenses(self) -> list[Expense]: ...

    def collections(self) -> list[Collection]: ...

    def collection_items(self) -> list[CollectionItem]: ...

    def invoices(self) -> list[Invoice]: ...

    def stock_movements(self) -> list[StockMovement]: ...

    def custom_categories(self) -> list[CustomCategory]: ...

    def user_profile(self) -> UserProfile | None: ...

    def settings(self) -> Mapping[str, str]: ...

    def metadata(self) -> Mapping[str, str]: ...


def _is_remote(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def product_photo_table(products: Iterable[Product]) -> dict[str, str]:
    """Map product id -> file name for every product with a local photo."""
    table = {}
    for product in products:
        path = product.photo_url
        if path and path.strip() and not _is_remote(path):
            name = os.path.basename(path)
            if name:
                table[product.id] = name
    return table


def _item_key(item: CollectionItem) -> tuple[str, int, str]:
    return (item.collection_id, item.display_order, item.product_id)


def encode(reader: DatasetReader, now: int | None = None) -> Snapshot:
    """
    Build a Snapshot from the current dataset.

    Records are sorted by primary key (collection items by collection id,
    display order and product id) so that encoding the same dataset twice
    yields identical documents apart from the timestamp.
    """
    if now is None:
        now = now_millis()

    products = tuple(sorted(reader.products(), key=lambda r: r.id))
    metadata = dict(reader.metadata())
    metadata.setdefault("backupDate", str(now))

    snapshot = Snapshot(
        version=FORMAT_VERSION,
        timestamp=now,
        products=products,
        customers=tuple(sorted(reader.customers(), key=lambda r: r.id)),
        sales=tuple(sorted(reader.sales(), key=lambda r: r.id)),
        expenses=tuple(sorted(reader.expenses(), key=lambda r: r.id)),
        collections=tuple(sorted(reader.collections(), key=lambda r: r.id)),
        collection_items=tuple(sorted(reader.collection_items(), key=_item_key)),
        invoices=tuple(sorted(reader.invoices(), key=lambda r: r.id)),
        stock_movements=tuple(sorted(reader.stock_movements(), key=lambda r: r.id)),
        custom_categories=tuple(sorted(reader.custom_categories(), key=lambda r: r.id)),
        user=reader.user_profile(),
        settings=dict(reader.settings()),
        metadata=metadata,
        product_photos=product_photo_table(products),
    )
    logger.info(f"Encoded snapshot with {snapshot.record_count} records")
    return snapshot


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------


def _encode_value(spec: FieldSpec, value: Any) -> Any:
    if spec.kind == ID_LIST:
        return list(value)
    if spec.kind == INVOICE_ITEMS:
        return [
            {
                "description": item.description,
                "quantity": item.quantity,
                "unitPrice": item.unit_price,
            }
            for item in value
        ]
    if spec.kind == JSON_OBJECT:
        return dict(value)
    return value


def _encode_record(record: Any, specs: tuple[FieldSpec, ...]) -> dict[str, Any]:
    document = {}
    for spec in specs:
        value = getattr(record, spec.attr)
        if value is None:
            continue
        document[spec.key] = _encode_value(spec, value)
    return document


def to_document(snapshot: Snapshot) -> dict[str, Any]:
    """Convert a snapshot to its canonical document form."""
    document: dict[str, Any] = {
        "version": snapshot.version,
        "timestamp": snapshot.timestamp,
        "metadata": dict(snapshot.metadata),
    }
    for section in SECTIONS:
        document[section.key] = [
            _encode_record(record, section.fields)
            for record in getattr(snapshot, section.attr)
        ]
    if snapshot.user is not None:
        document["user"] = _encode_record(snapshot.user, USER_PROFILE_FIELDS)
    document["settings"] = dict(snapshot.settings)
    document["productPhotos"] = [
        {"productId": product_id, "fileName": file_name}
        for product_id, file_name in sorted(snapshot.product_photos.items())
    ]
    document["assetChecksums"] = dict(sorted(snapshot.asset_checksums.items()))
    return document


def dumps(snapshot: Snapshot, indent: int | None = 2) -> bytes:
    """Serialize a snapshot to UTF-8 JSON bytes."""
    return json.dumps(to_document(snapshot), indent=indent, ensure_ascii=False).encode(
        "utf-8"
    )


# -----------------------------------------------------------------------------
# Decoding
# -----------------------------------------------------------------------------


class _Decoder:
    """Holds per-call decoding context: principal, clock and errors."""

    def __init__(self, principal_id: str | None, now: int) -> None:
        self.principal_id = principal_id
        self.now = now
        self.errors: list[RecordError] = []

    def error(
        self, section: str, index: int | None, record_id: str | None, reason: str
    ) -> None:
        record_error = RecordError(section, index, record_id, reason)
        logger.warning(f"Skipping {record_error}")
        self.errors.append(record_error)

    def field(self, spec: FieldSpec, value: Any, model: type) -> Any:
        kind = spec.kind
        if kind == REQUIRED:
            return to_required_text(value)
        if kind == TEXT:
            return to_text(value, spec.default)
        if kind == OPTIONAL_TEXT:
            return to_optional_text(value)
        if kind == INT:
            return to_int(value, spec.default)
        if kind == FLOAT:
            return to_float(value, spec.default)
        if kind == OPTIONAL_FLOAT:
            return to_optional_float(value)
        if kind == BOOL:
            return to_bool(value, spec.default)
        if kind == TIMESTAMP:
            return epoch_or_iso(value, self.now)
        if kind == OPTIONAL_TIMESTAMP:
            return epoch_or_iso(value, self.now, optional=True)
        if kind == ID_LIST:
            return list_or_csv(value)
        if kind == JSON_TEXT:
            return to_json_text(value, spec.default)
        if kind == JSON_OBJECT:
            return to_json_object(value)
        if kind == INVOICE_ITEMS:
            return self.invoice_items(value)
        if kind == OWNER:
            if value is not None:
                return to_text(value, "")
            owner = self.principal_id or _OWNER_FALLBACK[model]
            if owner is None:
                raise FieldError("missing owner and no authenticated user")
            return owner
        raise ValueError(f"Unknown field kind: {kind}")

    def invoice_items(self, value: Any) -> list[InvoiceItem]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise FieldError("expected array of invoice items")
        items = []
        for raw in value:
            if not isinstance(raw, dict):
                raise FieldError("invoice item is not an object")
            items.append(
                InvoiceItem(
                    description=to_text(raw.get("description"), ""),
                    quantity=to_int(raw.get("quantity"), 0),
                    unit_price=to_float(raw.get("unitPrice"), 0.0),
                )
            )
        return items

    def record(self, model: type, specs: tuple[FieldSpec, ...], raw: Any) -> Any:
        if not isinstance(raw, dict):
            raise FieldError("record is not an object")
        kwargs = {}
        for spec in specs:
            try:
                kwargs[spec.attr] = self.field(spec, raw.get(spec.key), model)
            except FieldError as e:
                raise FieldError(f"{spec.key}: {e}") from e
        return model(**kwargs)

    def section(self, section: SectionSpec, raw: Any) -> tuple[Any, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, list):
            self.error(section.key, None, None, "expected an array")
            return ()

        id_key = next(s.key for s in section.fields if s.attr == section.id_attr)
        records = []
        for index, item in enumerate(raw):
            try:
                records.append(self.record(section.model, section.fields, item))
            except FieldError as e:
                record_id = item.get(id_key) if isinstance(item, dict) else None
                self.error(
                    section.key,
                    index,
                    record_id if isinstance(record_id, str) else None,
                    str(e),
                )
        return tuple(records)

    def user(self, raw: Any) -> UserProfile | None:
        if raw is None:
            return None
        try:
            return self.record(UserProfile, USER_PROFILE_FIELDS, raw)
        except FieldError as e:
            self.error("user", None, None, str(e))
            return None

    def settings(self, document: Mapping[str, Any]) -> dict[str, str]:
        settings: dict[str, str] = {}
        sources = [(key, prefix) for key, prefix in LEGACY_SETTINGS]
        sources.append(("settings", ""))
        for key, prefix in sources:
            raw = document.get(key)
            if raw is None:
                continue
            if not isinstance(raw, dict):
                self.error(key, None, None, "expected an object")
                continue
            for name, value in raw.items():
                if value is not None:
                    settings[f"{prefix}{name}"] = to_setting_value(value)
        return settings

    def metadata(self, document: Mapping[str, Any]) -> dict[str, str]:
        metadata: dict[str, str] = {}
        raw = document.get("metadata")
        if isinstance(raw, dict):
            for name, value in raw.items():
                if value is not None:
                    metadata[name] = to_setting_value(value)
        elif raw is not None:
            self.error("metadata", None, None, "expected an object")

        for name in LEGACY_METADATA_KEYS:
            value = document.get(name)
            if name not in metadata and value is not None:
                metadata[name] = to_setting_value(value)
        return metadata

    def product_photos(self, raw: Any) -> dict[str, str]:
        if raw is None:
            return {}
        if isinstance(raw, dict):
            entries = [{"productId": k, "fileName": v} for k, v in raw.items()]
        elif isinstance(raw, list):
            entries = raw
        else:
            self.error("productPhotos", None, None, "expected an array or object")
            return {}

        photos = {}
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                self.error("productPhotos", index, None, "entry is not an object")
                continue
            product_id = entry.get("productId")
            file_name = entry.get("fileName")
            if not isinstance(product_id, str) or not product_id:
                self.error("productPhotos", index, None, "missing productId")
                continue
            if not isinstance(file_name, str) or not file_name:
                self.error("productPhotos", index, product_id, "missing fileName")
                continue
            photos[product_id] = file_name
        return photos

    def checksums(self, raw: Any) -> dict[str, str]:
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            self.error("assetChecksums", None, None, "expected an object")
            return {}
        return {
            name: digest
            for name, digest in raw.items()
            if isinstance(digest, str) and digest
        }


def _parse(raw: bytes | str | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise SnapshotDecodeError(f"Document is not valid UTF-8: {e}") from e
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SnapshotDecodeError(f"Document is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise SnapshotDecodeError(
            f"Document root must be an object, got {type(document).__name__}"
        )
    return document


def decode(
    raw: bytes | str | Mapping[str, Any],
    principal_id: str | None = None,
    now: int | None = None,
) -> DecodeResult:
    """
    Parse a snapshot document.

    Args:
        raw: JSON bytes or text, or an already parsed mapping.
        principal_id: Current user id, used for missing owner fields.
        now: Value for missing required timestamps. Defaults to the
            current time.

    Returns:
        DecodeResult with the snapshot and every skipped record.

    Raises:
        SnapshotDecodeError: If the document is not a JSON object.
    """
    document = _parse(raw)
    decoder = _Decoder(principal_id, now_millis() if now is None else now)

    try:
        timestamp = epoch_or_iso(document.get("timestamp"), decoder.now)
    except FieldError as e:
        decoder.error("timestamp", None, None, str(e))
        timestamp = decoder.now

    sections = {
        section.attr: decoder.section(section, document.get(section.key))
        for section in SECTIONS
    }

    snapshot = Snapshot(
        version=to_setting_value(document.get("version") or FORMAT_VERSION),
        timestamp=timestamp or 0,
        user=decoder.user(document.get("user")),
        settings=decoder.settings(document),
        metadata=decoder.metadata(document),
        product_photos=decoder.product_photos(document.get("productPhotos")),
        asset_checksums=decoder.checksums(document.get("assetChecksums")),
        **sections,
    )

    if decoder.errors:
        logger.warning(
            f"Decoded snapshot with {snapshot.record_count} records, "
            f"skipped {len(decoder.errors)} malformed entries"
        )
    else:
        logger.debug(f"Decoded snapshot with {snapshot.record_count} records")
    return DecodeResult(snapshot=snapshot, errors=decoder.errors)


def with_asset_info(
    snapshot: Snapshot,
    product_photos: Mapping[str, str],
    asset_checksums: Mapping[str, str],
) -> Snapshot:
    """Return a copy carrying the given photo side-table and checksums."""
    return replace(
        snapshot,
        product_photos=dict(product_photos),
        asset_checksums=dict(asset_checksums),
    )
