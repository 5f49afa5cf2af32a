"""
Snapshot codec.

Converts the local dataset to and from the versioned JSON document used by
archive backups and remote sync. Decoding is tolerant: malformed records are
skipped and reported, never fatal.

Usage:
    from storesync.snapshot import encode, dumps, decode

    snapshot = encode(dataset)
    payload = dumps(snapshot)

    result = decode(payload, principal_id="user-1")
    for error in result.errors:
        print(error)
"""

from storesync.snapshot.codec import (
    DatasetReader,
    DecodeResult,
    RecordError,
    Snapshot,
    SnapshotDecodeError,
    decode,
    dumps,
    encode,
    product_photo_table,
    to_document,
    with_asset_info,
)
from storesync.snapshot.fields import FieldError, epoch_or_iso, list_or_csv
from storesync.snapshot.schema import FORMAT_VERSION

__all__ = [
    "Snapshot",
    "DecodeResult",
    "RecordError",
    "DatasetReader",
    "SnapshotDecodeError",
    "FieldError",
    "FORMAT_VERSION",
    "encode",
    "decode",
    "dumps",
    "to_document",
    "product_photo_table",
    "with_asset_info",
    "epoch_or_iso",
    "list_or_csv",
]
