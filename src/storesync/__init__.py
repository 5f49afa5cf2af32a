"""
storesync - backup, restore and sync for a small business dataset.

Serializes the local dataset (products, customers, sales, expenses,
collections, invoices, stock movements, custom categories, user profile and
settings) into a versioned snapshot document, packages it with product and
profile images into a portable archive, and restores either form back into
local storage in a single transaction.

Key Features:
    - Deterministic, versioned JSON snapshots with tolerant decoding
    - tar.gz archives with SHA-256 checksums for every image
    - All-or-nothing restores with per-item fallback for collections
    - Download and re-linking of product photos kept in object storage
    - Remote backup and restore for the signed-in user
"""

__version__ = "0.1.0"

from storesync.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
