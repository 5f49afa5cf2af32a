"""
Field normalizers for snapshot documents.

Each normalizer takes one raw JSON value and returns the internal value, or
raises FieldError when the value cannot be interpreted. The decoder turns a
FieldError into a per-record error and skips that record.

Timestamps ("EpochOrIso") accept:
    - integer or float epoch milliseconds
    - numeric strings ("1700000000000")
    - ISO-like date-time strings ("2024-01-15T10:30:00", "2024-01-15",
      "2024-01-15T10:30:00Z"); naive values use the local time zone
    - null, absent or "" (now for required timestamps, None for optional)

Id lists ("ListOrCsv") accept a JSON array of strings or a comma-joined
string and normalize both to a tuple of unique, non-blank ids in first-seen
order.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime, timedelta
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class FieldError(ValueError):
    """Raised when a raw value cannot be normalized."""

    pass


def now_millis() -> int:
    return (datetime.now(UTC) - EPOCH) // timedelta(milliseconds=1)


def _type_name(value: Any) -> str:
    return type(value).__name__


def epoch_or_iso(value: Any, now: int, optional: bool = False) -> int | None:
    """
    Normalize a timestamp to epoch milliseconds.

    Args:
        value: Raw JSON value.
        now: Value used for a missing required timestamp.
        optional: Return None instead of now for a missing value.

    Raises:
        FieldError: If the value is present but not a timestamp.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None if optional else now

    if isinstance(value, bool):
        raise FieldError(f"expected timestamp, got {_type_name(value)}")

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise FieldError(f"invalid timestamp {value!r}")
        return int(value)

    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            pass
        else:
            if math.isfinite(number):
                return int(number)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise FieldError(f"invalid timestamp {value!r}") from e
        # Naive values are local time
        return (parsed.astimezone(UTC) - EPOCH) // timedelta(milliseconds=1)

    raise FieldError(f"expected timestamp, got {_type_name(value)}")


def list_or_csv(value: Any) -> tuple[str, ...]:
    """
    Normalize an id collection to an ordered set of strings.

    Raises:
        FieldError: If the value is neither an array nor a string, or the
            array holds non-scalar entries.
    """
    if value is None:
        return ()

    if isinstance(value, str):
        candidates: list[Any] = value.split(",")
    elif isinstance(value, list):
        candidates = value
    else:
        raise FieldError(f"expected array or string, got {_type_name(value)}")

    ids: dict[str, None] = {}
    for candidate in candidates:
        if candidate is None:
            continue
        if isinstance(candidate, bool) or not isinstance(candidate, (str, int)):
            raise FieldError(f"invalid id {candidate!r}")
        text = str(candidate).strip()
        if text:
            ids.setdefault(text, None)
    return tuple(ids)


def to_text(value: Any, default: str) -> str:
    """Normalize a string field. Numbers are accepted and stringified."""
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise FieldError(f"expected string, got {_type_name(value)}")


def to_optional_text(value: Any) -> str | None:
    """Like to_text, but null and "" both become None."""
    text = to_text(value, "")
    return text or None


def to_required_text(value: Any) -> str:
    """A non-blank string, as required for primary keys."""
    text = to_text(value, "")
    if not text.strip():
        raise FieldError("missing required value")
    return text


def to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise FieldError(f"expected integer, got {_type_name(value)}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise FieldError(f"invalid integer {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
        try:
            number = float(value.strip())
        except ValueError as e:
            raise FieldError(f"invalid integer {value!r}") from e
        if not math.isfinite(number):
            raise FieldError(f"invalid integer {value!r}")
        return int(number)
    raise FieldError(f"expected integer, got {_type_name(value)}")


def to_float(value: Any, default: float) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise FieldError(f"expected number, got {_type_name(value)}")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError as e:
            raise FieldError(f"invalid number {value!r}") from e
    else:
        raise FieldError(f"expected number, got {_type_name(value)}")
    if not math.isfinite(number):
        raise FieldError(f"invalid number {value!r}")
    return number


def to_optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return to_float(value, 0.0)


def to_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
    elif isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1"):
            return True
        if lowered in ("false", "0"):
            return False
    raise FieldError(f"invalid boolean {value!r}")


def to_json_text(value: Any, default: str) -> str:
    """
    A field stored as raw JSON text.

    Accepts the text itself or an already parsed array/object, which is
    re-serialized.
    """
    if value is None:
        return default
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    raise FieldError(f"expected JSON text, got {_type_name(value)}")


def to_json_object(value: Any) -> dict[str, Any] | None:
    """An object given either inline or as JSON text."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise FieldError(f"invalid JSON object: {e}") from e
    if not isinstance(value, dict):
        raise FieldError(f"expected object, got {_type_name(value)}")
    return value


def to_setting_value(value: Any) -> str:
    """Settings are strings; anything else is stored as its JSON form."""
    if isinstance(value, str):
        return value
    return json.dumps(value)
