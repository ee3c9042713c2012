# core/codec.py
"""
Firestore REST value codec.

Every value on the wire is a single-key object naming its type
(``{"stringValue": "x"}``, ``{"integerValue": "3"}``, ...). ``encode_value`` and
``decode_value`` translate between that tagged union and plain Python values;
``FieldReader`` gives resource decoders defaulted, never-raising access to a
document's ``fields`` map.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import math
import re


Wire = Dict[str, Any]

_FRACTION = re.compile(r"\.(\d+)")


# ========================================
# 🔁 Timestamps
# ========================================
def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with a ``Z`` suffix (naive datetimes are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(raw: str) -> datetime:
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Firestore may send nanoseconds; datetime only keeps microseconds.
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ========================================
# ⬆️ Encoding
# ========================================
def encode_value(value: Any) -> Wire:
    if value is None:
        return {"nullValue": None}
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, Enum):
        return encode_value(value.value)
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, (float, Decimal)):
        return {"doubleValue": float(value)}
    if isinstance(value, datetime):
        return {"timestampValue": format_timestamp(value)}
    if isinstance(value, date):
        return {"timestampValue": format_timestamp(datetime(value.year, value.month, value.day))}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value, drop_none=False)}}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def encode_fields(data: Dict[str, Any], drop_none: bool = True) -> Dict[str, Wire]:
    """Encode a flat dict into a ``fields`` map; ``None`` values are omitted by default."""
    return {
        key: encode_value(value)
        for key, value in data.items()
        if not (drop_none and value is None)
    }


# ========================================
# ⬇️ Decoding
# ========================================
def _decode_array(raw: Any) -> List[Any]:
    values = (raw or {}).get("values") or []
    return [decode_value(v) for v in values]


def _decode_map(raw: Any) -> Dict[str, Any]:
    return decode_fields((raw or {}).get("fields") or {})


_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "nullValue": lambda raw: None,
    "booleanValue": bool,
    "integerValue": int,
    "doubleValue": float,
    "timestampValue": parse_timestamp,
    "stringValue": str,
    "bytesValue": str,
    "referenceValue": str,
    "geoPointValue": dict,
    "arrayValue": _decode_array,
    "mapValue": _decode_map,
}


def decode_value(wire: Optional[Wire]) -> Any:
    if not wire:
        return None
    for tag, raw in wire.items():
        decoder = _DECODERS.get(tag)
        if decoder is not None:
            return decoder(raw)
    return None


def decode_fields(fields: Optional[Dict[str, Wire]]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in (fields or {}).items()}


# ========================================
# 📄 Document helpers
# ========================================
def document_id(name: str) -> str:
    """Last segment of a full resource name."""
    return name.rstrip("/").split("/")[-1]


def relative_path(name: str) -> str:
    """``projects/p/databases/(default)/documents/orgs/a`` -> ``orgs/a``."""
    marker = "/documents/"
    if marker in name:
        return name.split(marker, 1)[1]
    return name.strip("/")


def parent_org_id(name: str) -> Optional[str]:
    """Tenant id from a path shaped ``.../orgs/{orgId}/...``."""
    parts = relative_path(name).split("/")
    if len(parts) >= 2 and parts[0] == "orgs":
        return parts[1]
    return None


class FieldReader:
    """
    Defensive accessor over a document ``fields`` map.

    Every getter returns the caller's default when the field is absent or
    carries an unexpected type, so legacy or partially written documents
    always decode.
    """

    def __init__(self, fields: Optional[Dict[str, Wire]] = None):
        self.fields = fields or {}

    @classmethod
    def of(cls, document: Optional[Dict[str, Any]]) -> "FieldReader":
        return cls((document or {}).get("fields"))

    def has(self, name: str) -> bool:
        return name in self.fields

    def raw(self, name: str, default: Any = None) -> Any:
        if name not in self.fields:
            return default
        try:
            return decode_value(self.fields[name])
        except (TypeError, ValueError):
            return default

    def string(self, name: str, default: str = "") -> str:
        value = self.fields.get(name) or {}
        if "stringValue" in value:
            return value["stringValue"]
        return default

    def optional_string(self, name: str) -> Optional[str]:
        value = self.fields.get(name) or {}
        return value.get("stringValue")

    def number(self, name: str, default: float = 0.0) -> float:
        value = self.fields.get(name) or {}
        for tag in ("doubleValue", "integerValue"):
            if tag in value:
                try:
                    return float(value[tag])
                except (TypeError, ValueError):
                    return default
        return default

    def integer(self, name: str, default: int = 0) -> int:
        value = self.number(name, float(default))
        # Non-finite doubles arrive as "NaN" / "Infinity" strings.
        if not math.isfinite(value):
            return default
        return int(value)

    def boolean(self, name: str, default: bool = False) -> bool:
        value = self.fields.get(name) or {}
        if "booleanValue" in value:
            return bool(value["booleanValue"])
        return default

    def timestamp(self, name: str, default: Optional[datetime] = None) -> Optional[datetime]:
        value = self.fields.get(name) or {}
        # Older records stored ISO strings instead of timestamps.
        raw = value.get("timestampValue") or value.get("stringValue")
        if not raw:
            return default
        try:
            return parse_timestamp(raw)
        except ValueError:
            return default

    def array(self, name: str) -> List[Any]:
        value = self.fields.get(name) or {}
        try:
            return _decode_array(value.get("arrayValue"))
        except (TypeError, ValueError):
            return []

    def strings(self, name: str) -> List[str]:
        return [v for v in self.array(name) if isinstance(v, str)]

    def maps(self, name: str) -> List["FieldReader"]:
        value = self.fields.get(name) or {}
        values = (value.get("arrayValue") or {}).get("values") or []
        return [FieldReader((v.get("mapValue") or {}).get("fields")) for v in values if "mapValue" in v]

    def map(self, name: str) -> "FieldReader":
        value = self.fields.get(name) or {}
        return FieldReader((value.get("mapValue") or {}).get("fields"))
