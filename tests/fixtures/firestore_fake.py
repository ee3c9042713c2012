"""
In-memory stand-in for ``FirestoreGateway``.

Documents are kept in the REST wire format and structured queries are
evaluated against decoded values, so routes exercise the real codec.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple
import copy
import uuid

from core.codec import decode_value, encode_fields, relative_path
from core.database import FirestoreError

DOC_PREFIX = "projects/test/databases/(default)/documents/"


def _lookup(fields: Dict[str, Any], dotted: str) -> Any:
    """Decoded value at a dotted field path, or ``None``."""
    head, _, rest = dotted.partition(".")
    wire = fields.get(head)
    if wire is None:
        return None
    if not rest:
        return decode_value(wire)
    inner = (wire.get("mapValue") or {}).get("fields") or {}
    return _lookup(inner, rest)


def _wire_at(fields: Dict[str, Any], dotted: str) -> Optional[Dict[str, Any]]:
    head, _, rest = dotted.partition(".")
    wire = fields.get(head)
    if wire is None or not rest:
        return wire
    return _wire_at((wire.get("mapValue") or {}).get("fields") or {}, rest)


def _set_at(fields: Dict[str, Any], dotted: str, wire: Optional[Dict[str, Any]]) -> None:
    head, _, rest = dotted.partition(".")
    if not rest:
        if wire is None:
            fields.pop(head, None)
        else:
            fields[head] = copy.deepcopy(wire)
        return
    node = fields.setdefault(head, {"mapValue": {"fields": {}}})
    if "mapValue" not in node:
        node.clear()
        node["mapValue"] = {"fields": {}}
    inner = node["mapValue"].setdefault("fields", {})
    _set_at(inner, rest, wire)


def _matches(fields: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    if not where:
        return True
    if "compositeFilter" in where:
        return all(_matches(fields, f) for f in where["compositeFilter"]["filters"])
    flt = where["fieldFilter"]
    actual = _lookup(fields, flt["field"]["fieldPath"])
    expected = decode_value(flt["value"])
    op = flt["op"]
    if op == "EQUAL":
        return actual == expected
    if op == "ARRAY_CONTAINS":
        return isinstance(actual, list) and expected in actual
    if actual is None:
        return False
    if op == "GREATER_THAN_OR_EQUAL":
        return actual >= expected
    if op == "LESS_THAN_OR_EQUAL":
        return actual <= expected
    if op == "GREATER_THAN":
        return actual > expected
    if op == "LESS_THAN":
        return actual < expected
    raise AssertionError(f"unsupported op {op}")


class FakeFirestore:
    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, str, str]] = []

    # ---------- test helpers ----------
    def seed(self, path: str, data: Dict[str, Any]) -> str:
        self.docs[path] = encode_fields(data)
        return path

    def fields(self, path: str) -> Dict[str, Any]:
        """Decoded top-level fields of a stored document."""
        return {k: decode_value(v) for k, v in self.docs[path].items()}

    def paths(self, collection: str) -> List[str]:
        return [p for p in self.docs if p.split("/")[-2] == collection]

    def writes(self) -> List[Tuple[str, str, str]]:
        return [c for c in self.calls if c[0] in ("add", "patch", "delete")]

    def _document(self, path: str) -> Dict[str, Any]:
        return {"name": DOC_PREFIX + path, "fields": copy.deepcopy(self.docs[path])}

    # ---------- gateway surface ----------
    async def get(self, path: str, token: str) -> Optional[Dict[str, Any]]:
        path = relative_path(path)
        self.calls.append(("get", path, token))
        if path not in self.docs:
            return None
        return self._document(path)

    async def run_query(self, query: Dict[str, Any], token: str, parent: str = "") -> List[Dict[str, Any]]:
        self.calls.append(("query", query["from"][0]["collectionId"], token))
        selector = query["from"][0]
        collection = selector["collectionId"]
        group = selector.get("allDescendants", False)
        parent = parent.strip("/")

        matches = []
        for path, fields in self.docs.items():
            parts = path.split("/")
            if parts[-2] != collection:
                continue
            if not group and "/".join(parts[:-2]) != parent:
                continue
            if _matches(fields, query.get("where")):
                matches.append(path)

        for order in reversed(query.get("orderBy", [])):
            field = order["field"]["fieldPath"]
            # Firestore drops documents that lack an order-by field.
            matches = [p for p in matches if _lookup(self.docs[p], field) is not None]
            matches.sort(
                key=lambda p: _lookup(self.docs[p], field),
                reverse=order.get("direction") == "DESCENDING",
            )

        if query.get("limit") is not None:
            matches = matches[: query["limit"]]
        return [self._document(p) for p in matches]

    async def add(self, parent_path: str, collection_id: str, fields: Dict[str, Any], token: str) -> Dict[str, Any]:
        doc_id = uuid.uuid4().hex[:20]
        path = f"{parent_path.strip('/')}/{collection_id}/{doc_id}" if parent_path else f"{collection_id}/{doc_id}"
        self.calls.append(("add", path, token))
        self.docs[path] = copy.deepcopy(fields)
        return self._document(path)

    async def patch(
        self,
        path: str,
        fields: Dict[str, Any],
        token: str,
        field_paths: Optional[Sequence[str]] = None,
        must_exist: bool = False,
    ) -> Dict[str, Any]:
        path = relative_path(path)
        self.calls.append(("patch", path, token))
        if path not in self.docs:
            if must_exist:
                raise FirestoreError(404, f'{{"error": {{"status": "NOT_FOUND", "message": "No document to update: {path}"}}}}')
            self.docs[path] = {}
        stored = self.docs[path]
        for field_path in field_paths or list(fields.keys()):
            _set_at(stored, field_path, _wire_at(fields, field_path))
        return self._document(path)

    async def delete(self, path: str, token: str) -> None:
        path = relative_path(path)
        self.calls.append(("delete", path, token))
        self.docs.pop(path, None)
