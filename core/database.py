from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote
import logging

import httpx
from fastapi import Request

from core.codec import encode_value
from core.config import settings

logger = logging.getLogger(__name__)


# ============================================================
# ✅ Gateway errors
# ============================================================
class FirestoreError(Exception):
    """Non-2xx answer from the Firestore REST surface, status and body verbatim."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Firestore REST error {status_code}: {body}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


# ============================================================
# ✅ Structured query builders
# ============================================================
def field_filter(field: str, op: str, value: Any) -> Dict[str, Any]:
    return {
        "fieldFilter": {
            "field": {"fieldPath": field},
            "op": op,
            "value": encode_value(value),
        }
    }


def where_equal(field: str, value: Any) -> Dict[str, Any]:
    return field_filter(field, "EQUAL", value)


def combine_filters(filters: Sequence[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not filters:
        return None
    if len(filters) == 1:
        return filters[0]
    return {"compositeFilter": {"op": "AND", "filters": list(filters)}}


def structured_query(
    collection: str,
    *,
    filters: Sequence[Dict[str, Any]] = (),
    order_by: Iterable[Tuple[str, str]] = (),
    limit: Optional[int] = None,
    all_descendants: bool = True,
) -> Dict[str, Any]:
    """
    Build a ``structuredQuery`` body.

    ``all_descendants`` makes it a collection-group query: the named
    sub-collection is scanned under every tenant.
    """
    selector: Dict[str, Any] = {"collectionId": collection}
    if all_descendants:
        selector["allDescendants"] = True
    query: Dict[str, Any] = {"from": [selector]}
    where = combine_filters(filters)
    if where:
        query["where"] = where
    orders = [{"field": {"fieldPath": f}, "direction": d} for f, d in order_by]
    if orders:
        query["orderBy"] = orders
    if limit is not None:
        query["limit"] = limit
    return query


# ============================================================
# ✅ Firestore REST gateway
# ============================================================
class FirestoreGateway:
    """
    Thin async client over the Firestore REST API.

    Every call forwards the bearer token it is given, so Firestore security
    rules run against the end user (or the service account for webhooks).
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str = "") -> str:
        path = path.strip("/")
        if not path:
            return self.base_url
        return f"{self.base_url}/{quote(path, safe='/')}"

    async def _request(self, method: str, url: str, token: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        response = await self.client.request(method, url, headers=headers, **kwargs)
        if response.is_error:
            raise FirestoreError(response.status_code, response.text)
        return response

    async def get(self, path: str, token: str) -> Optional[Dict[str, Any]]:
        """Single document, or ``None`` when it does not exist."""
        try:
            response = await self._request("GET", self._url(path), token)
        except FirestoreError as e:
            if e.is_not_found:
                return None
            raise
        return response.json()

    async def run_query(
        self, query: Dict[str, Any], token: str, parent: str = ""
    ) -> List[Dict[str, Any]]:
        """Run a structured query; returns matching documents in store order."""
        response = await self._request(
            "POST", f"{self._url(parent)}:runQuery", token, json={"structuredQuery": query}
        )
        # Entries without a document carry only readTime / skippedResults.
        return [entry["document"] for entry in response.json() if entry.get("document")]

    async def add(
        self, parent_path: str, collection_id: str, fields: Dict[str, Any], token: str
    ) -> Dict[str, Any]:
        """Create a document with a store-generated id; the response carries its full name."""
        url = self._url(f"{parent_path.strip('/')}/{collection_id}" if parent_path else collection_id)
        response = await self._request("POST", url, token, json={"fields": fields})
        return response.json()

    async def patch(
        self,
        path: str,
        fields: Dict[str, Any],
        token: str,
        field_paths: Optional[Sequence[str]] = None,
        must_exist: bool = False,
    ) -> Dict[str, Any]:
        """
        Merge-patch: only the masked field paths change.

        The mask defaults to the top-level keys of ``fields``. Pass dotted
        ``field_paths`` to touch individual members of a map field.
        """
        params: List[Tuple[str, str]] = [
            ("updateMask.fieldPaths", p) for p in (field_paths or list(fields.keys()))
        ]
        if must_exist:
            params.append(("currentDocument.exists", "true"))
        response = await self._request(
            "PATCH", self._url(path), token, params=params, json={"fields": fields}
        )
        return response.json()

    async def delete(self, path: str, token: str) -> None:
        try:
            await self._request("DELETE", self._url(path), token)
        except FirestoreError as e:
            if not e.is_not_found:
                raise


# ============================================================
# ✅ Lifecycle (called from the app lifespan)
# ============================================================
def create_gateway() -> FirestoreGateway:
    client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    logger.info(f"✅ Firestore gateway ready: {settings.FIRESTORE_URL}")
    return FirestoreGateway(client, settings.FIRESTORE_URL)


async def close_gateway(gateway: FirestoreGateway) -> None:
    await gateway.client.aclose()


# ============================================================
# ✅ Dependency: FastAPI gateway accessor
# ============================================================
def get_gateway(request: Request) -> FirestoreGateway:
    return request.app.state.gateway
