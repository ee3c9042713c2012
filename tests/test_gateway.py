import json

import httpx
import pytest

from core.database import FirestoreError, FirestoreGateway, field_filter, structured_query, where_equal

BASE = "https://firestore.test/v1/projects/p/databases/(default)/documents"


def make_gateway(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FirestoreGateway(client, BASE)


# ========================================
# Query builders
# ========================================
def test_structured_query_is_a_collection_group_by_default():
    query = structured_query(
        "deliverables",
        filters=[where_equal("orgId", "acme"), where_equal("visibleToClient", True)],
        order_by=[("dueDate", "ASCENDING")],
        limit=5,
    )
    assert query["from"] == [{"collectionId": "deliverables", "allDescendants": True}]
    assert query["where"]["compositeFilter"]["op"] == "AND"
    assert len(query["where"]["compositeFilter"]["filters"]) == 2
    assert query["orderBy"] == [{"field": {"fieldPath": "dueDate"}, "direction": "ASCENDING"}]
    assert query["limit"] == 5


def test_single_filter_is_not_wrapped():
    query = structured_query("orgs", filters=[field_filter("adminUids", "ARRAY_CONTAINS", "u1")], all_descendants=False)
    assert query["from"] == [{"collectionId": "orgs"}]
    assert query["where"]["fieldFilter"]["op"] == "ARRAY_CONTAINS"
    assert query["where"]["fieldFilter"]["value"] == {"stringValue": "u1"}


# ========================================
# REST calls
# ========================================
async def test_get_forwards_bearer_and_maps_404_to_none():
    seen = {}

    def handler(request: httpx.Request):
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(404, json={"error": {"status": "NOT_FOUND"}})

    gateway = make_gateway(handler)
    assert await gateway.get("orgs/missing", "tok") is None
    assert seen["auth"] == "Bearer tok"


async def test_run_query_skips_entries_without_documents():
    def handler(request: httpx.Request):
        assert request.url.path.endswith("/documents:runQuery")
        body = json.loads(request.content)
        assert body["structuredQuery"]["from"][0]["collectionId"] == "projects"
        return httpx.Response(200, json=[
            {"readTime": "2024-01-01T00:00:00Z"},
            {"document": {"name": f"{BASE}/orgs/a/projects/p1", "fields": {}}},
        ])

    docs = await make_gateway(handler).run_query(structured_query("projects"), "tok")
    assert [d["name"].split("/")[-1] for d in docs] == ["p1"]


async def test_patch_sends_update_mask_and_precondition():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["params"] = request.url.params.multi_items()
        return httpx.Response(200, json={"name": f"{BASE}/orgs/a", "fields": {}})

    await make_gateway(handler).patch(
        "orgs/a",
        {"subscription": {"mapValue": {"fields": {}}}},
        "tok",
        field_paths=["subscription.status", "subscription.updatedAt"],
        must_exist=True,
    )
    assert seen["method"] == "PATCH"
    assert ("updateMask.fieldPaths", "subscription.status") in seen["params"]
    assert ("updateMask.fieldPaths", "subscription.updatedAt") in seen["params"]
    assert ("currentDocument.exists", "true") in seen["params"]


async def test_add_posts_to_collection_under_parent():
    def handler(request: httpx.Request):
        assert request.method == "POST"
        assert request.url.path.endswith("/orgs/a/projects")
        return httpx.Response(200, json={"name": f"{BASE}/orgs/a/projects/new1", "fields": {}})

    created = await make_gateway(handler).add("orgs/a", "projects", {}, "tok")
    assert created["name"].endswith("/new1")


async def test_error_status_and_body_are_preserved():
    def handler(request: httpx.Request):
        return httpx.Response(403, text="PERMISSION_DENIED")

    with pytest.raises(FirestoreError) as exc:
        await make_gateway(handler).run_query(structured_query("projects"), "tok")
    assert exc.value.status_code == 403
    assert exc.value.body == "PERMISSION_DENIED"


async def test_delete_of_missing_document_is_not_an_error():
    def handler(request: httpx.Request):
        return httpx.Response(404, text="gone")

    await make_gateway(handler).delete("orgs/a/projects/p1", "tok")
