from datetime import datetime, timezone

import pytest

from core.codec import (
    FieldReader,
    decode_fields,
    decode_value,
    document_id,
    encode_fields,
    encode_value,
    parent_org_id,
    parse_timestamp,
    relative_path,
)
from models.models import Deliverable, DeliverableStatus, Invoice, Organization, Project

FULL_NAME = "projects/p/databases/(default)/documents/orgs/acme/deliverables/d1"


# ========================================
# Wire encoding
# ========================================
def test_scalars_are_tagged():
    assert encode_value("x") == {"stringValue": "x"}
    assert encode_value(3) == {"integerValue": "3"}
    assert encode_value(2.5) == {"doubleValue": 2.5}
    assert encode_value(True) == {"booleanValue": True}
    assert encode_value(None) == {"nullValue": None}


def test_enum_encodes_as_its_value():
    assert encode_value(DeliverableStatus.DELIVERED) == {"stringValue": "delivered"}


def test_timestamp_is_utc_with_z_suffix():
    wire = encode_value(datetime(2025, 3, 1, 12, 30, tzinfo=timezone.utc))
    assert wire == {"timestampValue": "2025-03-01T12:30:00.000000Z"}


def test_nested_values_round_trip():
    value = {"tags": ["a", "b"], "meta": {"count": 2, "ok": False}, "when": datetime(2024, 1, 1, tzinfo=timezone.utc)}
    assert decode_value(encode_value(value)) == value


def test_encode_fields_drops_none_unless_asked():
    assert encode_fields({"a": 1, "b": None}) == {"a": {"integerValue": "1"}}
    assert encode_fields({"b": None}, drop_none=False) == {"b": {"nullValue": None}}


def test_unsupported_type_is_rejected():
    with pytest.raises(TypeError):
        encode_value(object())


# ========================================
# Decoding
# ========================================
def test_integer_and_double_with_same_magnitude_compare_equal():
    assert decode_value({"integerValue": "5"}) == decode_value({"doubleValue": 5.0})


def test_nanosecond_timestamps_are_truncated():
    parsed = parse_timestamp("2024-05-01T10:00:00.123456789Z")
    assert parsed == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)


def test_unknown_tag_decodes_to_none():
    assert decode_value({"somethingNew": 1}) is None
    assert decode_fields({"x": {}}) == {"x": None}


def test_field_reader_defaults_on_missing_and_mistyped():
    f = FieldReader({"count": {"stringValue": "nope"}})
    assert f.number("count") == 0.0
    assert f.boolean("missing") is False
    assert f.array("missing") == []
    assert f.string("missing", "dflt") == "dflt"
    assert f.timestamp("missing") is None
    assert f.map("missing").string("anything") == ""


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
def test_field_reader_integer_ignores_non_finite_doubles(raw):
    f = FieldReader({"quantity": {"doubleValue": raw}})
    assert f.integer("quantity") == 0
    assert f.integer("quantity", 3) == 3


def test_field_reader_accepts_legacy_iso_string_timestamps():
    f = FieldReader({"dueDate": {"stringValue": "2024-02-03T00:00:00Z"}})
    assert f.timestamp("dueDate") == datetime(2024, 2, 3, tzinfo=timezone.utc)


# ========================================
# Resource paths and defensive model decoding
# ========================================
def test_path_helpers():
    assert document_id(FULL_NAME) == "d1"
    assert relative_path(FULL_NAME) == "orgs/acme/deliverables/d1"
    assert parent_org_id(FULL_NAME) == "acme"
    assert parent_org_id("projects/p/databases/(default)/documents/users/u1") is None


def test_empty_documents_decode_with_defaults():
    deliverable = Deliverable.from_document({"name": FULL_NAME, "fields": {}})
    assert deliverable.id == "d1"
    assert deliverable.org_id == "acme"
    assert deliverable.visible_to_client is False
    assert deliverable.client_approved is False

    project = Project.from_document({"name": FULL_NAME.replace("deliverables", "projects")})
    assert project.assigned_client_uids == []
    assert project.progress.percentage == 0.0

    invoice = Invoice.from_document({"name": FULL_NAME.replace("deliverables", "invoices"), "fields": {}})
    assert invoice.total == 0.0
    assert invoice.line_items == []

    org = Organization.from_document({"name": "projects/p/databases/(default)/documents/orgs/acme"})
    assert org.subscription.features == []
    assert org.settings.timezone == "UTC"


def test_models_serialise_camel_case():
    deliverable = Deliverable.from_document({
        "name": FULL_NAME,
        "fields": encode_fields({"visibleToClient": True, "clientFeedback": "Looks good"}),
    })
    dumped = deliverable.model_dump(by_alias=True, mode="json")
    assert dumped["visibleToClient"] is True
    assert dumped["clientFeedback"] == "Looks good"
    assert dumped["orgId"] == "acme"
