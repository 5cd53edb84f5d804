"""Tests for row → point mapping."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest

from catalogsync.exceptions import MalformedRowError
from catalogsync.models.datasources import Datasource
from catalogsync.sync.payloads import (
    CATALOG_NAMESPACE,
    DATASOURCE_KEY,
    MARKER_KEY,
    SOURCE_ID_KEY,
    build_payload,
    embedding_text,
    payload_value,
    point_id_for,
    prepare_row,
    record_id_of,
)
from tests.conftest import datasource_fields


@pytest.fixture
def ds() -> Datasource:
    return Datasource(id="ds-1", **datasource_fields())


class TestPointIds:
    def test_deterministic(self):
        assert point_id_for("P001") == point_id_for("P001")
        assert point_id_for("P001") != point_id_for("P002")

    def test_uuid5_in_catalog_namespace(self):
        assert point_id_for("P001") == str(uuid.uuid5(CATALOG_NAMESPACE, "P001"))

    def test_record_id_stringified(self, ds):
        assert record_id_of(ds, {"codigo": 17}) == "17"
        assert record_id_of(ds, {"codigo": " P1 "}) == "P1"

    @pytest.mark.parametrize("row", [{}, {"codigo": None}, {"codigo": "   "}])
    def test_missing_record_id(self, ds, row):
        with pytest.raises(MalformedRowError):
            record_id_of(ds, row)


class TestEmbeddingText:
    def test_joins_fields_in_order(self):
        row = {"descripcion": "Taladro  percutor\n500W", "marca": "ACME"}
        assert embedding_text(row, ["marca", "descripcion"]) == "ACME | Taladro percutor 500W"

    def test_skips_empty_fields(self):
        row = {"descripcion": "Taladro", "marca": None, "modelo": "  "}
        assert embedding_text(row, ["descripcion", "marca", "modelo"]) == "Taladro"

    def test_no_text(self):
        with pytest.raises(MalformedRowError):
            embedding_text({"descripcion": ""}, ["descripcion", "marca"])


class TestPayload:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (Decimal("10"), 10),
            (Decimal("10.5"), 10.5),
            (datetime(2024, 1, 2, 3, 4), "2024-01-02T03:04:00"),
            (date(2024, 1, 2), "2024-01-02T00:00:00"),
            (b"\x00", None),
            ((1, Decimal("2")), [1, 2]),
            (uuid.UUID(int=0), "00000000-0000-0000-0000-000000000000"),
        ],
    )
    def test_payload_value(self, value, expected):
        assert payload_value(value) == expected

    def test_empty_mapping_copies_every_column(self, ds):
        row = {"codigo": "P1", "descripcion": "Taladro", "precio": Decimal("9.90")}
        payload = build_payload(ds, row, "P1", 5)

        assert payload["descripcion"] == "Taladro"
        assert payload["precio"] == 9.9
        assert payload[SOURCE_ID_KEY] == "P1"
        assert payload[DATASOURCE_KEY] == "ds-1"
        assert payload[MARKER_KEY] == 5

    def test_field_mapping_renames_and_selects(self):
        ds = Datasource(
            id="ds-1",
            **datasource_fields(field_mapping={"descripcion": "description", "marca": "brand"}),
        )
        payload = build_payload(ds, {"codigo": "P1", "descripcion": "Taladro", "marca": "X"}, "P1")

        assert payload == {
            "description": "Taladro",
            "brand": "X",
            SOURCE_ID_KEY: "P1",
            DATASOURCE_KEY: "ds-1",
        }

    def test_prepare_row(self, ds):
        row = {"codigo": "P1", "descripcion": "Taladro", "marca": "ACME", "updated_at": 3}
        prepared = prepare_row(ds, row, 3)

        assert prepared.record_id == "P1"
        assert prepared.point_id == point_id_for("P1")
        assert prepared.text == "Taladro | ACME"
        assert prepared.marker == 3
        assert prepared.payload[MARKER_KEY] == 3
