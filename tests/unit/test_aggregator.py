from __future__ import annotations

import pytest

from ledger_import.mapping.resolver import MappingResolver
from ledger_import.models.mapping_entry import UNMAPPED, MappingEntry, MappingStatus
from ledger_import.services.aggregator import (
    AggregationContext,
    ColumnExtraction,
    ExtractedMeasure,
    FixedExtraction,
    aggregate,
    to_number,
)

CTX = AggregationContext(
    year=2024,
    month=7,
    scenario="ACT",
    currency="EUR",
    organizational_unit="H001",
    version="MAIN",
    batch_id="test_2024-07-01T00-00-00-000000Z",
)


@pytest.fixture()
def resolver() -> MappingResolver:
    return MappingResolver.from_entries(
        [
            MappingEntry(10, "X", None, "A01", "D01"),
            MappingEntry(10, "P", None, "A05", None),
            MappingEntry(10, "Rooms - Group", None, "A100", "D10"),
        ]
    )


def test_sum_of_same_identifier_with_zero_dropped(resolver):
    rows = [{"acct": "X", "amount": "10"}, {"acct": "X", "amount": "-3"}, {"acct": "X", "amount": "0"}]
    result = aggregate(rows, resolver, ColumnExtraction("acct", (("", "amount"),)), CTX)
    assert len(result.records) == 1
    rec = result.records[0]
    assert rec.combo_id == "D01_A01"
    assert rec.amount == 7
    assert rec.mapping_status is MappingStatus.MAPPED
    assert rec.count == 2
    assert result.dropped_zero == 1


def test_context_is_stamped_on_record(resolver):
    result = aggregate([{"acct": "X", "amount": "5"}], resolver, ColumnExtraction("acct", (("", "amount"),)), CTX)
    rec = result.records[0]
    assert (rec.year, rec.month, rec.period) == (2024, 7, "2024-07")
    assert rec.currency == "EUR"
    assert rec.organizational_unit == "H001"
    assert rec.scenario == "ACT" and rec.version == "MAIN"
    assert rec.import_batch_id == CTX.batch_id
    assert rec.source_identifier == "X"


def test_unmapped_and_partial_records(resolver):
    rows = [{"acct": "Q", "amount": "1"}, {"acct": "P", "amount": "2"}]
    result = aggregate(rows, resolver, ColumnExtraction("acct", (("", "amount"),)), CTX)
    by_source = {r.source_identifier: r for r in result.records}
    assert by_source["Q"].combo_id == UNMAPPED
    assert by_source["Q"].mapping_status is MappingStatus.UNMAPPED
    assert by_source["P"].combo_id == UNMAPPED
    assert by_source["P"].mapping_status is MappingStatus.PARTIAL
    assert by_source["P"].target_account == "A05"
    assert by_source["P"].target_department is None


def test_unmapped_identifiers_do_not_merge(resolver):
    rows = [{"acct": "Q1", "amount": "1"}, {"acct": "Q2", "amount": "2"}]
    result = aggregate(rows, resolver, ColumnExtraction("acct", (("", "amount"),)), CTX)
    assert sorted(r.source_identifier for r in result.records) == ["Q1", "Q2"]


def test_one_row_many_measures(resolver):
    extraction = ColumnExtraction("Segments", (("Rooms - ", "Room Nighs"), ("Revenue - ", "Revenue")))
    rows = [
        {"Segments": "Group", "Room Nighs": "3", "Revenue": "300"},
        {"Segments": "Group", "Room Nighs": "2", "Revenue": "0"},
    ]
    result = aggregate(rows, resolver, extraction, CTX)
    by_source = {r.source_identifier: r for r in result.records}
    assert by_source["Rooms - Group"].amount == 5
    assert by_source["Rooms - Group"].combo_id == "D10_A100"
    assert by_source["Revenue - Group"].amount == 300
    assert by_source["Revenue - Group"].mapping_status is MappingStatus.UNMAPPED
    # description defaults to the composite identifier
    assert by_source["Rooms - Group"].source_description == "Rooms - Group"


def test_missing_grouping_field_skips_row(resolver):
    rows = [{"acct": "", "amount": "5"}, {"acct": "  ", "amount": "5"}, {"acct": "X", "amount": "1"}]
    result = aggregate(rows, resolver, ColumnExtraction("acct", (("", "amount"),)), CTX)
    assert result.skipped_rows == 2
    assert len(result.records) == 1


def test_description_column(resolver):
    extraction = ColumnExtraction("acct", (("", "amount"),), description_column="desc")
    result = aggregate([{"acct": "X", "amount": "1", "desc": "Room Revenue"}], resolver, extraction, CTX)
    assert result.records[0].source_description == "Room Revenue"


def test_all_zero_yields_nothing_without_sentinel(resolver):
    rows = [{"acct": "X", "amount": "0"}, {"acct": "Y", "amount": ""}]
    result = aggregate(rows, resolver, ColumnExtraction("acct", (("", "amount"),)), CTX)
    assert result.records == []


def test_sentinel_emits_single_zero_record():
    resolver = MappingResolver.from_entries([MappingEntry(0, "COMPS", None, "A961662", "D0010")])
    sentinel = ExtractedMeasure("COMPS", 0.0, "Complimentary Rooms")
    extraction = FixedExtraction("COMPS", "Rooms Rented", "Complimentary Rooms")
    result = aggregate([{"Rooms Rented": "0"}, {"Rooms Rented": ""}], resolver, extraction, CTX, sentinel=sentinel)
    assert len(result.records) == 1
    rec = result.records[0]
    assert rec.amount == 0
    assert rec.combo_id == "D0010_A961662"
    assert rec.source_description == "Complimentary Rooms"


def test_sentinel_not_used_when_data_present():
    resolver = MappingResolver.from_entries([MappingEntry(0, "COMPS", None, "A961662", "D0010")])
    sentinel = ExtractedMeasure("COMPS", 0.0)
    extraction = FixedExtraction("COMPS", "Rooms Rented")
    result = aggregate([{"Rooms Rented": "2"}, {"Rooms Rented": "3"}], resolver, extraction, CTX, sentinel=sentinel)
    assert [r.amount for r in result.records] == [5]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("10", 10.0),
        (" -3.5 ", -3.5),
        ("1,234.50", 1234.5),
        ("", 0.0),
        ("abc", 0.0),
        (None, 0.0),
        (7, 7.0),
        (float("nan"), 0.0),
        (True, 0.0),
    ],
)
def test_to_number(value, expected):
    assert to_number(value) == expected
