"""
Feed Loading Test Suite

1. CSV trip manifests and invoice feeds, headers matched loosely
2. Rows failing their schema are quarantined, blank rows dropped
3. "Payment Details" workbooks use the fixed E / AF column layout
4. Several files of one cycle are concatenated
"""

from pathlib import Path

import pandas as pd
import pytest

from core.errors import FeedFormatError
from reconciliation.feeds import (
    INVOICE_AMOUNT_COLUMN,
    PAYMENT_DETAILS_AMOUNT_COL,
    PAYMENT_DETAILS_SHEET,
    PAYMENT_DETAILS_TRIP_ID_COL,
    build_batch,
    has_payment_details_sheet,
    load_invoice_feed,
    load_trip_feed,
    parse_invoice_rows,
    parse_trip_rows,
)


TRIPS_CSV = (
    "trip id,VR ID,Driver,vehicle  id,Trip Date\n"
    "T1,,Jurubita Razvan,,2025-03-31\n"
    'T2,VR-2,"Andrei Marin, Ion Pop",OTHR-TR94FST,2025-04-01\n'
    ",,Orphan Driver,,\n"
    ",,,,\n"
    ",VR-5,Stefan Munteanu,,\n"
)

INVOICE_CSV = (
    "Tour ID,Load ID,Gross Pay Amt (Excl. Tax),Note\n"
    "T1,,100,\n"
    ',L2,"1,234.50",\n'
    ",,,late fee\n"
    ",,,\n"
)


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def _payment_details_workbook(path: Path, rows):
    """Write a workbook whose Payment Details sheet has ids in E and amounts in AF."""
    width = PAYMENT_DETAILS_AMOUNT_COL + 1
    header = [f"col{i}" for i in range(width)]
    header[PAYMENT_DETAILS_TRIP_ID_COL] = "Tour ID"
    header[PAYMENT_DETAILS_AMOUNT_COL] = "Amount"

    data = [header]
    for trip_id, amount in rows:
        row = [""] * width
        row[PAYMENT_DETAILS_TRIP_ID_COL] = trip_id
        row[PAYMENT_DETAILS_AMOUNT_COL] = amount
        data.append(row)

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame([["summary"]]).to_excel(writer, sheet_name="Summary", index=False, header=False)
        pd.DataFrame(data).to_excel(writer, sheet_name=PAYMENT_DETAILS_SHEET, index=False, header=False)


class TestTripFeed:
    """Trip manifest loading."""

    def test_load_csv(self, tmp_path):
        result = load_trip_feed(_write(tmp_path, "trips.csv", TRIPS_CSV))

        assert [t.trip_id for t in result.trips] == ["T1", "T2", "VR-5"]
        t2 = result.trips[1]
        assert t2.secondary_id == "VR-2"
        assert t2.driver_name_raw == "Andrei Marin, Ion Pop"
        assert t2.vehicle_id == "OTHR-TR94FST"
        assert t2.raw["Trip ID"] == "T2"
        assert result.trips[0].vehicle_id is None

    def test_row_without_ids_is_quarantined(self, tmp_path):
        result = load_trip_feed(_write(tmp_path, "trips.csv", TRIPS_CSV))

        assert len(result.quarantined) == 1
        row = result.quarantined[0]
        assert row.source == "trips.csv"
        assert row.row_number == 4
        assert "Trip ID" in row.reason

    def test_missing_id_columns(self, tmp_path):
        path = _write(tmp_path, "trips.csv", "Driver,Vehicle\nA B,X\n")
        with pytest.raises(FeedFormatError):
            load_trip_feed(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FeedFormatError):
            load_trip_feed(tmp_path / "nope.csv")

    def test_parse_rows_directly(self):
        result = parse_trip_rows([(2, {"tripId": " T9 ", "driver": "Ana Pop"})], source="api")
        assert result.trips[0].trip_id == "T9"
        assert result.trips[0].driver_name_raw == "Ana Pop"


class TestInvoiceFeed:
    """Invoice feed loading."""

    def test_load_csv(self, tmp_path):
        result = load_invoice_feed(_write(tmp_path, "seven.csv", INVOICE_CSV))

        assert [(r.primary_id, r.secondary_id, r.amount_raw) for r in result.invoice_rows] == [
            ("T1", None, "100"),
            (None, "L2", "1,234.50"),
        ]
        assert result.invoice_rows[0].row_number == 2
        assert result.invoice_rows[0].source == "seven.csv"

        assert len(result.quarantined) == 1
        assert result.quarantined[0].raw["Note"] == "late fee"

    def test_amount_without_id_is_kept(self):
        result = parse_invoice_rows([(7, {INVOICE_AMOUNT_COLUMN: "55"})], source="x")
        assert result.invoice_rows[0].primary_id is None
        assert result.invoice_rows[0].amount_raw == "55"

    def test_missing_amount_column(self, tmp_path):
        path = _write(tmp_path, "bad.csv", "Tour ID,Other\nT1,5\n")
        with pytest.raises(FeedFormatError):
            load_invoice_feed(path)

    def test_multiple_files_are_concatenated(self, tmp_path):
        first = _write(tmp_path, "a.csv", "Tour ID,Gross Pay Amt (Excl. Tax)\nT1,10\n")
        second = _write(tmp_path, "b.csv", "Tour ID,Gross Pay Amt (Excl. Tax)\nT2,20\nT3,30\n")

        result = load_invoice_feed([first, second])
        assert [r.primary_id for r in result.invoice_rows] == ["T1", "T2", "T3"]
        assert [r.source for r in result.invoice_rows] == ["a.csv", "b.csv", "b.csv"]

    def test_payment_details_layout(self, tmp_path):
        path = tmp_path / "payments.xlsx"
        _payment_details_workbook(path, [("T1", "150.25"), ("T2", "abc"), ("", "")])

        assert has_payment_details_sheet(path)
        result = load_invoice_feed(path)

        assert [(r.primary_id, r.amount_raw) for r in result.invoice_rows] == [("T1", "150.25"), ("T2", "abc")]
        assert result.invoice_rows[0].source == f"payments.xlsx:{PAYMENT_DETAILS_SHEET}"

    def test_plain_workbook_uses_headers(self, tmp_path):
        path = tmp_path / "plain.xlsx"
        pd.DataFrame({"Tour ID": ["T1"], "Gross Pay Amt (Excl. Tax)": ["42"]}).to_excel(path, index=False)

        assert not has_payment_details_sheet(path)
        result = load_invoice_feed(path)
        assert result.invoice_rows[0].primary_id == "T1"
        assert result.invoice_rows[0].amount_raw == "42"


class TestBuildBatch:

    def test_build_batch_collects_quarantine(self, tmp_path):
        trips = _write(tmp_path, "trips.csv", TRIPS_CSV)
        seven = _write(tmp_path, "seven.csv", INVOICE_CSV)
        thirty = _write(tmp_path, "thirty.csv", "Tour ID,Gross Pay Amt (Excl. Tax)\nT2,20\n")

        batch = build_batch("2025-W14", trips, invoice_7day=[seven], invoice_30day=[thirty], tenant_id="acme")

        assert batch.week_label == "2025-W14"
        assert batch.tenant_id == "acme"
        assert len(batch.trips) == 3
        assert len(batch.invoice_7day) == 2
        assert len(batch.invoice_30day) == 1
        assert len(batch.quarantined) == 2

    def test_build_batch_without_invoices(self, tmp_path):
        batch = build_batch("2025-W14", _write(tmp_path, "trips.csv", TRIPS_CSV))
        assert batch.invoice_7day == []
        assert batch.invoice_30day == []


if __name__ == "__main__":
    pytest.main([__file__, "-v", "-s"])
