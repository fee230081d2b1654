"""Feed loading and row validation.

Three feeds make up a weekly upload:
- Trip manifest: one row per trip (Trip ID / VR ID, Driver, Vehicle ID, ...)
- 7-day invoice feed and 30-day invoice feed: Tour ID / Load ID and
  "Gross Pay Amt (Excl. Tax)"

Files are CSV or Excel, read with pandas, every cell as text. Each row
is validated against a pydantic row schema; rows that fail are
quarantined with the reason rather than trusted.

Workbooks containing a "Payment Details" sheet use a fixed layout: trip
id in column E and amount in column AF, first row is a header.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd
from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator

from core.errors import FeedFormatError
from core.observability.logging import get_logger
from models.trips import InvoiceFeedRow, QuarantinedRow, ReconciliationBatch, TripRecord


logger = get_logger(__name__)


# =============================================================================
# Column layout
# =============================================================================

TRIP_COLUMNS = {
    "Trip ID": "trip_id",
    "VR ID": "secondary_id",
    "Driver": "driver",
    "Vehicle ID": "vehicle_id",
    "Trip Date": "trip_date",
    "Route": "route",
}
TRIP_ID_COLUMNS = ("Trip ID", "VR ID")

INVOICE_COLUMNS = {
    "Tour ID": "primary_id",
    "Load ID": "secondary_id",
    "Gross Pay Amt (Excl. Tax)": "amount",
}
INVOICE_ID_COLUMNS = ("Tour ID", "Load ID")
INVOICE_AMOUNT_COLUMN = "Gross Pay Amt (Excl. Tax)"

PAYMENT_DETAILS_SHEET = "Payment Details"
PAYMENT_DETAILS_TRIP_ID_COL = 4   # Column E
PAYMENT_DETAILS_AMOUNT_COL = 31   # Column AF

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}

RawRow = Tuple[int, Dict[str, Any]]


def _clean_cell(value: Any) -> Optional[str]:
    """Empty, NaN and whitespace-only cells become None; everything else text."""
    if value is None:
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


# =============================================================================
# Row schemas
# =============================================================================

class TripFeedRow(BaseModel):
    """Schema of one trip-manifest row."""
    trip_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Trip ID", "trip_id", "tripId"))
    secondary_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("VR ID", "secondary_id", "vrId"))
    driver: Optional[str] = Field(default=None, validation_alias=AliasChoices("Driver", "driver", "driver_name"))
    vehicle_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Vehicle ID", "vehicle_id", "vehicleId"))
    trip_date: Optional[str] = Field(default=None, validation_alias=AliasChoices("Trip Date", "trip_date", "tripDate"))
    route: Optional[str] = Field(default=None, validation_alias=AliasChoices("Route", "route"))

    class Config:
        extra = "ignore"

    @field_validator("*", mode="before")
    @classmethod
    def _cells_as_text(cls, value):
        return _clean_cell(value)

    @model_validator(mode="after")
    def _require_id(self) -> "TripFeedRow":
        if not self.trip_id and not self.secondary_id:
            raise ValueError("row has neither 'Trip ID' nor 'VR ID'")
        return self

    def to_trip(self, raw: Dict[str, Any]) -> TripRecord:
        return TripRecord(
            trip_id=self.trip_id or self.secondary_id,
            secondary_id=self.secondary_id if self.trip_id else None,
            vehicle_id=self.vehicle_id,
            driver_name_raw=self.driver,
            trip_date=self.trip_date,
            route=self.route,
            raw={k: _clean_cell(v) for k, v in raw.items()},
        )


class InvoiceRowSchema(BaseModel):
    """Schema of one invoice-feed row."""
    primary_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Tour ID", "primary_id", "tourId"))
    secondary_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("Load ID", "secondary_id", "loadId"))
    amount: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("Gross Pay Amt (Excl. Tax)", "amount", "grossPayAmt"),
    )

    class Config:
        extra = "ignore"

    @field_validator("*", mode="before")
    @classmethod
    def _cells_as_text(cls, value):
        return _clean_cell(value)

    @model_validator(mode="after")
    def _require_id_or_amount(self) -> "InvoiceRowSchema":
        if not self.primary_id and not self.secondary_id and not self.amount:
            raise ValueError("row has no trip id and no amount")
        return self

    def to_feed_row(self, row_number: int, source: str) -> InvoiceFeedRow:
        return InvoiceFeedRow(
            row_number=row_number,
            primary_id=self.primary_id,
            secondary_id=self.secondary_id,
            amount_raw=self.amount,
            source=source,
        )


class FeedParseResult(BaseModel):
    """Parsed rows of one feed plus the rows that were quarantined."""
    trips: List[TripRecord] = Field(default_factory=list)
    invoice_rows: List[InvoiceFeedRow] = Field(default_factory=list)
    quarantined: List[QuarantinedRow] = Field(default_factory=list)


# =============================================================================
# Row validation
# =============================================================================

def _is_blank(raw: Dict[str, Any]) -> bool:
    return all(_clean_cell(v) is None for v in raw.values())


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    return errors[0].get("msg", str(exc)).replace("Value error, ", "")


def parse_trip_rows(rows: Iterable[RawRow], source: str) -> FeedParseResult:
    """Validate raw trip rows into TripRecords.

    Args:
        rows: (row_number, {column: cell}) pairs
        source: File/sheet name for quarantine records
    """
    result = FeedParseResult()
    for row_number, raw in rows:
        if _is_blank(raw):
            continue
        try:
            row = TripFeedRow.model_validate(raw)
        except ValidationError as e:
            result.quarantined.append(QuarantinedRow(
                source=source,
                row_number=row_number,
                reason=_first_error(e),
                raw={k: _clean_cell(v) for k, v in raw.items()},
            ))
            continue
        result.trips.append(row.to_trip(raw))

    if result.quarantined:
        logger.warning(
            f"Quarantined {len(result.quarantined)} trip rows from {source}",
            extra_fields={"accepted": len(result.trips)},
        )
    return result


def parse_invoice_rows(rows: Iterable[RawRow], source: str) -> FeedParseResult:
    """Validate raw invoice rows into InvoiceFeedRows."""
    result = FeedParseResult()
    for row_number, raw in rows:
        if _is_blank(raw):
            continue
        try:
            row = InvoiceRowSchema.model_validate(raw)
        except ValidationError as e:
            result.quarantined.append(QuarantinedRow(
                source=source,
                row_number=row_number,
                reason=_first_error(e),
                raw={k: _clean_cell(v) for k, v in raw.items()},
            ))
            continue
        result.invoice_rows.append(row.to_feed_row(row_number, source))

    if result.quarantined:
        logger.warning(
            f"Quarantined {len(result.quarantined)} invoice rows from {source}",
            extra_fields={"accepted": len(result.invoice_rows)},
        )
    return result


# =============================================================================
# File reading
# =============================================================================

def _canonical_headers(df: pd.DataFrame, known: Sequence[str]) -> pd.DataFrame:
    """Rename headers that match a known column ignoring case and spacing."""
    lookup = {" ".join(k.lower().split()): k for k in known}
    renames = {}
    for column in df.columns:
        key = " ".join(str(column).lower().split())
        if key in lookup:
            renames[column] = lookup[key]
    return df.rename(columns=renames)


def _frame_rows(df: pd.DataFrame, header_offset: int = 2) -> List[RawRow]:
    """DataFrame → (spreadsheet row number, record) pairs."""
    return [
        (index + header_offset, record)
        for index, record in enumerate(df.to_dict(orient="records"))
    ]


def _read_frame(path: Path, sheet_name: Union[int, str] = 0, header: Optional[int] = 0) -> pd.DataFrame:
    if not path.exists():
        raise FeedFormatError(f"Feed file not found: {path}", {"path": str(path)})
    try:
        if path.suffix.lower() in EXCEL_SUFFIXES:
            return pd.read_excel(path, sheet_name=sheet_name, header=header, dtype=str)
        return pd.read_csv(path, header=header, dtype=str, keep_default_na=False, skipinitialspace=True)
    except (ValueError, OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise FeedFormatError(f"Cannot read feed {path.name}: {e}", {"path": str(path)}) from e


def _require_any(df: pd.DataFrame, columns: Sequence[str], path: Path) -> None:
    if not any(c in df.columns for c in columns):
        raise FeedFormatError(
            f"{path.name} has none of the columns {list(columns)}",
            {"path": str(path), "columns": [str(c) for c in df.columns]},
        )


def has_payment_details_sheet(path: Path) -> bool:
    """True for Excel workbooks with a "Payment Details" sheet."""
    if path.suffix.lower() not in EXCEL_SUFFIXES or not path.exists():
        return False
    try:
        with pd.ExcelFile(path) as workbook:
            return PAYMENT_DETAILS_SHEET in workbook.sheet_names
    except (ValueError, OSError) as e:
        raise FeedFormatError(f"Cannot open workbook {path.name}: {e}", {"path": str(path)}) from e


def read_payment_details_rows(path: Path) -> List[RawRow]:
    """Read the fixed-layout "Payment Details" sheet as invoice records."""
    df = _read_frame(path, sheet_name=PAYMENT_DETAILS_SHEET, header=None)
    rows: List[RawRow] = []
    # Row 0 is the header row of the sheet
    for index, values in enumerate(df.itertuples(index=False, name=None)):
        if index == 0:
            continue
        trip_id = values[PAYMENT_DETAILS_TRIP_ID_COL] if len(values) > PAYMENT_DETAILS_TRIP_ID_COL else None
        amount = values[PAYMENT_DETAILS_AMOUNT_COL] if len(values) > PAYMENT_DETAILS_AMOUNT_COL else None
        rows.append((index + 1, {
            "Tour ID": trip_id,
            "Load ID": trip_id,
            INVOICE_AMOUNT_COLUMN: amount,
        }))
    logger.info(f"Read {len(rows)} rows from '{PAYMENT_DETAILS_SHEET}' sheet of {path.name}")
    return rows


def load_trip_feed(path: Union[str, Path]) -> FeedParseResult:
    """Load and validate a trip manifest file.

    Raises:
        FeedFormatError: If the file is unreadable or has no trip id column
    """
    path = Path(path)
    df = _canonical_headers(_read_frame(path), list(TRIP_COLUMNS))
    _require_any(df, TRIP_ID_COLUMNS, path)
    result = parse_trip_rows(_frame_rows(df), source=path.name)
    logger.info(
        f"Loaded trip feed {path.name}",
        extra_fields={"trips": len(result.trips), "quarantined": len(result.quarantined)},
    )
    return result


def load_invoice_feed(paths: Union[str, Path, Sequence[Union[str, Path]]]) -> FeedParseResult:
    """Load and validate one or more invoice files of the same cycle.

    Several files (e.g. two 30-day exports) are concatenated in order.

    Raises:
        FeedFormatError: If a file is unreadable or lacks id/amount columns
    """
    if isinstance(paths, (str, Path)):
        paths = [paths]

    combined = FeedParseResult()
    for raw_path in paths:
        path = Path(raw_path)
        if has_payment_details_sheet(path):
            rows = read_payment_details_rows(path)
            source = f"{path.name}:{PAYMENT_DETAILS_SHEET}"
        else:
            df = _canonical_headers(_read_frame(path), list(INVOICE_COLUMNS))
            _require_any(df, INVOICE_ID_COLUMNS, path)
            _require_any(df, (INVOICE_AMOUNT_COLUMN,), path)
            rows = _frame_rows(df)
            source = path.name

        parsed = parse_invoice_rows(rows, source=source)
        combined.invoice_rows.extend(parsed.invoice_rows)
        combined.quarantined.extend(parsed.quarantined)
        logger.info(
            f"Loaded invoice feed {source}",
            extra_fields={"rows": len(parsed.invoice_rows), "quarantined": len(parsed.quarantined)},
        )

    return combined


def build_batch(
    week_label: str,
    trip_feed: Union[str, Path],
    invoice_7day: Sequence[Union[str, Path]] = (),
    invoice_30day: Sequence[Union[str, Path]] = (),
    tenant_id: str = "default",
) -> ReconciliationBatch:
    """Load every feed file of a weekly upload into one batch."""
    trips = load_trip_feed(trip_feed)
    seven = load_invoice_feed(list(invoice_7day)) if invoice_7day else FeedParseResult()
    thirty = load_invoice_feed(list(invoice_30day)) if invoice_30day else FeedParseResult()

    return ReconciliationBatch(
        tenant_id=tenant_id,
        week_label=week_label,
        trips=trips.trips,
        invoice_7day=seven.invoice_rows,
        invoice_30day=thirty.invoice_rows,
        quarantined=trips.quarantined + seven.quarantined + thirty.quarantined,
    )
