"""Shared pytest fixtures: a throwaway database, settings and a seeded registry."""

import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from core.config import load_settings
from identity_resolver.db import list_companies, seed_sample_registry
from identity_resolver.models import Company
from models.trips import InvoiceFeedRow, ReconciliationBatch, TripRecord


@pytest.fixture
def temp_db():
    """Create a temporary database file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup - ignore errors on Windows
    try:
        os.unlink(db_path)
    except (PermissionError, FileNotFoundError):
        pass


@pytest.fixture
def settings(temp_db, tmp_path):
    return load_settings(db_path=temp_db, artifacts_dir=tmp_path / "artifacts", log_level="DEBUG")


@pytest.fixture
def registry(temp_db) -> Dict[str, Company]:
    """Seeded registry: Fast Express (fallback), Daniel Ontheroad 4%, Stef Trans 2%.

    Drivers: Ionut Daniel Pop → Daniel Ontheroad, Stefan Munteanu → Stef Trans,
    Andrei Marin → Fast Express. Vehicle TR94FST → Stef Trans.
    """
    seed_sample_registry(temp_db)
    companies = {c.name: c for c in list_companies(db_path=temp_db)}
    return {
        "fast": companies["Fast Express"],
        "daniel": companies["Daniel Ontheroad S.R.L."],
        "stef": companies["Stef Trans S.R.L."],
    }


TripSpec = Tuple[str, Optional[str], Optional[str]]       # (trip_id, driver, vehicle)
LineSpec = Tuple[Optional[str], Optional[str]]            # (trip_id, amount)


@pytest.fixture
def make_batch():
    """Factory building a ReconciliationBatch from compact tuples."""

    def _make(
        trips: List[TripSpec] = (),
        lines_7day: List[LineSpec] = (),
        lines_30day: List[LineSpec] = (),
        week_label: str = "2025-W14",
        tenant_id: str = "default",
    ) -> ReconciliationBatch:
        def rows(lines: List[LineSpec], source: str) -> List[InvoiceFeedRow]:
            return [
                InvoiceFeedRow(row_number=i, primary_id=trip_id, amount_raw=amount, source=source)
                for i, (trip_id, amount) in enumerate(lines, start=1)
            ]

        return ReconciliationBatch(
            tenant_id=tenant_id,
            week_label=week_label,
            trips=[
                TripRecord(trip_id=trip_id, driver_name_raw=driver, vehicle_id=vehicle)
                for trip_id, driver, vehicle in trips
            ],
            invoice_7day=rows(list(lines_7day), "7day.csv"),
            invoice_30day=rows(list(lines_30day), "30day.csv"),
        )

    return _make
