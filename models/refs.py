"""Data reference models for artifact storage and retrieval."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ArtifactKind(str, Enum):
    """What a stored artifact contains."""
    RESULT = "result"      # Full ReconciliationResult (re-loadable)
    REPORT = "report"      # Per-company JSON report handed to accounting
    RAW_FEED = "raw_feed"  # Parsed feed rows as uploaded


class DataReference(BaseModel):
    """Reference to a stored artifact with metadata for retrieval and verification.

    Attributes:
        storage_uri: Absolute file path to the artifact
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type
        size_bytes: Size of the artifact in bytes
        kind: What the artifact holds
        stored_at: Timestamp when the artifact was stored
    """
    storage_uri: str = Field(..., description="Absolute file path to the artifact")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/json", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    kind: ArtifactKind = Field(default=ArtifactKind.RESULT)
    stored_at: datetime = Field(default_factory=datetime.utcnow, description="Storage timestamp")


class WeeklyArtifacts(BaseModel):
    """Every artifact written when a week is finalized.

    Attributes:
        week_label: Processing week
        result_ref: Full result, used to reload the week
        report_ref: Per-company report JSON
        feeds_ref: Parsed trip/invoice rows of the batch
    """
    week_label: str = Field(..., description="Processing week label")
    result_ref: DataReference
    report_ref: Optional[DataReference] = None
    feeds_ref: Optional[DataReference] = None
