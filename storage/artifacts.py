"""Artifact storage for reconciliation outputs.

Weekly results, reports and parsed feeds are written as JSON files with
a sha256 ``DataReference`` so a stored week can be reloaded and
verified later.

Layout:
    <artifacts_dir>/weekly/<week_label>/result.json
    <artifacts_dir>/weekly/<week_label>/report.json
    <artifacts_dir>/weekly/<week_label>/feeds.json
"""

import hashlib
import json
import re
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from models.refs import ArtifactKind, DataReference


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _compute_sha256(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def weekly_artifact_path(artifacts_dir: Path, week_label: str, name: str) -> Path:
    """Path of one artifact of a processing week.

    The week label is sanitized so it can be used as a directory name.
    """
    safe_week = _UNSAFE_CHARS.sub("_", week_label.strip()) or "unlabeled"
    return Path(artifacts_dir) / "weekly" / safe_week / f"{name}.json"


def put_json(
    obj: Any,
    path: Path,
    kind: ArtifactKind = ArtifactKind.RESULT,
    ensure_parent: bool = True,
) -> DataReference:
    """Store a JSON-serializable object and return a DataReference.

    Args:
        obj: Object to serialize (dict or Pydantic model)
        path: File path where the artifact will be stored
        kind: What the artifact holds
        ensure_parent: Create parent directories if they don't exist

    Returns:
        DataReference with artifact metadata for retrieval

    Raises:
        TypeError: If the object is not JSON-serializable
    """
    path = Path(path)
    if ensure_parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    if hasattr(obj, "model_dump"):
        obj = obj.model_dump(mode="json")

    json_bytes = json.dumps(obj, indent=2, default=_json_default).encode("utf-8")
    path.write_bytes(json_bytes)

    return DataReference(
        storage_uri=str(path.absolute()),
        content_hash=_compute_sha256(json_bytes),
        content_type="application/json",
        size_bytes=len(json_bytes),
        kind=kind,
        stored_at=datetime.utcnow(),
    )


def get_json(ref: DataReference, validate_hash: bool = True) -> Any:
    """Retrieve a JSON artifact from a DataReference.

    Args:
        ref: DataReference pointing to the artifact
        validate_hash: Verify content hash matches the reference

    Returns:
        Deserialized JSON object

    Raises:
        FileNotFoundError: If artifact path doesn't exist
        ValueError: If hash validation fails
    """
    path = Path(ref.storage_uri)

    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {ref.storage_uri}")

    json_bytes = path.read_bytes()

    if validate_hash:
        actual_hash = _compute_sha256(json_bytes)
        if actual_hash != ref.content_hash:
            raise ValueError(
                f"Hash mismatch for {ref.storage_uri}: "
                f"expected {ref.content_hash}, got {actual_hash}"
            )

    return json.loads(json_bytes.decode("utf-8"))


def batch_artifact_path(artifacts_dir: Path, batch_id: str, name: str) -> Path:
    """Path of a working artifact of a held (not yet finalized) batch."""
    safe_batch = _UNSAFE_CHARS.sub("_", batch_id.strip()) or "unknown"
    return Path(artifacts_dir) / "batches" / safe_batch / f"{name}.json"
