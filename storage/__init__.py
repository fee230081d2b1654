"""JSON artifact storage with content-hash references."""

from storage.artifacts import batch_artifact_path, get_json, put_json, weekly_artifact_path

__all__ = ["batch_artifact_path", "get_json", "put_json", "weekly_artifact_path"]
