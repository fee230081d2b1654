"""API Routes Package."""

from api.routes import health, batches, mappings, historical, balances

__all__ = [
    "health",
    "batches",
    "mappings",
    "historical",
    "balances",
]
