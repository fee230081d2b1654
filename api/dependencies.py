"""Shared API state.

``create_app`` builds one orchestrator per application and keeps it on
``app.state``; routes receive it (and the balance ledger and archive it
owns) through these dependencies.
"""

from fastapi import Request

from balance_ledger.ledger import BalanceLedger
from core.config import ReconciliationSettings
from historical_archive.archive import HistoricalArchive
from reconciliation.orchestrator import ReconciliationOrchestrator


def get_orchestrator(request: Request) -> ReconciliationOrchestrator:
    return request.app.state.orchestrator


def get_settings_dep(request: Request) -> ReconciliationSettings:
    return request.app.state.orchestrator.settings


def get_archive(request: Request) -> HistoricalArchive:
    return request.app.state.orchestrator.archive


def get_balances(request: Request) -> BalanceLedger:
    return request.app.state.orchestrator.balances
