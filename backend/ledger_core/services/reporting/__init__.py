# backend/ledger_core/services/reporting/__init__.py
from ledger_core.services.reporting.service import CashflowSummary, Holding, PositionPnL, ReportingService

__all__ = ["CashflowSummary", "Holding", "PositionPnL", "ReportingService"]
