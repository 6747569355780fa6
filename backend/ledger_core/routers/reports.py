# backend/ledger_core/routers/reports.py
"""
Read-only reports over stored ledger data.

Reports use the amounts and cash-flows snapshotted on each transaction;
no quote is fetched and nothing is written.
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ledger_core.database import get_db
from ledger_core.dependencies import get_reporting_service
from ledger_core.schemas.reports import CashflowReport, HoldingResponse, HoldingsReport, PnLReport
from ledger_core.services.reporting import ReportingService

router = APIRouter(
    prefix="/reports",
    tags=["Reports"],
)

ServiceDep = Annotated[ReportingService, Depends(get_reporting_service)]


@router.get("/holdings", response_model=HoldingsReport, summary="Net quantity per asset and account")
def holdings(
        db: Annotated[Session, Depends(get_db)],
        service: ServiceDep,
        as_of: date | None = Query(default=None, description="Include transactions up to this date"),
        include_zero: bool = Query(default=False),
) -> HoldingsReport:
    rows = service.holdings(db, as_of=as_of, include_zero=include_zero)
    return HoldingsReport(as_of=as_of, holdings=[HoldingResponse.model_validate(h) for h in rows])


@router.get("/cashflow", response_model=CashflowReport, summary="Inflow, outflow and net cash-flow")
def cashflow(
        db: Annotated[Session, Depends(get_db)],
        service: ServiceDep,
        start: date | None = Query(default=None),
        end: date | None = Query(default=None),
        currency: str = Query(default="USD", min_length=3, max_length=10),
) -> CashflowReport:
    """
    Internal transfers carry zero cash-flow and do not move the totals.
    Transactions without a snapshot in `currency` are left out.
    """
    return CashflowReport.model_validate(service.cashflow_summary(db, start=start, end=end, currency=currency))


@router.get("/pnl", response_model=PnLReport, summary="Realized P&L and open cost basis")
def pnl(db: Annotated[Session, Depends(get_db)], service: ServiceDep) -> PnLReport:
    return PnLReport.model_validate(service.position_pnl(db))
