# backend/ledger_core/services/backfill/service.py
"""
Price Backfill Service: price mappings and historical population jobs.

Responsibilities:
- Create price mappings (asset → provider settings), optionally
  scheduling an initial backfill
- Create backfill jobs over an inclusive date range
- Execute a job day by day, writing one cached price per
  (symbol, currency, date)
- Resume jobs interrupted by a restart

Job state machine:
    pending → running → completed
    pending → running → failed   (fetch error or cancellation)

Progress (current_date, completed_days, skipped_days) is committed after
every day, so a status read mid-run shows real progress and a failed job
keeps the days it already cached.

Usage:
    service = BackfillService()
    job = service.create_job(db, asset_id, mapping_id, start, end, actor="alice")
    service.run_job(db, job.id)
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_core.config import settings
from ledger_core.database import transactional
from ledger_core.models import (
    Asset,
    AssetPriceMapping,
    PopulationStatus,
    PriceProvider,
    PricePopulationJob,
)
from ledger_core.services.constants import JOB_CANCELLED_MESSAGE, MAX_BACKFILL_DAYS
from ledger_core.services.exceptions import (
    AssetNotFoundError,
    JobNotFoundError,
    JobStateError,
    MarketDataError,
    PriceMappingNotFoundError,
    PriceNotAvailableError,
    ValidationError,
)
from ledger_core.services.pricing import (
    HttpPriceSource,
    PriceCache,
    PriceRequest,
    PriceSourceRegistry,
    YahooPriceSource,
)
from ledger_core.utils.date_utils import days_inclusive, iter_days, utc_today

if TYPE_CHECKING:
    from ledger_core.services.backfill.worker import BackfillWorkerPool

logger = logging.getLogger(__name__)


@dataclass
class MappingInput:
    """Settings for one asset's price source."""

    asset: str
    provider: PriceProvider
    provider_id: str
    quote_currency: str = "USD"
    api_endpoint: str | None = None
    api_config: dict | None = None
    response_path: str | None = None
    auto_populate: bool = False
    populate_from_date: date | None = None


def default_registry() -> PriceSourceRegistry:
    timeout = settings.price_http_timeout_seconds
    return PriceSourceRegistry({
        PriceProvider.HTTP: HttpPriceSource(timeout=timeout),
        PriceProvider.YAHOO: YahooPriceSource(timeout=int(timeout)),
    })


class BackfillService:
    """Creates and executes price population jobs."""

    def __init__(
            self,
            registry: PriceSourceRegistry | None = None,
            cache: PriceCache | None = None,
            request_delay: float | None = None,
    ) -> None:
        self._registry = registry or default_registry()
        self._cache = cache or PriceCache()
        self._request_delay = (
            settings.backfill_request_delay_seconds if request_delay is None else request_delay
        )

    # =========================================================================
    # MAPPINGS
    # =========================================================================

    def create_mapping(
            self,
            db: Session,
            data: MappingInput,
            actor: str,
            pool: "BackfillWorkerPool | None" = None,
    ) -> tuple[AssetPriceMapping, PricePopulationJob | None]:
        """
        Create a price mapping; the asset row is created on first use.

        With auto_populate a job from populate_from_date (or the default
        lookback) to today is created and, when a pool is given, submitted.

        Returns:
            (mapping, job or None)
        """
        if not actor:
            raise ValidationError("actor is required", field="actor")
        symbol = (data.asset or "").strip().upper()
        if not symbol:
            raise ValidationError("asset is required", field="asset")
        if not (data.provider_id or "").strip():
            raise ValidationError("provider_id is required", field="provider_id")
        if not (data.quote_currency or "").strip():
            raise ValidationError("quote_currency is required", field="quote_currency")
        provider = PriceProvider(data.provider)
        if provider == PriceProvider.HTTP and not data.api_endpoint:
            raise ValidationError("api_endpoint is required for http mappings", field="api_endpoint")
        if data.api_config is not None and not isinstance(data.api_config, dict):
            raise ValidationError("api_config must be an object", field="api_config")
        today = utc_today()
        if data.populate_from_date is not None and data.populate_from_date > today:
            raise ValidationError("populate_from_date cannot be in the future", field="populate_from_date")
        self._registry.get(provider)

        with transactional(db):
            asset = db.scalars(select(Asset).where(Asset.symbol == symbol)).first()
            if asset is None:
                asset = Asset(symbol=symbol, name=symbol, is_active=True)
                db.add(asset)
                db.flush()
                logger.info(f"Created asset {symbol} for price mapping")

            mapping = AssetPriceMapping(
                asset_id=asset.id,
                provider=provider,
                provider_id=data.provider_id.strip(),
                quote_currency=data.quote_currency.strip().upper(),
                api_endpoint=data.api_endpoint,
                api_config=data.api_config,
                response_path=data.response_path,
                auto_populate=data.auto_populate,
                populate_from_date=data.populate_from_date,
                is_active=True,
            )
            db.add(mapping)

        logger.info(f"Price mapping {mapping.id} created for {symbol} ({provider.value}:{mapping.provider_id}) by {actor}")

        job = None
        if data.auto_populate:
            start = data.populate_from_date or today - timedelta(days=settings.backfill_default_lookback_days)
            job = self.create_job(db, asset.id, mapping.id, start, today, actor)
            if pool is not None:
                pool.submit(job.id)

        return mapping, job

    def get_mapping(self, db: Session, mapping_id: int) -> AssetPriceMapping:
        mapping = db.get(AssetPriceMapping, mapping_id)
        if mapping is None:
            raise PriceMappingNotFoundError(mapping_id)
        return mapping

    def list_mappings(self, db: Session, asset_id: int | None = None) -> list[AssetPriceMapping]:
        query = select(AssetPriceMapping)
        if asset_id is not None:
            query = query.where(AssetPriceMapping.asset_id == asset_id)
        return list(db.scalars(query.order_by(AssetPriceMapping.id)).all())

    # =========================================================================
    # JOBS
    # =========================================================================

    def create_job(
            self,
            db: Session,
            asset_id: int,
            mapping_id: int,
            start_date: date,
            end_date: date,
            actor: str,
    ) -> PricePopulationJob:
        """
        Create a pending job for [start_date, end_date].

        Raises:
            AssetNotFoundError: Unknown asset
            PriceMappingNotFoundError: Unknown mapping
            ValidationError: Mapping belongs to another asset, start > end,
                range too long, or no actor
        """
        if not actor:
            raise ValidationError("actor is required", field="actor")
        if start_date is None or end_date is None:
            raise ValidationError("start_date and end_date are required", field="start_date")
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")

        total_days = days_inclusive(start_date, end_date)
        if total_days > MAX_BACKFILL_DAYS:
            raise ValidationError(
                f"Range of {total_days} days exceeds the limit of {MAX_BACKFILL_DAYS}",
                field="end_date",
            )

        if db.get(Asset, asset_id) is None:
            raise AssetNotFoundError(asset_id)
        mapping = self.get_mapping(db, mapping_id)
        if mapping.asset_id != asset_id:
            raise ValidationError(
                f"Mapping {mapping_id} does not belong to asset {asset_id}",
                field="mapping_id",
            )

        with transactional(db):
            job = PricePopulationJob(
                asset_id=asset_id,
                mapping_id=mapping_id,
                status=PopulationStatus.PENDING,
                start_date=start_date,
                end_date=end_date,
                current_date=None,
                total_days=total_days,
                completed_days=0,
                skipped_days=0,
                created_by=actor,
            )
            db.add(job)

        logger.info(f"Backfill job {job.id} created: asset={asset_id}, {start_date}..{end_date} ({total_days} days)")
        return job

    def get_job(self, db: Session, job_id: int) -> PricePopulationJob:
        job = db.get(PricePopulationJob, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(
            self,
            db: Session,
            asset_id: int | None = None,
            status: PopulationStatus | None = None,
            limit: int = 100,
            offset: int = 0,
    ) -> list[PricePopulationJob]:
        query = select(PricePopulationJob)
        if asset_id is not None:
            query = query.where(PricePopulationJob.asset_id == asset_id)
        if status is not None:
            query = query.where(PricePopulationJob.status == status)
        query = query.order_by(PricePopulationJob.id.desc()).offset(offset).limit(limit)
        return list(db.scalars(query).all())

    def cancel_pending_job(self, db: Session, job_id: int, actor: str) -> PricePopulationJob:
        """
        Fail a job that no worker has picked up yet.

        A running job is cancelled through its worker's cancel event instead.

        Raises:
            JobStateError: Job is not pending
        """
        result = db.execute(
            update(PricePopulationJob)
            .where(
                PricePopulationJob.id == job_id,
                PricePopulationJob.status == PopulationStatus.PENDING,
            )
            .values(
                status=PopulationStatus.FAILED,
                error_message=JOB_CANCELLED_MESSAGE,
                completed_at=datetime.now(timezone.utc),
            )
        )
        db.commit()

        job = self.get_job(db, job_id)
        db.refresh(job)
        if result.rowcount == 0:
            raise JobStateError(job_id, job.status.value, f"Job {job_id} is {job.status.value} and cannot be cancelled")

        logger.info(f"Backfill job {job_id} cancelled by {actor} before it started")
        return job

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def run_job(
            self,
            db: Session,
            job_id: int,
            cancel_event: threading.Event | None = None,
            resume: bool = False,
    ) -> PricePopulationJob:
        """
        Execute a job to completion, failure or cancellation.

        Fetch errors are recorded on the job, not raised. Unexpected errors
        (database failures) mark the job failed and propagate.

        Raises:
            JobNotFoundError: Unknown job
            JobStateError: Job is not pending (or running, with resume)
        """
        job = self._acquire(db, job_id, resume)
        mapping = job.mapping
        symbol = job.asset.symbol
        currency = mapping.quote_currency

        if resume and job.current_date is not None:
            first_day = job.current_date + timedelta(days=1)
            logger.info(f"Resuming backfill job {job_id} from {first_day}")
        else:
            first_day = job.start_date

        try:
            source = self._registry.get(mapping.provider)

            for day in iter_days(first_day, job.end_date):
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(f"Backfill job {job_id} cancelled before {day}")
                    return self._finish(db, job, PopulationStatus.FAILED, JOB_CANCELLED_MESSAGE)

                if self._cache.get(db, symbol, currency, day) is not None:
                    job.completed_days += 1
                else:
                    request = PriceRequest.from_mapping(mapping, symbol, day)
                    try:
                        price = source.get_daily_price(request)
                    except PriceNotAvailableError as e:
                        logger.debug(f"Job {job_id}: no price for {symbol}/{currency} on {day}: {e.message}")
                        job.skipped_days += 1
                    except MarketDataError as e:
                        logger.error(f"Backfill job {job_id} failed on {day}: {e.message}")
                        return self._finish(db, job, PopulationStatus.FAILED, f"{day.isoformat()}: {e.message}")
                    else:
                        self._cache.put(db, price)
                        job.completed_days += 1
                    self._pause(cancel_event)

                job.current_date = day
                db.commit()

        except Exception as e:
            db.rollback()
            logger.error(f"Backfill job {job_id} crashed: {e}")
            self._finish(db, job, PopulationStatus.FAILED, f"unexpected error: {e}")
            raise

        mapping.last_populated_date = max(filter(None, [mapping.last_populated_date, job.end_date]))
        job = self._finish(db, job, PopulationStatus.COMPLETED, None)
        logger.info(
            f"Backfill job {job_id} completed: {job.completed_days} days cached, "
            f"{job.skipped_days} skipped"
        )
        return job

    def resume_interrupted_jobs(self, db: Session, pool: "BackfillWorkerPool") -> list[int]:
        """
        Resubmit jobs left pending or running by a previous process.

        Returns:
            Ids of the resubmitted jobs
        """
        jobs = db.scalars(
            select(PricePopulationJob)
            .where(PricePopulationJob.status.in_([PopulationStatus.PENDING, PopulationStatus.RUNNING]))
            .order_by(PricePopulationJob.id)
        ).all()

        resubmitted = []
        for job in jobs:
            pool.submit(job.id, resume=job.status == PopulationStatus.RUNNING)
            resubmitted.append(job.id)

        if resubmitted:
            logger.info(f"Resubmitted {len(resubmitted)} interrupted backfill jobs: {resubmitted}")
        return resubmitted

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _acquire(self, db: Session, job_id: int, resume: bool) -> PricePopulationJob:
        """
        Move the job to running with a conditional UPDATE.

        Only one runner can win: the UPDATE matches only a pending job
        (or a running one when resuming).
        """
        allowed = [PopulationStatus.PENDING]
        if resume:
            allowed.append(PopulationStatus.RUNNING)

        result = db.execute(
            update(PricePopulationJob)
            .where(
                PricePopulationJob.id == job_id,
                PricePopulationJob.status.in_(allowed),
            )
            .values(status=PopulationStatus.RUNNING)
        )
        db.commit()

        job = self.get_job(db, job_id)
        if result.rowcount == 0:
            raise JobStateError(job_id, job.status.value)

        if job.started_at is None:
            job.started_at = datetime.now(timezone.utc)
            db.commit()

        logger.info(f"Backfill job {job_id} running ({job.start_date}..{job.end_date})")
        return job

    @staticmethod
    def _finish(
            db: Session,
            job: PricePopulationJob,
            status: PopulationStatus,
            error_message: str | None,
    ) -> PricePopulationJob:
        job.status = status
        job.error_message = error_message
        job.completed_at = datetime.now(timezone.utc)
        db.commit()
        return job

    def _pause(self, cancel_event: threading.Event | None) -> None:
        if self._request_delay <= 0:
            return
        if cancel_event is not None:
            cancel_event.wait(self._request_delay)
        else:
            time.sleep(self._request_delay)
