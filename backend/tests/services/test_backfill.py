# backend/tests/services/test_backfill.py
"""
Tests for price mappings, backfill jobs and the worker pool.

Test Coverage:
- Mapping creation (asset auto-creation, http validation, auto-populate)
- Job creation validation
- Day-by-day execution: complete, skip, fail, cancel, resume
- Idempotent day writes
- BackfillWorkerPool: background run, callbacks, cancellation
"""

import threading
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from ledger_core.models import (
    Asset,
    AssetPrice,
    PopulationStatus,
    PriceProvider,
    PricePopulationJob,
)
from ledger_core.services.backfill import BackfillService, BackfillWorkerPool, MappingInput
from ledger_core.services.constants import JOB_CANCELLED_MESSAGE
from ledger_core.services.exceptions import (
    AssetNotFoundError,
    JobNotFoundError,
    JobStateError,
    PriceMappingNotFoundError,
    ProviderUnavailableError,
    ValidationError,
)
from ledger_core.services.pricing import DailyPrice, PriceSourceRegistry
from tests.conftest import MockPriceSource, RecordingPool, cache_price, create_asset, create_mapping


START = date(2024, 1, 1)
END = date(2024, 1, 3)


@pytest.fixture
def service(mock_source) -> BackfillService:
    registry = PriceSourceRegistry({
        PriceProvider.YAHOO: mock_source,
        PriceProvider.HTTP: mock_source,
    })
    return BackfillService(registry=registry, request_delay=0)


@pytest.fixture
def mapping(db, btc_asset):
    return create_mapping(db, btc_asset)


@pytest.fixture
def priced_source(mock_source) -> MockPriceSource:
    """Prices for every day in START..END."""
    for offset, price in enumerate(["42000", "43000", "44000"]):
        mock_source.set_price("BTC", "USD", START + timedelta(days=offset), price)
    return mock_source


def _cached_days(db) -> list[date]:
    return list(db.scalars(select(AssetPrice.date).order_by(AssetPrice.date)).all())


# =============================================================================
# MAPPINGS
# =============================================================================

class TestCreateMapping:
    """Tests for BackfillService.create_mapping."""

    def test_creates_asset_on_first_use(self, db, service):
        mapping, job = service.create_mapping(
            db, MappingInput(asset="eth", provider=PriceProvider.YAHOO, provider_id="ETH-USD"), "alice",
        )

        asset = db.scalars(select(Asset).where(Asset.symbol == "ETH")).one()
        assert mapping.asset_id == asset.id
        assert mapping.quote_currency == "USD"
        assert job is None

    def test_reuses_existing_asset(self, db, service, btc_asset):
        mapping, _ = service.create_mapping(
            db, MappingInput(asset="BTC", provider=PriceProvider.YAHOO, provider_id="BTC-EUR", quote_currency="eur"),
            "alice",
        )
        assert mapping.asset_id == btc_asset.id
        assert mapping.quote_currency == "EUR"

    def test_http_requires_endpoint(self, db, service):
        with pytest.raises(ValidationError) as exc_info:
            service.create_mapping(db, MappingInput(asset="X", provider=PriceProvider.HTTP, provider_id="x"), "alice")
        assert exc_info.value.field == "api_endpoint"

    def test_auto_populate_submits_job(self, db, service):
        pool = RecordingPool()
        mapping, job = service.create_mapping(
            db,
            MappingInput(
                asset="SOL",
                provider=PriceProvider.YAHOO,
                provider_id="SOL-USD",
                auto_populate=True,
                populate_from_date=date(2024, 1, 1),
            ),
            "alice",
            pool=pool,
        )

        assert job.status == PopulationStatus.PENDING
        assert job.start_date == date(2024, 1, 1)
        assert job.mapping_id == mapping.id
        assert pool.submitted == [(job.id, False)]

    def test_future_populate_date_rejected(self, db, service):
        with pytest.raises(ValidationError):
            service.create_mapping(
                db,
                MappingInput(
                    asset="SOL", provider=PriceProvider.YAHOO, provider_id="SOL-USD",
                    populate_from_date=date.today() + timedelta(days=30),
                ),
                "alice",
            )


# =============================================================================
# JOB CREATION
# =============================================================================

class TestCreateJob:
    """Tests for BackfillService.create_job."""

    def test_creates_pending_job(self, db, service, btc_asset, mapping):
        job = service.create_job(db, btc_asset.id, mapping.id, START, date(2024, 1, 31), "alice")

        assert job.status == PopulationStatus.PENDING
        assert job.total_days == 31
        assert job.completed_days == 0
        assert job.current_date is None
        assert job.created_by == "alice"

    def test_single_day_range(self, db, service, btc_asset, mapping):
        assert service.create_job(db, btc_asset.id, mapping.id, START, START, "alice").total_days == 1

    def test_start_after_end(self, db, service, btc_asset, mapping):
        with pytest.raises(ValidationError):
            service.create_job(db, btc_asset.id, mapping.id, END, START, "alice")

    def test_unknown_asset(self, db, service, mapping):
        with pytest.raises(AssetNotFoundError):
            service.create_job(db, 999, mapping.id, START, END, "alice")

    def test_unknown_mapping(self, db, service, btc_asset):
        with pytest.raises(PriceMappingNotFoundError):
            service.create_job(db, btc_asset.id, 999, START, END, "alice")

    def test_mapping_of_another_asset(self, db, service, btc_asset, mapping):
        eth = create_asset(db, symbol="ETH", name="Ether")
        with pytest.raises(ValidationError) as exc_info:
            service.create_job(db, eth.id, mapping.id, START, END, "alice")
        assert exc_info.value.field == "mapping_id"

    def test_range_limit(self, db, service, btc_asset, mapping):
        with pytest.raises(ValidationError):
            service.create_job(db, btc_asset.id, mapping.id, date(1990, 1, 1), date(2024, 1, 1), "alice")

    def test_missing_job(self, db, service):
        with pytest.raises(JobNotFoundError):
            service.get_job(db, 42)


# =============================================================================
# EXECUTION
# =============================================================================

class TestRunJob:
    """Tests for day-by-day execution."""

    @pytest.fixture
    def job(self, db, service, btc_asset, mapping):
        return service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")

    def test_completes_and_caches_every_day(self, db, service, priced_source, job, mapping):
        result = service.run_job(db, job.id)

        assert result.status == PopulationStatus.COMPLETED
        assert result.completed_days == 3
        assert result.skipped_days == 0
        assert result.current_date == END
        assert result.started_at is not None
        assert result.completed_at is not None
        assert result.error_message is None
        assert _cached_days(db) == [START, START + timedelta(days=1), END]
        db.refresh(mapping)
        assert mapping.last_populated_date == END

    def test_missing_day_is_skipped(self, db, service, mock_source, job):
        mock_source.set_price("BTC", "USD", START, "42000")
        mock_source.set_price("BTC", "USD", END, "44000")

        result = service.run_job(db, job.id)

        assert result.status == PopulationStatus.COMPLETED
        assert result.completed_days == 2
        assert result.skipped_days == 1

    def test_fetch_error_fails_and_keeps_progress(self, db, service, priced_source, job):
        """Days cached before the failure stay cached."""
        priced_source.set_error(date(2024, 1, 2), ProviderUnavailableError("mock", "connection refused"))

        result = service.run_job(db, job.id)

        assert result.status == PopulationStatus.FAILED
        assert result.error_message.startswith("2024-01-02")
        assert result.current_date == START
        assert result.completed_days == 1
        assert _cached_days(db) == [START]

    def test_unknown_ticker_fails(self, db, service, mock_source, job):
        mock_source.set_unknown_symbol("BTC")

        result = service.run_job(db, job.id)

        assert result.status == PopulationStatus.FAILED
        assert len(mock_source.calls) == 1

    def test_rerun_writes_no_duplicates(self, db, service, priced_source, btc_asset, mapping, job):
        """A second job over the same days finds them cached and fetches nothing."""
        service.run_job(db, job.id)
        calls_after_first = len(priced_source.calls)

        second = service.create_job(db, btc_asset.id, mapping.id, START, END, "bob")
        result = service.run_job(db, second.id)

        assert result.status == PopulationStatus.COMPLETED
        assert result.completed_days == 3
        assert len(priced_source.calls) == calls_after_first
        assert db.scalar(select(func.count(AssetPrice.id))) == 3

    def test_day_write_is_upsert(self, db, service, priced_source, job):
        """A row already cached for a day is not duplicated by the job."""
        cache_price(db, "BTC", "USD", START, "1")
        service.run_job(db, job.id)

        assert db.scalar(select(func.count(AssetPrice.id)).where(AssetPrice.date == START)) == 1

    def test_completed_job_cannot_rerun(self, db, service, priced_source, job):
        service.run_job(db, job.id)
        with pytest.raises(JobStateError):
            service.run_job(db, job.id)

    def test_preset_cancel_event(self, db, service, priced_source, job):
        cancel = threading.Event()
        cancel.set()

        result = service.run_job(db, job.id, cancel_event=cancel)

        assert result.status == PopulationStatus.FAILED
        assert result.error_message == JOB_CANCELLED_MESSAGE
        assert priced_source.calls == []

    def test_resume_from_cursor(self, db, service, priced_source, job):
        """A running job left by a restart continues after current_date."""
        db.execute(
            update(PricePopulationJob)
            .where(PricePopulationJob.id == job.id)
            .values(status=PopulationStatus.RUNNING, current_date=date(2024, 1, 2), completed_days=2)
        )
        db.commit()

        result = service.run_job(db, job.id, resume=True)

        assert result.status == PopulationStatus.COMPLETED
        assert result.completed_days == 3
        assert [call.date for call in priced_source.calls] == [END]

    def test_running_job_needs_resume_flag(self, db, service, job):
        db.execute(
            update(PricePopulationJob).where(PricePopulationJob.id == job.id).values(status=PopulationStatus.RUNNING)
        )
        db.commit()

        with pytest.raises(JobStateError):
            service.run_job(db, job.id)


# =============================================================================
# CANCEL / RESUME
# =============================================================================

class TestCancelAndResume:
    """Tests for cancel_pending_job and resume_interrupted_jobs."""

    def test_cancel_pending(self, db, service, btc_asset, mapping):
        job = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")

        cancelled = service.cancel_pending_job(db, job.id, "bob")

        assert cancelled.status == PopulationStatus.FAILED
        assert cancelled.error_message == JOB_CANCELLED_MESSAGE
        assert cancelled.completed_at is not None

    def test_cancel_finished_job_rejected(self, db, service, priced_source, btc_asset, mapping):
        job = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        service.run_job(db, job.id)

        with pytest.raises(JobStateError) as exc_info:
            service.cancel_pending_job(db, job.id, "bob")
        assert exc_info.value.status == PopulationStatus.COMPLETED.value

    def test_resume_interrupted_jobs(self, db, service, priced_source, btc_asset, mapping):
        pending = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        running = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        done = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        service.run_job(db, done.id)
        db.execute(
            update(PricePopulationJob).where(PricePopulationJob.id == running.id).values(status=PopulationStatus.RUNNING)
        )
        db.commit()
        pool = RecordingPool()

        resubmitted = service.resume_interrupted_jobs(db, pool)

        assert resubmitted == [pending.id, running.id]
        assert pool.submitted == [(pending.id, False), (running.id, True)]

    def test_list_jobs_filters(self, db, service, priced_source, btc_asset, mapping):
        first = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        service.run_job(db, first.id)

        completed = service.list_jobs(db, status=PopulationStatus.COMPLETED)
        assert [j.id for j in completed] == [first.id]
        assert len(service.list_jobs(db, asset_id=btc_asset.id)) == 2


# =============================================================================
# WORKER POOL
# =============================================================================

class BlockingSource(MockPriceSource):
    """Blocks on the first fetch until released."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def get_daily_price(self, request):
        self.started.set()
        self.release.wait(timeout=5)
        return DailyPrice(request.symbol, request.currency, request.date, Decimal("100"), self.name)


class TestBackfillWorkerPool:
    """Tests for background execution."""

    @pytest.fixture
    def pool_factory(self, session_factory):
        pools = []

        def make(source) -> BackfillWorkerPool:
            registry = PriceSourceRegistry({PriceProvider.YAHOO: source})
            pool = BackfillWorkerPool(session_factory, BackfillService(registry=registry, request_delay=0), max_workers=1)
            pools.append(pool)
            return pool

        yield make
        for pool in pools:
            pool.shutdown(wait=True, cancel_running=True)

    def test_runs_job_in_background(self, db, service, priced_source, btc_asset, mapping, pool_factory):
        job = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        pool = pool_factory(priced_source)
        finished = []
        pool.add_done_callback(finished.append)

        pool.submit(job.id)
        task = pool.wait(job.id, timeout=10)

        assert task.state == "finished"
        assert task.status == PopulationStatus.COMPLETED
        assert [t.job_id for t in finished] == [job.id]
        db.expire_all()
        assert service.get_job(db, job.id).completed_days == 3
        assert pool.active_jobs() == []

    def test_duplicate_submit_returns_same_task(self, db, service, btc_asset, mapping, pool_factory):
        source = BlockingSource()
        job = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        pool = pool_factory(source)

        first = pool.submit(job.id)
        second = pool.submit(job.id)
        source.release.set()
        pool.wait(job.id, timeout=10)

        assert first is second

    def test_cancel_running_job(self, db, service, btc_asset, mapping, pool_factory):
        """The job stops before its next fetch and ends failed as cancelled."""
        source = BlockingSource()
        job = service.create_job(db, btc_asset.id, mapping.id, START, END, "alice")
        pool = pool_factory(source)

        pool.submit(job.id)
        assert source.started.wait(timeout=5)
        assert job.id in pool.active_jobs()
        assert pool.cancel(job.id) is True
        source.release.set()
        task = pool.wait(job.id, timeout=10)

        assert task.status == PopulationStatus.FAILED
        assert task.error == JOB_CANCELLED_MESSAGE
        db.expire_all()
        stored = service.get_job(db, job.id)
        assert stored.completed_days == 1
        assert stored.current_date == START

    def test_cancel_unknown_job(self, pool_factory, mock_source):
        assert pool_factory(mock_source).cancel(12345) is False

    def test_error_recorded_on_task(self, pool_factory, mock_source):
        pool = pool_factory(mock_source)
        pool.submit(777)
        task = pool.wait(777, timeout=10)

        assert task.state == "error"
        assert "777" in task.error

    def test_finished_tasks_are_pruned(self, session_factory, mock_source):
        registry = PriceSourceRegistry({PriceProvider.YAHOO: mock_source})
        pool = BackfillWorkerPool(
            session_factory, BackfillService(registry=registry, request_delay=0), max_workers=1, finished_history=1,
        )
        try:
            pool.submit(801)
            pool.wait(801, timeout=10)
            pool.submit(802)
            pool.wait(802, timeout=10)

            assert pool.status(801) is None
            assert pool.status(802).state == "error"
        finally:
            pool.shutdown(wait=True)

    def test_submit_after_shutdown(self, pool_factory, mock_source):
        pool = pool_factory(mock_source)
        pool.shutdown()
        assert pool.closed is True
        with pytest.raises(RuntimeError):
            pool.submit(1)
