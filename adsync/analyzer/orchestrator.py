"""ADSYNC — Fetch Orchestrator.

Decides, for one tenant/platform/date range, whether to serve the tiered
cache, the durable summary store, or a live platform fetch, and is the only
component that writes either store.

Routing:
  - the current month/week → tiered cache (fresh hit), otherwise refresh
    and write through to the cache and the summary store in one commit;
  - any other whole month/week → summary store, live fetch + upsert on miss;
  - a run of whole months or whole weeks → each piece as above, combined;
  - anything else → live fetch, not persisted.

At most one platform fetch per (tenant, platform, period) is in flight;
concurrent callers share it. Platform failures fall back to the last known
snapshot or summary, flagged ``stale`` with a ``degraded_reason``.
"""

import asyncio
import time
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from adsync.analyzer.funnel_engine import normalize_campaigns
from adsync.analyzer.kpi_engine import aggregate, merge_campaigns
from adsync.config import settings
from adsync.core.errors import (
    EngineError,
    PlatformError,
    PlatformTransientError,
    StoreError,
    ValidationError,
)
from adsync.core.logging import get_logger
from adsync.core.periods import (
    DateRange,
    Granularity,
    Period,
    PeriodKind,
    classify,
    months_before,
    period_containing,
    split_range,
)
from adsync.core.retry import RetryPolicy
from adsync.core.tenants import TenantRegistry
from adsync.database import new_session
from adsync.models.metric_models import (
    AggregatedResult,
    CachedPeriodSnapshot,
    CanonicalMetricRecord,
    DataSource,
    Platform,
    SummaryRecord,
)
from adsync.storage.cache_store import TieredCacheStore
from adsync.storage.summary_store import SummaryStore

logger = get_logger("analyzer.orchestrator")

T = TypeVar("T")
FetchKey = Tuple[str, str, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FetchOrchestrator:
    """Serves AggregatedResults and owns every write to the two stores."""

    def __init__(
        self,
        tenants: TenantRegistry,
        cache: Optional[TieredCacheStore] = None,
        summaries: Optional[SummaryStore] = None,
        retry: Optional[RetryPolicy] = None,
        session_factory: Callable[[], Session] = new_session,
        clock: Callable[[], datetime] = utc_now,
        fetch_timeout: Optional[float] = None,
        stale_while_revalidate: Optional[bool] = None,
        retention_months: Optional[int] = None,
        purge_enabled: Optional[bool] = None,
    ):
        self.tenants = tenants
        self.cache = cache or TieredCacheStore()
        self.summaries = summaries or SummaryStore()
        self.retry = retry or RetryPolicy.from_settings()
        self._session_factory = session_factory
        self._clock = clock
        self.fetch_timeout = (
            settings.platform_fetch_timeout_seconds if fetch_timeout is None else fetch_timeout
        )
        self.stale_while_revalidate = (
            settings.stale_while_revalidate
            if stale_while_revalidate is None
            else stale_while_revalidate
        )
        self.retention_months = (
            settings.summary_retention_months if retention_months is None else retention_months
        )
        self.purge_enabled = (
            settings.summary_purge_enabled if purge_enabled is None else purge_enabled
        )
        self._inflight: Dict[FetchKey, asyncio.Task] = {}

    # ─────────────────────────────────────────────
    # PUBLIC CONTRACT
    # ─────────────────────────────────────────────

    def now(self) -> datetime:
        return self._clock()

    async def fetch_metrics(
        self,
        tenant_id: str,
        platform: Platform,
        date_range: DateRange,
        force_fresh: bool = False,
        timeout: Optional[float] = None,
    ) -> AggregatedResult:
        """Totals and campaign rows for the range, with provenance flags."""
        platform = Platform(platform)
        self.tenants.require(tenant_id, platform)
        timeout = self.fetch_timeout if timeout is None else timeout
        now = self._clock()

        periods = split_range(date_range)
        if periods is None:
            return await self._serve_live(tenant_id, platform, date_range, now, timeout)
        if len(periods) == 1:
            return await self._serve_period(
                tenant_id, platform, periods[0], now, force_fresh, timeout
            )

        parts = await asyncio.gather(
            *(
                self._serve_period(tenant_id, platform, p, now, force_fresh, timeout)
                for p in periods
            )
        )
        return self._combine(tenant_id, platform, date_range, list(parts))

    async def refresh_current(
        self,
        tenant_id: str,
        platform: Platform,
        granularity: Granularity,
        timeout: Optional[float] = None,
    ) -> SummaryRecord:
        """Force a refresh of the period containing now. Errors propagate."""
        platform = Platform(platform)
        self.tenants.require(tenant_id, platform)
        period = period_containing(self._clock().date(), Granularity(granularity))
        task = self._start_refresh(tenant_id, platform, period)
        return await self._await(
            task, self.fetch_timeout if timeout is None else timeout, platform
        )

    async def recollect_period(
        self,
        tenant_id: str,
        platform: Platform,
        granularity: Granularity,
        day: date,
        timeout: Optional[float] = None,
    ) -> SummaryRecord:
        """Re-derive a closed period from the platform and overwrite its summary."""
        platform = Platform(platform)
        self.tenants.require(tenant_id, platform)
        period = period_containing(day, Granularity(granularity))
        if period.end >= self._clock().date():
            raise ValidationError(f"Period {period.period_id} has not closed yet")
        task = self._start_refresh(tenant_id, platform, period, recollection=True)
        return await self._await(
            task, self.fetch_timeout if timeout is None else timeout, platform
        )

    def purge_expired(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Drop superseded cache snapshots and, if enabled, expired summaries."""
        now = now or self._clock()
        cutoff = months_before(now.date(), self.retention_months)
        with self._session_factory() as session:
            try:
                snapshots = self.cache.purge_superseded(session, now)
                removed = self.summaries.purge_before(session, cutoff) if self.purge_enabled else 0
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(f"Purge failed: {e}") from e
        return {"snapshots": snapshots, "summaries": removed}

    async def drain(self) -> None:
        """Wait for every in-flight fetch, background refreshes included."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # ─────────────────────────────────────────────
    # ROUTING
    # ─────────────────────────────────────────────

    async def _serve_period(
        self,
        tenant_id: str,
        platform: Platform,
        period: Period,
        now: datetime,
        force_fresh: bool,
        timeout: float,
    ) -> AggregatedResult:
        today = now.date()
        if period.start > today:
            # Nothing has been reported yet; no key worth persisting
            return await self._serve_live(tenant_id, platform, period.date_range, now, timeout)
        if classify(period.date_range, now).kind == PeriodKind.CURRENT:
            return await self._serve_current(
                tenant_id, platform, period, now, force_fresh, timeout
            )
        return await self._serve_historical(
            tenant_id, platform, period, now, force_fresh, timeout
        )

    async def _serve_current(
        self,
        tenant_id: str,
        platform: Platform,
        period: Period,
        now: datetime,
        force_fresh: bool,
        timeout: float,
    ) -> AggregatedResult:
        log_extra = {
            "tenant_id": tenant_id,
            "platform": platform.value,
            "period_id": period.period_id,
        }
        snapshot = self._read(
            lambda s: self.cache.get(
                s, tenant_id, platform, period.granularity, period.period_id
            )
        )

        if snapshot is not None and not force_fresh:
            if self.cache.is_fresh(snapshot, now):
                logger.info(
                    f"Cache hit for {tenant_id}/{platform.value}/{period.period_id}",
                    extra={**log_extra, "data_source": DataSource.TIERED_CACHE.value},
                )
                return self._from_snapshot(snapshot, period, now)
            if self.stale_while_revalidate:
                self._start_refresh(tenant_id, platform, period)
                logger.info(
                    f"Stale cache for {tenant_id}/{platform.value}/{period.period_id}; "
                    "serving it and revalidating in background",
                    extra={**log_extra, "data_source": DataSource.TIERED_CACHE.value},
                )
                return self._from_snapshot(snapshot, period, now, stale=True)

        if snapshot is None:
            logger.info(
                f"Cache miss for {tenant_id}/{platform.value}/{period.period_id}",
                extra=log_extra,
            )

        try:
            record = await self._await(
                self._start_refresh(tenant_id, platform, period), timeout, platform
            )
        except PlatformError as e:
            if snapshot is not None:
                self._log_degraded(e, log_extra, DataSource.TIERED_CACHE)
                return self._from_snapshot(snapshot, period, now, stale=True, degraded_reason=e.code)
            fallback = self._read(
                lambda s: self.summaries.get(
                    s, tenant_id, period.summary_type, period.summary_date, platform
                )
            )
            if fallback is None:
                raise
            self._log_degraded(e, log_extra, DataSource.SUMMARY_STORE)
            return self._from_summary(fallback, period, now, stale=True, degraded_reason=e.code)

        return self._from_live(record, period)

    async def _serve_historical(
        self,
        tenant_id: str,
        platform: Platform,
        period: Period,
        now: datetime,
        force_fresh: bool,
        timeout: float,
    ) -> AggregatedResult:
        log_extra = {
            "tenant_id": tenant_id,
            "platform": platform.value,
            "period_id": period.period_id,
        }
        record = self._read(
            lambda s: self.summaries.get(
                s, tenant_id, period.summary_type, period.summary_date, platform
            )
        )

        if record is not None and not force_fresh:
            if not self._is_provisional(record, period):
                logger.info(
                    f"Summary hit for {tenant_id}/{platform.value}/{period.period_id}",
                    extra={**log_extra, "data_source": DataSource.SUMMARY_STORE.value},
                )
                return self._from_summary(record, period, now)
            logger.info(
                f"Summary for {period.period_id} was written before the period closed; "
                "refreshing",
                extra=log_extra,
            )
        elif record is None:
            logger.info(
                f"Summary miss for {tenant_id}/{platform.value}/{period.period_id}",
                extra=log_extra,
            )

        try:
            fresh = await self._await(
                self._start_refresh(tenant_id, platform, period), timeout, platform
            )
        except PlatformError as e:
            if record is None:
                raise
            self._log_degraded(e, log_extra, DataSource.SUMMARY_STORE)
            return self._from_summary(record, period, now, stale=True, degraded_reason=e.code)

        return self._from_live(fresh, period)

    async def _serve_live(
        self,
        tenant_id: str,
        platform: Platform,
        date_range: DateRange,
        now: datetime,
        timeout: float,
    ) -> AggregatedResult:
        """Ranges with no period key: fetched every time, never stored."""
        key = (tenant_id, platform.value, str(date_range))
        task = self._coalesce(key, lambda: self._collect(tenant_id, platform, date_range))
        campaigns = await self._await(task, timeout, platform)
        return AggregatedResult(
            tenant_id=tenant_id,
            platform=platform,
            date_range_start=date_range.start,
            date_range_end=date_range.end,
            totals=aggregate(campaigns),
            campaigns=campaigns,
            from_cache=False,
            data_source=DataSource.LIVE_API,
            last_refreshed=now,
        )

    # ─────────────────────────────────────────────
    # FETCH + WRITE-THROUGH
    # ─────────────────────────────────────────────

    def _coalesce(self, key: FetchKey, factory: Callable[[], Awaitable[T]]) -> asyncio.Task:
        task = self._inflight.get(key)
        if task is not None:
            logger.info(f"Joining in-flight fetch for {'/'.join(key)}")
            return task
        task = asyncio.create_task(factory())
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._finished(key, t))
        return task

    def _finished(self, key: FetchKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Fetch for {'/'.join(key)} failed: {exc}")

    def _start_refresh(
        self,
        tenant_id: str,
        platform: Platform,
        period: Period,
        recollection: bool = False,
    ) -> asyncio.Task:
        key = (tenant_id, platform.value, period.period_id)
        return self._coalesce(
            key, lambda: self._refresh_period(tenant_id, platform, period, recollection)
        )

    async def _await(self, task: asyncio.Task, timeout: float, platform: Platform):
        """Wait for a shared fetch; a deadline leaves the fetch running."""
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as e:
            raise PlatformTransientError(
                f"Platform fetch exceeded {timeout}s deadline", platform.value
            ) from e

    async def _collect(
        self, tenant_id: str, platform: Platform, date_range: DateRange
    ) -> List[CanonicalMetricRecord]:
        client = self.tenants.client_for(tenant_id, platform)
        custom = self.tenants.custom_conversions(tenant_id, platform)
        started = time.monotonic()

        async def fetch():
            try:
                return await client.get_campaign_data(date_range.start, date_range.end)
            except EngineError:
                raise
            except Exception as e:
                raise PlatformTransientError(
                    f"{platform.value} client failed: {e!r}", platform.value
                ) from e

        try:
            rows = await self.retry.run(
                fetch,
                label=f"{platform.value} fetch for {tenant_id} {date_range}",
            )
        finally:
            await client.close()
        logger.info(
            f"Fetched {len(rows)} {platform.value} campaigns for {tenant_id} {date_range}",
            extra={
                "tenant_id": tenant_id,
                "platform": platform.value,
                "data_source": DataSource.LIVE_API.value,
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )
        try:
            return normalize_campaigns(rows, platform, custom)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise PlatformError(
                f"Malformed {platform.value} campaign rows: {e}", platform.value
            ) from e

    async def _refresh_period(
        self,
        tenant_id: str,
        platform: Platform,
        period: Period,
        recollection: bool = False,
    ) -> SummaryRecord:
        campaigns = await self._collect(tenant_id, platform, period.date_range)
        now = self._clock()
        totals = aggregate(campaigns)
        tag = f"{platform.value}_api" + ("_recollection" if recollection else "")
        record = SummaryRecord(
            tenant_id=tenant_id,
            summary_type=period.summary_type,
            summary_date=period.summary_date,
            platform=platform,
            totals=totals,
            campaign_data=campaigns,
            data_source=tag,
            last_updated=now,
        )
        snapshot = None
        if period_containing(now.date(), period.granularity) == period:
            snapshot = CachedPeriodSnapshot(
                tenant_id=tenant_id,
                platform=platform,
                granularity=period.granularity,
                period_id=period.period_id,
                campaigns=campaigns,
                totals=totals,
                last_refreshed=now,
            )
        return self._write_through(record, snapshot)

    def _write_through(
        self, record: SummaryRecord, snapshot: Optional[CachedPeriodSnapshot]
    ) -> SummaryRecord:
        """Summary and snapshot land in one commit, or neither does."""
        with self._session_factory() as session:
            try:
                stored = self.summaries.upsert(session, record)
                if snapshot is not None:
                    self.cache.put(session, snapshot)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreError(
                    f"Write-through failed for {record.tenant_id}/{record.platform.value}/"
                    f"{record.summary_date}: {e}"
                ) from e
        logger.info(
            f"Stored {record.summary_type.value} summary {record.summary_date} "
            f"for {record.tenant_id}/{record.platform.value}"
            + (" and refreshed cache" if snapshot is not None else ""),
            extra={"tenant_id": record.tenant_id, "platform": record.platform.value},
        )
        return stored

    def _read(self, query: Callable[[Session], T]) -> T:
        with self._session_factory() as session:
            try:
                return query(session)
            except SQLAlchemyError as e:
                raise StoreError(f"Store read failed: {e}") from e

    # ─────────────────────────────────────────────
    # RESULT BUILDERS
    # ─────────────────────────────────────────────

    @staticmethod
    def _is_provisional(record: SummaryRecord, period: Period) -> bool:
        """Written on or before the period's last day, i.e. while still open."""
        return record.last_updated.date() <= period.end

    @staticmethod
    def _log_degraded(e: PlatformError, log_extra: dict, source: DataSource) -> None:
        logger.warning(
            f"Platform fetch failed ({e.code}: {e}); serving last known data "
            f"from {source.value}",
            extra={**log_extra, "data_source": source.value},
        )

    def _from_snapshot(
        self,
        snapshot: CachedPeriodSnapshot,
        period: Period,
        now: datetime,
        stale: bool = False,
        degraded_reason: Optional[str] = None,
    ) -> AggregatedResult:
        return AggregatedResult(
            tenant_id=snapshot.tenant_id,
            platform=snapshot.platform,
            date_range_start=period.start,
            date_range_end=period.end,
            granularity=period.granularity,
            period_id=period.period_id,
            totals=snapshot.totals,
            campaigns=snapshot.campaigns,
            from_cache=True,
            cache_age_seconds=self.cache.age_seconds(snapshot, now),
            data_source=DataSource.TIERED_CACHE,
            stale=stale,
            degraded_reason=degraded_reason,
            last_refreshed=snapshot.last_refreshed,
        )

    @staticmethod
    def _from_summary(
        record: SummaryRecord,
        period: Period,
        now: datetime,
        stale: bool = False,
        degraded_reason: Optional[str] = None,
    ) -> AggregatedResult:
        return AggregatedResult(
            tenant_id=record.tenant_id,
            platform=record.platform,
            date_range_start=period.start,
            date_range_end=period.end,
            granularity=period.granularity,
            period_id=period.period_id,
            totals=record.totals,
            campaigns=record.campaign_data,
            from_cache=True,
            cache_age_seconds=max((now - record.last_updated).total_seconds(), 0.0),
            data_source=DataSource.SUMMARY_STORE,
            provenance=record.data_source,
            stale=stale,
            degraded_reason=degraded_reason,
            last_refreshed=record.last_updated,
        )

    @staticmethod
    def _from_live(record: SummaryRecord, period: Period) -> AggregatedResult:
        return AggregatedResult(
            tenant_id=record.tenant_id,
            platform=record.platform,
            date_range_start=period.start,
            date_range_end=period.end,
            granularity=period.granularity,
            period_id=period.period_id,
            totals=record.totals,
            campaigns=record.campaign_data,
            from_cache=False,
            data_source=DataSource.LIVE_API,
            provenance=record.data_source,
            last_refreshed=record.last_updated,
        )

    @staticmethod
    def _combine(
        tenant_id: str,
        platform: Platform,
        date_range: DateRange,
        parts: List[AggregatedResult],
    ) -> AggregatedResult:
        """Merge per-period results; totals are re-derived from the merged rows."""
        campaigns = merge_campaigns(c for part in parts for c in part.campaigns)
        sources = {part.data_source for part in parts}
        if DataSource.LIVE_API in sources:
            data_source = DataSource.LIVE_API
        elif DataSource.SUMMARY_STORE in sources:
            data_source = DataSource.SUMMARY_STORE
        else:
            data_source = DataSource.TIERED_CACHE
        ages = [p.cache_age_seconds for p in parts if p.cache_age_seconds is not None]
        refreshed = [p.last_refreshed for p in parts if p.last_refreshed is not None]
        provenance = sorted({p.provenance for p in parts if p.provenance})
        return AggregatedResult(
            tenant_id=tenant_id,
            platform=platform,
            date_range_start=date_range.start,
            date_range_end=date_range.end,
            granularity=parts[0].granularity,
            totals=aggregate(campaigns),
            campaigns=campaigns,
            from_cache=all(p.from_cache for p in parts),
            cache_age_seconds=max(ages) if ages else None,
            data_source=data_source,
            provenance=",".join(provenance) or None,
            stale=any(p.stale for p in parts),
            degraded_reason=next((p.degraded_reason for p in parts if p.degraded_reason), None),
            last_refreshed=min(refreshed) if refreshed else None,
        )
