"""
Application wiring.

Builds every service once at startup from Settings and hands them to the
HTTP layer. Collaborators can be injected for tests.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as redis
from azure.storage.blob import BlobServiceClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .common.events import RedisEventPublisher
from .config.contracts import Settings
from .cost.observability import CostObservabilityCollector
from .cost.shell import AdmissionGate, BudgetEvaluator, CostLedger
from .jobs.integration import JobStatusService, VideoGenerationService
from .jobs.observability import JobsObservabilityCollector
from .jobs.shell import JobRecordStore, SessionStore, StatusReconciler
from .observability.integration import ObservabilityIntegration
from .observability.shell import MetricRecorder
from .storage.shell import AssetMigrator, create_blob_service
from .video.contracts import VideoProvider
from .video.shell import DemoVideoProvider, VeoVideoProvider


logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    redis: redis.Redis
    engine: AsyncEngine
    http_client: httpx.AsyncClient
    ledger: CostLedger
    evaluator: BudgetEvaluator
    gate: AdmissionGate
    job_store: JobRecordStore
    sessions: SessionStore
    provider: VideoProvider
    reconciler: StatusReconciler
    generation: VideoGenerationService
    job_status: JobStatusService
    migrator: Optional[AssetMigrator] = None
    observability: Optional[ObservabilityIntegration] = None

    @classmethod
    async def build(
        cls,
        settings: Settings,
        redis_client: Optional[redis.Redis] = None,
        engine: Optional[AsyncEngine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        provider: Optional[VideoProvider] = None,
        blob_service: Optional[BlobServiceClient] = None,
        observability: Optional[ObservabilityIntegration] = None
    ) -> "AppContext":
        redis_client = redis_client or redis.from_url(settings.redis_url, decode_responses=True)
        engine = engine or create_async_engine(settings.database_url)
        http_client = http_client or httpx.AsyncClient(timeout=settings.provider.timeout_seconds)

        if observability is not None and observability.is_initialized:
            recorder = MetricRecorder(observability.create_meter("adcraft.backend"))
        else:
            recorder = MetricRecorder()
        cost_collector = CostObservabilityCollector(recorder)
        jobs_collector = JobsObservabilityCollector(recorder)

        cost_events = RedisEventPublisher(redis_client, "cost")
        job_events = RedisEventPublisher(redis_client, "jobs")

        ledger = CostLedger(
            async_sessionmaker(engine, expire_on_commit=False),
            event_publisher=cost_events,
            collector=cost_collector,
        )
        await ledger.ensure_schema()

        evaluator = BudgetEvaluator(
            ledger, settings.budget, event_publisher=cost_events, collector=cost_collector
        )
        ledger.subscribe(evaluator.check_alerts)
        gate = AdmissionGate(evaluator, event_publisher=cost_events, collector=cost_collector)

        if provider is None:
            if settings.provider.is_demo:
                provider = DemoVideoProvider()
            else:
                provider = VeoVideoProvider(http_client, settings.provider)

        blob_service = blob_service or create_blob_service(settings.storage)
        migrator = None
        if blob_service is not None:
            migrator = AssetMigrator(http_client, blob_service, settings.storage, settings.provider)
        else:
            logger.warning("Azure storage not configured; completed videos keep provider URLs")

        job_store = JobRecordStore(redis_client)
        sessions = SessionStore(redis_client)
        reconciler = StatusReconciler(
            job_store,
            sessions,
            provider,
            migrator,
            event_publisher=job_events,
            collector=jobs_collector,
        )

        logger.info(
            f"Application context ready ({settings.environment}, provider={'demo' if settings.provider.is_demo else 'veo'})"
        )

        return cls(
            settings=settings,
            redis=redis_client,
            engine=engine,
            http_client=http_client,
            ledger=ledger,
            evaluator=evaluator,
            gate=gate,
            job_store=job_store,
            sessions=sessions,
            provider=provider,
            reconciler=reconciler,
            generation=VideoGenerationService(gate, ledger, sessions, job_store, provider),
            job_status=JobStatusService(
                job_store,
                reconciler,
                migrator,
                max_age=settings.job_max_age,
                signed_url_ttl_seconds=settings.storage.signed_url_ttl_seconds,
                collector=jobs_collector,
            ),
            migrator=migrator,
            observability=observability,
        )

    async def close(self) -> None:
        await self.http_client.aclose()
        await self.redis.aclose()
        await self.engine.dispose()
        if self.migrator is not None:
            self.migrator.blob_service.close()
        if self.observability is not None:
            self.observability.shutdown()
        logger.info("Application context closed")
