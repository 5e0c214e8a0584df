"""
Video job I/O operations - Redis job/session records and status reconciliation.
All external interactions go here.
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from uuid import uuid4

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ..common.errors import PersistenceError
from ..common.events import EventPublisher, log_event_publisher, publish_safely
from ..observability.integration import TrackedOperation
from ..storage.contracts import MigrationFailed, MigrationResult
from ..storage.shell import AssetMigrator
from ..video.contracts import ProviderError, ProviderStatus, VideoProvider
from .contracts import (
    CancellationFailed,
    CannotCancel,
    ConcurrentModificationError,
    JobNotFound,
    JobStatus,
    Session,
    SessionStatus,
    VideoJob,
)
from .core import (
    CANCELLED_ERROR,
    MIGRATION_CLAIMED,
    apply_changes,
    can_cancel,
    deserialize_job,
    deserialize_migration,
    is_terminal,
    merge_provider_status,
    serialize_job,
    serialize_migration,
    session_from_document,
    session_status_for,
    session_to_document,
)
from .events import JobCancelled, JobCompleted, JobStatusChanged, MigrationFellBack


logger = logging.getLogger(__name__)

MIGRATION_CLAIM_TTL_SECONDS = 600
MIGRATION_RESULT_TTL_SECONDS = 86400
MAX_CANCEL_ATTEMPTS = 3


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return f"job-{uuid4().hex}"


class JobRecordStore:
    """
    Video job documents in Redis.

    Each job is a JSON document under jobs:<id>. Status index sets
    (jobs:status:<status>) are kept in the same transaction as the
    document write.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        clock: Callable[[], datetime] = utc_now,
        key_prefix: str = "jobs"
    ):
        self.redis = redis_client
        self.clock = clock
        self.key_prefix = key_prefix

    def job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:{job_id}"

    def status_key(self, status: JobStatus) -> str:
        return f"{self.key_prefix}:status:{status.value}"

    def migration_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:migration:{job_id}"

    async def create(self, job: VideoJob) -> VideoJob:
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self.job_key(job.id), serialize_job(job), nx=True)
                pipe.sadd(self.status_key(job.status), job.id)
                created, _ = await pipe.execute()
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to create job {job.id}: {e}") from e

        if not created:
            raise PersistenceError(f"Job already exists: {job.id}")

        logger.info(f"Created job {job.id}", extra={"job_id": job.id, "session_id": job.session_id})
        return job

    async def get(self, job_id: str) -> Optional[VideoJob]:
        try:
            raw = await self.redis.get(self.job_key(job_id))
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to read job {job_id}: {e}") from e
        return deserialize_job(raw) if raw else None

    async def update(
        self,
        job_id: str,
        changes: Mapping[str, Any],
        expected_updated_at: Optional[datetime] = None
    ) -> VideoJob:
        """
        Apply changes to a job document.

        With expected_updated_at this is a compare-and-set: the write only
        happens if the stored updated_at still matches and no other client
        touched the key between the read and the write.

        Raises:
            JobNotFound: No document for the job
            ConcurrentModificationError: The document changed since it was read
            PersistenceError: Redis failure
        """
        key = self.job_key(job_id)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if not raw:
                    raise JobNotFound(job_id)

                current = deserialize_job(raw)
                if expected_updated_at is not None and current.updated_at != expected_updated_at:
                    raise ConcurrentModificationError(job_id)

                updated = apply_changes(current, changes, self.clock())

                pipe.multi()
                pipe.set(key, serialize_job(updated))
                if updated.status != current.status:
                    pipe.srem(self.status_key(current.status), job_id)
                    pipe.sadd(self.status_key(updated.status), job_id)
                await pipe.execute()
        except WatchError as e:
            raise ConcurrentModificationError(job_id) from e
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to update job {job_id}: {e}") from e

        return updated

    async def claim_migration(self, job_id: str, ttl_seconds: int = MIGRATION_CLAIM_TTL_SECONDS) -> bool:
        """Take the per-job migration marker. False if another poller holds it."""
        try:
            claimed = await self.redis.set(self.migration_key(job_id), MIGRATION_CLAIMED, nx=True, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to claim migration for job {job_id}: {e}") from e
        return bool(claimed)

    async def save_migration(
        self,
        job_id: str,
        asset_changes: Mapping[str, Any],
        migrated: bool,
        ttl_seconds: int = MIGRATION_RESULT_TTL_SECONDS
    ) -> None:
        """Replace the claim with the migration outcome so a retried write never copies again."""
        try:
            await self.redis.set(
                self.migration_key(job_id), serialize_migration(asset_changes, migrated), ex=ttl_seconds
            )
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to save migration for job {job_id}: {e}") from e

    async def load_migration(self, job_id: str) -> Optional[Tuple[Dict[str, Any], bool]]:
        try:
            raw = await self.redis.get(self.migration_key(job_id))
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to read migration for job {job_id}: {e}") from e
        return deserialize_migration(raw)

    async def release_migration(self, job_id: str) -> None:
        try:
            await self.redis.delete(self.migration_key(job_id))
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to release migration for job {job_id}: {e}") from e

    async def count_by_status(self) -> Dict[JobStatus, int]:
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                for status in JobStatus:
                    pipe.scard(self.status_key(status))
                counts = await pipe.execute()
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to count jobs: {e}") from e
        return {status: int(count) for status, count in zip(JobStatus, counts)}


class SessionStore:
    """Generation sessions as Redis JSON documents under sessions:<id>."""

    def __init__(
        self,
        redis_client: redis.Redis,
        clock: Callable[[], datetime] = utc_now,
        key_prefix: str = "sessions"
    ):
        self.redis = redis_client
        self.clock = clock
        self.key_prefix = key_prefix

    def session_key(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    async def create(self, prompt: str, session_id: Optional[str] = None) -> Session:
        now = self.clock()
        session = Session(
            id=session_id or str(uuid4()),
            prompt=prompt,
            status=SessionStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        await self._save(session)
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        try:
            raw = await self.redis.get(self.session_key(session_id))
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to read session {session_id}: {e}") from e
        return session_from_document(json.loads(raw)) if raw else None

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        video_job_id: Optional[str] = None
    ) -> Optional[Session]:
        """Set the session status. Returns None if the session does not exist."""
        session = await self.get(session_id)
        if session is None:
            logger.warning(f"Session {session_id} not found for status update")
            return None

        updated = Session(
            id=session.id,
            prompt=session.prompt,
            status=status,
            created_at=session.created_at,
            updated_at=self.clock(),
            video_job_id=video_job_id or session.video_job_id,
        )
        await self._save(updated)
        return updated

    async def _save(self, session: Session) -> None:
        try:
            await self.redis.set(self.session_key(session.id), json.dumps(session_to_document(session)))
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Failed to write session {session.id}: {e}") from e


class StatusReconciler:
    """
    Brings local job records in line with the provider.

    Reconciliation is pull-based: it runs when a client polls a job.
    """

    def __init__(
        self,
        store: JobRecordStore,
        sessions: SessionStore,
        provider: VideoProvider,
        migrator: Optional[AssetMigrator] = None,
        event_publisher: Optional[EventPublisher] = None,
        clock: Callable[[], datetime] = utc_now,
        collector=None,
        migration_claim_ttl: int = MIGRATION_CLAIM_TTL_SECONDS
    ):
        self.store = store
        self.sessions = sessions
        self.provider = provider
        self.migrator = migrator
        self.event_publisher = event_publisher or log_event_publisher
        self.clock = clock
        self.collector = collector
        self.migration_claim_ttl = migration_claim_ttl

    async def reconcile(self, job_id: str) -> VideoJob:
        """
        Refresh a job from the provider and persist what changed.

        Terminal jobs are returned as stored without contacting the
        provider. Any poll failure returns the stored job unchanged, and
        migration failures complete the job with the provider URL. A
        migration result is saved before the job write, so a write that
        fails is retried on the next poll without copying again.

        Raises:
            JobNotFound: No such job
            PersistenceError: The job store is unavailable
        """
        start_time = time.perf_counter()
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)

        if is_terminal(job.status):
            self._track_reconcile(start_time, "terminal")
            return job

        try:
            reported = await self.provider.poll_status(job.provider_operation_id)
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(
                f"Provider status check failed for job {job_id}, returning cached record: {e}",
                extra={"job_id": job_id, "operation_id": job.provider_operation_id}
            )
            return self._provider_failed(job, e, start_time)
        except Exception as e:
            logger.error(
                f"Unexpected provider status failure for job {job_id}, returning cached record: {e}",
                extra={"job_id": job_id, "operation_id": job.provider_operation_id},
                exc_info=True
            )
            return self._provider_failed(job, e, start_time)

        changes = merge_provider_status(job, reported)
        migrated = False

        if changes.get("status") == JobStatus.COMPLETED:
            saved = await self.store.load_migration(job_id)
            if saved is not None:
                logger.info(f"Reusing saved migration result for job {job_id}")
                asset_changes, migrated = saved
            elif await self.store.claim_migration(job_id, self.migration_claim_ttl):
                asset_changes, migrated = await self._migrate_assets(job, reported)
                await self._save_migration(job_id, asset_changes, migrated)
            else:
                logger.info(f"Migration for job {job_id} is owned by another poller")
                self._track_reconcile(start_time, "migration_in_progress")
                return job

            changes.update(asset_changes)
            changes["completed_at"] = self.clock()

        if not changes:
            self._track_reconcile(start_time, "unchanged")
            return job

        try:
            updated = await self.store.update(job_id, changes, expected_updated_at=job.updated_at)
        except ConcurrentModificationError:
            logger.info(f"Job {job_id} changed during reconciliation, returning fresh record")
            fresh = await self.store.get(job_id)
            self._track_reconcile(start_time, "conflict")
            return fresh or job

        await self._after_transition(job, updated, migrated)
        self._track_reconcile(start_time, "updated")
        return updated

    async def cancel(self, job_id: str) -> VideoJob:
        """
        Cancel a pending or processing job at the provider, then mark it failed.

        Raises:
            JobNotFound: No such job
            CannotCancel: The job is already completed or failed
            CancellationFailed: The provider did not confirm the cancellation
            ProviderUnavailable: The provider could not be reached
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if not can_cancel(job.status):
            raise CannotCancel(job_id, job.status)

        confirmed = await self.provider.cancel(job.provider_operation_id)
        if not confirmed:
            raise CancellationFailed(job_id)

        changes = {"status": JobStatus.FAILED, "error": CANCELLED_ERROR}
        updated = None
        for attempt in range(MAX_CANCEL_ATTEMPTS):
            try:
                updated = await self.store.update(job_id, changes, expected_updated_at=job.updated_at)
                break
            except ConcurrentModificationError:
                logger.info(f"Retrying cancel write for job {job_id} (attempt {attempt + 1})")
                job = await self.store.get(job_id)
                if job is None:
                    raise JobNotFound(job_id)
                if is_terminal(job.status):
                    return job

        if updated is None:
            raise ConcurrentModificationError(job_id)

        logger.info(f"Cancelled job {job_id}", extra={"job_id": job_id, "session_id": job.session_id})
        await publish_safely(
            self.event_publisher,
            JobCancelled(job_id=job_id, session_id=job.session_id, timestamp=self.clock())
        )
        await self._after_transition(job, updated, migrated=False)
        return updated

    async def _migrate_assets(self, job: VideoJob, reported: ProviderStatus):
        source_url = reported.video_url
        fallback = {
            "video_url": source_url,
            "thumbnail_url": reported.thumbnail_url or source_url,
            "source_video_url": source_url,
        }

        if self.migrator is None:
            logger.warning(f"Durable storage not configured, job {job.id} keeps provider URL")
            await self._publish_fallback(job, source_url, "storage not configured")
            return fallback, False

        with TrackedOperation("jobs.migrate_assets", attributes={"job.id": job.id}) as operation:
            try:
                result = await self.migrator.migrate(
                    source_url,
                    job.id,
                    metadata={"session_id": job.session_id, "operation_id": job.provider_operation_id},
                )
            except MigrationFailed as e:
                result = MigrationResult(success=False, original_url=source_url, error=str(e))
            except Exception as e:
                logger.error(
                    f"Unexpected migration failure for job {job.id}: {e}",
                    extra={"job_id": job.id, "source_url": source_url},
                    exc_info=True
                )
                result = MigrationResult(success=False, original_url=source_url, error=str(e) or type(e).__name__)
            operation.add_attribute("migration.success", result.success)

        if self.collector:
            self.collector.track_migration(operation.duration_ms, result)

        if not result.success:
            logger.error(
                f"Migration failed for job {job.id}, keeping provider URL: {result.error}",
                extra={"job_id": job.id, "source_url": source_url}
            )
            await self._publish_fallback(job, source_url, result.error)
            return fallback, False

        return {
            "video_url": result.new_video_url,
            "thumbnail_url": result.new_thumbnail_url or result.new_video_url,
            "source_video_url": source_url,
        }, True

    async def _publish_fallback(self, job: VideoJob, source_url: str, error: Optional[str]) -> None:
        await publish_safely(
            self.event_publisher,
            MigrationFellBack(job_id=job.id, source_url=source_url, error=error, timestamp=self.clock())
        )

    async def _after_transition(self, previous: VideoJob, updated: VideoJob, migrated: bool) -> None:
        if updated.status == previous.status:
            return

        await publish_safely(
            self.event_publisher,
            JobStatusChanged(
                job_id=updated.id,
                session_id=updated.session_id,
                previous_status=previous.status,
                new_status=updated.status,
                progress=updated.progress,
                timestamp=updated.updated_at,
                error=updated.error,
            )
        )

        if updated.status == JobStatus.COMPLETED:
            await publish_safely(
                self.event_publisher,
                JobCompleted(
                    job_id=updated.id,
                    session_id=updated.session_id,
                    video_url=updated.video_url,
                    migrated=migrated,
                    timestamp=updated.updated_at,
                )
            )

        session_status = session_status_for(updated.status)
        if session_status is not None:
            await self._mirror_session(updated, session_status)

    async def _mirror_session(self, job: VideoJob, status: SessionStatus) -> None:
        try:
            await self.sessions.update_status(job.session_id, status, video_job_id=job.id)
        except PersistenceError as e:
            logger.warning(
                f"Failed to mirror job {job.id} status to session {job.session_id}: {e}",
                extra={"job_id": job.id, "session_id": job.session_id}
            )

    async def _save_migration(self, job_id: str, asset_changes: Dict[str, Any], migrated: bool) -> None:
        try:
            await self.store.save_migration(job_id, asset_changes, migrated)
        except PersistenceError:
            try:
                await self.store.release_migration(job_id)
            except PersistenceError as e:
                logger.error(f"Failed to release migration claim for job {job_id}: {e}")
            raise

    def _provider_failed(self, job: VideoJob, error: Exception, start_time: float) -> VideoJob:
        if self.collector:
            self.collector.track_provider_failure("poll_status", error)
        self._track_reconcile(start_time, "provider_error")
        return job

    def _track_reconcile(self, start_time: float, outcome: str) -> None:
        if self.collector:
            self.collector.track_reconcile((time.perf_counter() - start_time) * 1000, outcome)
