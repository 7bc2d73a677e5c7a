import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]

from ..config import config
from ..errors import RegistryError
from ..models import StagingOutcome
from .registry_runtime import RegistryRuntime, get_registry_runtime

logger = logging.getLogger(__name__)

EXPIRED_NOTE = "expired"


class StagingCleanupManager:
    """Scheduled expiry of submissions left unreviewed past the staging TTL."""

    def __init__(self, runtime: Optional[RegistryRuntime] = None) -> None:
        self.scheduler = AsyncIOScheduler()
        self._runtime = runtime
        self._job_added = False

    @property
    def runtime(self) -> RegistryRuntime:
        if self._runtime is None:
            self._runtime = get_registry_runtime()
        return self._runtime

    def start(self) -> None:
        interval_hours = int(config.REGISTRY.STAGING_CLEANUP_INTERVAL_HOURS)
        if interval_hours <= 0 or int(config.REGISTRY.STAGING_TTL_HOURS) <= 0:
            logger.info("Staging expiry scheduler disabled")
            return
        if self.scheduler.running:
            return
        try:
            if not self._job_added:
                self.scheduler.add_job(self.expire_stale_submissions, "interval", hours=interval_hours)
                self._job_added = True
            self.scheduler.start()
        except RuntimeError:
            # Previous event loop was closed (repeated TestClient lifespans).
            self.scheduler = AsyncIOScheduler()
            self.scheduler.add_job(self.expire_stale_submissions, "interval", hours=interval_hours)
            self._job_added = True
            self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def expire_stale_submissions(self) -> int:
        ttl_hours = int(config.REGISTRY.STAGING_TTL_HOURS)
        if ttl_hours <= 0:
            return 0
        expired = 0
        for row in self.runtime.staging.list_stale(ttl_hours):
            submission_id = row["submission_id"]
            review = self.runtime.reviews.get(submission_id)
            if review is not None and review.is_terminal:
                # Approved entries wait for the next merge trigger.
                continue
            try:
                if review is None:
                    self.runtime.staging.resolve((row["path"], row["version"]), StagingOutcome.EXPIRED)
                else:
                    self.runtime.reviews.reject(
                        submission_id,
                        reviewer="staging-expiry",
                        note=EXPIRED_NOTE,
                        outcome=StagingOutcome.EXPIRED,
                    )
                expired += 1
            except RegistryError:
                logger.warning("Failed to expire submission %s", submission_id, exc_info=True)
        if expired:
            logger.info("Expired %s stale submissions", expired)
        return expired


staging_cleanup_manager = StagingCleanupManager()
