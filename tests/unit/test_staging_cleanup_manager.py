from datetime import datetime, timedelta

import pytest

from protocol_registry.models import ReviewState
from protocol_registry.services.staging_cleanup_manager import EXPIRED_NOTE, StagingCleanupManager
from tests.common.protocol_fixtures import SOIL_DOMAIN, soil_moisture_protocol


def _set_ttl(config, hours: int) -> None:
    config.defrost()
    config.REGISTRY.STAGING_TTL_HOURS = hours
    config.freeze()


def _backdate(runtime, submission_id: str, hours: int) -> None:
    submitted_at = (datetime.utcnow() - timedelta(hours=hours)).isoformat()
    with runtime.staging._connect() as conn:
        conn.execute(
            "UPDATE staging_entries SET submitted_at = ? WHERE submission_id = ?",
            (submitted_at, submission_id)
        )


@pytest.mark.asyncio
async def test_expire_stale_submissions_rejects_only_open_reviews(registry_runtime, registry_config):
    _set_ttl(registry_config, 24)
    manager = StagingCleanupManager(runtime=registry_runtime)

    stale_open = registry_runtime.client.push(soil_moisture_protocol(), SOIL_DOMAIN, "1.0.0", "")
    stale_approved = registry_runtime.client.push(
        soil_moisture_protocol(name="soil_moisture_class"), SOIL_DOMAIN, "1.0.0", ""
    )
    fresh = registry_runtime.client.push(
        soil_moisture_protocol(name="soil_moisture_flag"), SOIL_DOMAIN, "1.0.0", ""
    )
    registry_runtime.reviews.approve(stale_approved)
    _backdate(registry_runtime, stale_open, 48)
    _backdate(registry_runtime, stale_approved, 48)

    expired = await manager.expire_stale_submissions()

    assert expired == 1
    record = registry_runtime.reviews.get(stale_open)
    assert record.state == ReviewState.REJECTED
    assert record.note == EXPIRED_NOTE
    assert registry_runtime.staging.pending_ids() == {stale_approved, fresh}


@pytest.mark.asyncio
async def test_expire_is_disabled_when_ttl_is_zero(registry_runtime, registry_config):
    _set_ttl(registry_config, 0)
    manager = StagingCleanupManager(runtime=registry_runtime)
    submission_id = registry_runtime.client.push(soil_moisture_protocol(), SOIL_DOMAIN, "1.0.0", "")
    _backdate(registry_runtime, submission_id, 10_000)

    assert await manager.expire_stale_submissions() == 0
    assert registry_runtime.staging.pending_ids() == {submission_id}


def test_start_is_noop_when_disabled(registry_runtime, registry_config):
    _set_ttl(registry_config, 0)
    manager = StagingCleanupManager(runtime=registry_runtime)

    manager.start()

    assert manager.scheduler.running is False
