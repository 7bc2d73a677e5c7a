import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi import HTTPException

from protocol_registry.errors import IOFailure
from protocol_registry.models import (
    MergeEntryStatus,
    MergeTriggerRequest,
    ReviewDecisionRequest,
    ReviewState,
)
from protocol_registry.routers import submissions as submissions_router
from tests.common.protocol_fixtures import SOIL_DOMAIN, soil_moisture_protocol


@pytest.fixture
def routed_runtime(registry_runtime, monkeypatch):
    monkeypatch.setattr(
        "protocol_registry.routers.submissions.get_registry_runtime",
        lambda: registry_runtime
    )
    return registry_runtime


def _push(runtime, version="1.0.0", note=""):
    return runtime.client.push(soil_moisture_protocol(), SOIL_DOMAIN, version, note)


@pytest.mark.asyncio
async def test_list_and_get_submissions(routed_runtime):
    submission_id = _push(routed_runtime)

    listed = await submissions_router.list_submissions(state=ReviewState.OPENED)
    assert [s.submission_id for s in listed] == [submission_id]
    assert listed[0].staged is True

    status = await submissions_router.get_submission(submission_id)
    assert status.path == "environmental/soil/soil_moisture_percent"
    assert status.state == ReviewState.OPENED
    assert len(status.checklist) == 9

    assert await submissions_router.list_submissions(state=ReviewState.APPROVED) == []


@pytest.mark.asyncio
async def test_get_unknown_submission_returns_404(routed_runtime):
    with pytest.raises(HTTPException) as exc:
        await submissions_router.get_submission("missing")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_get_submission_request_renders_markdown(routed_runtime):
    submission_id = _push(routed_runtime)

    body = await submissions_router.get_submission_request(submission_id)

    assert body.startswith("## Protocol submission for review")
    assert submission_id in body


@pytest.mark.asyncio
async def test_approve_then_merge(routed_runtime):
    submission_id = _push(routed_runtime)

    approved = await submissions_router.approve_submission(
        submission_id, ReviewDecisionRequest(reviewer="alice", note="ok")
    )
    assert approved.state == ReviewState.APPROVED
    assert approved.reviewer == "alice"
    assert approved.staged is True

    report = await submissions_router.trigger_merge(MergeTriggerRequest(submission_ids=[submission_id]))
    assert [r.status for r in report.results] == [MergeEntryStatus.PROMOTED]

    status = await submissions_router.get_submission(submission_id)
    assert status.state == ReviewState.APPROVED
    assert status.staged is False


@pytest.mark.asyncio
async def test_trigger_merge_without_body_processes_all_approved(routed_runtime):
    submission_id = _push(routed_runtime)
    await submissions_router.approve_submission(submission_id)

    report = await submissions_router.trigger_merge()

    assert [r.submission_id for r in report.promoted] == [submission_id]


@pytest.mark.asyncio
async def test_reject_and_second_decision_conflicts(routed_runtime):
    submission_id = _push(routed_runtime)

    rejected = await submissions_router.reject_submission(
        submission_id, ReviewDecisionRequest(reviewer="bob", note="not atomic")
    )
    assert rejected.state == ReviewState.REJECTED
    assert rejected.staged is False

    with pytest.raises(HTTPException) as exc:
        await submissions_router.approve_submission(submission_id)
    assert exc.value.status_code == 409

    with pytest.raises(HTTPException) as exc:
        await submissions_router.reject_submission("missing")
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_trigger_merge_maps_store_failure_to_503(routed_runtime, monkeypatch):
    def _unreachable():
        raise IOFailure("submission index unreachable")

    monkeypatch.setattr(routed_runtime.staging, "pending_ids", _unreachable)

    with pytest.raises(HTTPException) as exc:
        await submissions_router.trigger_merge()
    assert exc.value.status_code == 503
    assert exc.value.detail["code"] == "IO_FAILURE"


@pytest.mark.asyncio
async def test_status_after_merge_conflict_is_rejected(routed_runtime):
    low = _push(routed_runtime, "1.0.0")
    high = _push(routed_runtime, "1.1.0", "coarser")
    await submissions_router.approve_submission(high)
    routed_runtime.store.promote(routed_runtime.staging.get(high).path, "1.1.0")
    await submissions_router.approve_submission(low)

    await submissions_router.trigger_merge()

    status = await submissions_router.get_submission(low)
    assert status.state == ReviewState.REJECTED
    assert status.staged is False
    assert status.reviewer == "merge-processor"
