from typing import List, Optional

from fastapi import APIRouter, HTTPException  # type: ignore[import-not-found]
from fastapi.responses import PlainTextResponse  # type: ignore[import-not-found]

from ..errors import RegistryError
from ..models import (
    MergeBatchReport,
    MergeTriggerRequest,
    ReviewDecisionRequest,
    ReviewRecord,
    ReviewState,
    SubmissionStatusResponse,
)
from ..services.registry_runtime import get_registry_runtime
from .common import to_http_exception

router = APIRouter(tags=["submissions"])


def _to_status(record: ReviewRecord, pending: set) -> SubmissionStatusResponse:
    return SubmissionStatusResponse(
        submission_id=record.submission_id,
        path=str(record.path),
        version=record.version,
        state=record.state,
        staged=record.submission_id in pending,
        checklist=record.checklist,
        opened_at=record.opened_at,
        decided_at=record.decided_at,
        reviewer=record.reviewer,
        note=record.note,
    )


@router.get("/submissions", response_model=List[SubmissionStatusResponse])
async def list_submissions(state: Optional[ReviewState] = None, limit: int = 100):
    runtime = get_registry_runtime()
    try:
        records = runtime.reviews.list_reviews(state, limit=limit)
        pending = runtime.staging.pending_ids()
    except RegistryError as exc:
        raise to_http_exception(exc)
    return [_to_status(record, pending) for record in records]


@router.get("/submissions/{submission_id}", response_model=SubmissionStatusResponse)
async def get_submission(submission_id: str):
    runtime = get_registry_runtime()
    record = runtime.reviews.get(submission_id)
    if not record:
        raise HTTPException(status_code=404, detail="Submission not found")
    return _to_status(record, runtime.staging.pending_ids())


@router.get("/submissions/{submission_id}/request", response_class=PlainTextResponse)
async def get_submission_request(submission_id: str):
    try:
        return get_registry_runtime().reviews.render_request(submission_id)
    except RegistryError as exc:
        raise to_http_exception(exc)


@router.post("/submissions/{submission_id}/approve", response_model=SubmissionStatusResponse)
async def approve_submission(submission_id: str, decision: Optional[ReviewDecisionRequest] = None):
    decision = decision or ReviewDecisionRequest()
    runtime = get_registry_runtime()
    try:
        record = runtime.reviews.approve(submission_id, reviewer=decision.reviewer, note=decision.note)
    except RegistryError as exc:
        raise to_http_exception(exc)
    return _to_status(record, runtime.staging.pending_ids())


@router.post("/submissions/{submission_id}/reject", response_model=SubmissionStatusResponse)
async def reject_submission(submission_id: str, decision: Optional[ReviewDecisionRequest] = None):
    decision = decision or ReviewDecisionRequest()
    runtime = get_registry_runtime()
    try:
        record = runtime.reviews.reject(submission_id, reviewer=decision.reviewer, note=decision.note)
    except RegistryError as exc:
        raise to_http_exception(exc)
    return _to_status(record, runtime.staging.pending_ids())


@router.post("/merges", response_model=MergeBatchReport)
async def trigger_merge(request: Optional[MergeTriggerRequest] = None):
    submission_ids = request.submission_ids if request else None
    try:
        return get_registry_runtime().merge_processor.process_batch(submission_ids)
    except RegistryError as exc:
        raise to_http_exception(exc)
