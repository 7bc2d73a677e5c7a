import pytest

from protocol_registry.errors import ConflictError, NotFoundError
from protocol_registry.models import ReviewState
from tests.common.protocol_fixtures import SOIL_DOMAIN, soil_moisture_protocol


def _push(runtime, version="1.0.0", note="", **overrides):
    return runtime.client.push(soil_moisture_protocol(**overrides), SOIL_DOMAIN, version, note)


def test_push_opens_review_with_prechecked_checklist(registry_runtime):
    submission_id = _push(registry_runtime)

    record = registry_runtime.reviews.get(submission_id)
    assert record.state == ReviewState.OPENED
    assert str(record.path) == "environmental/soil/soil_moisture_percent"
    items = {item.key: item for item in record.checklist}
    assert len(items) == 9
    assert items["naming"].automated and items["naming"].passed
    assert items["fields"].passed
    assert items["description"].passed
    assert items["version"].passed
    assert items["examples"].automated is False
    assert items["examples"].passed is None
    assert items["atomic"].passed is None


def test_precheck_flags_mechanical_problems(registry_runtime):
    definition = soil_moisture_protocol(
        domain_path=SOIL_DOMAIN,
        name="SoilMoisture",
        description="Soil moisture",
    )
    items = {item.key: item for item in registry_runtime.reviews.precheck(definition)}
    assert items["naming"].passed is False
    assert items["fields"].passed is False
    assert items["fields"].detail == "INVALID_NAME"
    assert items["description"].passed is False
    assert items["version"].passed is False
    assert items["version"].detail == "change note is empty"


def test_approve_is_terminal(registry_runtime):
    submission_id = _push(registry_runtime)

    record = registry_runtime.reviews.approve(submission_id, reviewer="alice", note="looks right")
    assert record.state == ReviewState.APPROVED
    assert record.reviewer == "alice"
    assert record.decided_at is not None

    with pytest.raises(ConflictError):
        registry_runtime.reviews.reject(submission_id)
    with pytest.raises(ConflictError):
        registry_runtime.reviews.approve(submission_id)
    # Approval alone does not promote.
    assert registry_runtime.staging.pending_ids() == {submission_id}


def test_reject_discards_staging_entry(registry_runtime):
    submission_id = _push(registry_runtime)

    record = registry_runtime.reviews.reject(submission_id, reviewer="bob", note="not atomic")
    assert record.state == ReviewState.REJECTED
    assert registry_runtime.staging.pending_ids() == set()
    with pytest.raises(ConflictError):
        registry_runtime.reviews.approve(submission_id)

    # The same version may be resubmitted after rejection.
    resubmitted = _push(registry_runtime)
    assert resubmitted != submission_id


def test_decide_unknown_submission(registry_runtime):
    with pytest.raises(NotFoundError):
        registry_runtime.reviews.approve("missing")


def test_list_reviews_by_state(registry_runtime):
    first = _push(registry_runtime, "1.0.0")
    second = _push(registry_runtime, "1.1.0")
    registry_runtime.reviews.approve(first)

    approved = registry_runtime.reviews.list_reviews(ReviewState.APPROVED)
    opened = registry_runtime.reviews.list_reviews(ReviewState.OPENED)
    assert [r.submission_id for r in approved] == [first]
    assert [r.submission_id for r in opened] == [second]
    assert len(registry_runtime.reviews.list_reviews()) == 2


def test_render_request_mirrors_submission_template(registry_runtime):
    submission_id = _push(registry_runtime, author=None)

    body = registry_runtime.reviews.render_request(submission_id)

    assert body.startswith("## Protocol submission for review")
    assert "`environmental/soil/soil_moisture_percent` version `1.0.0`" in body
    assert "- [x] Protocol follows naming conventions (underscores, descriptive)" in body
    assert "- [ ] Protocol is atomic (single concept)" in body
    assert "name: soil_moisture_percent" in body
    assert "Protocol will be automatically moved to final location upon merge." in body


def test_render_request_unknown_submission(registry_runtime):
    with pytest.raises(NotFoundError):
        registry_runtime.reviews.render_request("missing")
