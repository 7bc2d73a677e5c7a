import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..errors import ConflictError, RegistryError
from ..models import (
    MergeBatchReport,
    MergeEntryResult,
    MergeEntryStatus,
    ReviewRecord,
    ReviewState,
    StagingOutcome,
)
from .registry_store import RegistryStore
from .review_workflow import ReviewWorkflow
from .staging_area import StagingArea
from .version_resolver import parse_version

logger = logging.getLogger(__name__)


class MergeProcessor:
    """
    Promotes approved submissions: archive the current final, publish the
    staged payload, clear the staging entry.

    Every step is idempotent, so a batch interrupted at any point converges
    to the same end state when it is triggered again.
    """

    def __init__(self, store: RegistryStore, staging: StagingArea, reviews: ReviewWorkflow) -> None:
        self.store = store
        self.staging = staging
        self.reviews = reviews
        self._batch_lock = threading.Lock()

    def process_batch(self, submission_ids: Optional[Iterable[str]] = None) -> MergeBatchReport:
        with self._batch_lock:
            report = MergeBatchReport(started_at=datetime.utcnow())
            pending = self.staging.pending_ids()
            candidates = self._collect(submission_ids, pending, report)

            by_path: Dict[str, List[ReviewRecord]] = defaultdict(list)
            for review in candidates:
                by_path[str(review.path)].append(review)
            self._include_approved_predecessors(by_path, pending)

            for path_key in sorted(by_path):
                ordered = sorted(by_path[path_key], key=lambda r: parse_version(r.version))
                blocker = self._lowest_open_version(path_key, pending)
                blocked_because = "is still under review"
                for review in ordered:
                    if blocker is not None and parse_version(blocker) < parse_version(review.version):
                        report.results.append(
                            MergeEntryResult(
                                submission_id=review.submission_id,
                                path=path_key,
                                version=review.version,
                                status=MergeEntryStatus.DEFERRED,
                                error=f"{path_key}@{blocker} {blocked_because}",
                            )
                        )
                        continue
                    result = self._process_entry(review)
                    report.results.append(result)
                    if result.status == MergeEntryStatus.FAILED and result.error_code != "CONFLICT":
                        # Still staged, so no higher version may overtake it.
                        blocker = review.version
                        blocked_because = "failed to promote"

            report.finished_at = datetime.utcnow()
        if report.results:
            logger.info(
                "Merge batch finished: promoted=%s failed=%s deferred=%s",
                len(report.promoted),
                len(report.failed),
                len(report.results) - len(report.promoted) - len(report.failed),
            )
        return report

    def _collect(
        self,
        submission_ids: Optional[Iterable[str]],
        pending: set,
        report: MergeBatchReport,
    ) -> List[ReviewRecord]:
        if submission_ids is None:
            approved = self.reviews.list_reviews(ReviewState.APPROVED, limit=-1)
            return [review for review in approved if review.submission_id in pending]

        candidates: List[ReviewRecord] = []
        for submission_id in submission_ids:
            review = self.reviews.get(submission_id)
            if review is None:
                report.results.append(
                    self._failure(submission_id, "", "", "NOT_FOUND", f"Submission not found: {submission_id}")
                )
                continue
            if review.state != ReviewState.APPROVED:
                report.results.append(
                    self._failure(
                        submission_id,
                        str(review.path),
                        review.version,
                        "CONFLICT",
                        f"Submission {submission_id} is {review.state.value}, not approved",
                    )
                )
                continue
            if submission_id not in pending:
                logger.debug("Submission %s already merged", submission_id)
                continue
            candidates.append(review)
        return candidates

    def _include_approved_predecessors(
        self,
        by_path: Dict[str, List[ReviewRecord]],
        pending: set,
    ) -> None:
        """Add approved, still staged versions below the highest batched version of each path."""
        if not by_path:
            return
        included = {review.submission_id for reviews in by_path.values() for review in reviews}
        for review in self.reviews.list_reviews(ReviewState.APPROVED, limit=-1):
            path_key = str(review.path)
            if path_key not in by_path or review.submission_id in included or review.submission_id not in pending:
                continue
            highest = max(parse_version(r.version) for r in by_path[path_key])
            if parse_version(review.version) < highest:
                logger.info("Including %s@%s ahead of later versions in this batch", path_key, review.version)
                by_path[path_key].append(review)
                included.add(review.submission_id)

    def _lowest_open_version(self, path_key: str, pending: set) -> Optional[str]:
        lowest: Optional[str] = None
        for review in self.reviews.list_reviews(ReviewState.OPENED, limit=-1):
            if str(review.path) != path_key or review.submission_id not in pending:
                continue
            if lowest is None or parse_version(review.version) < parse_version(lowest):
                lowest = review.version
        return lowest

    def _process_entry(self, review: ReviewRecord) -> MergeEntryResult:
        path_key = str(review.path)
        key = (path_key, review.version)
        try:
            result = self.store.promote(review.path, review.version)
            self.staging.resolve(key, StagingOutcome.ACCEPTED)
        except ConflictError as exc:
            logger.warning("Rejecting out-of-order promotion %s@%s: %s", path_key, review.version, exc.message)
            try:
                self.reviews.reject_after_conflict(review.submission_id, exc.message)
            except RegistryError:
                logger.exception("Failed to close conflicting submission %s", review.submission_id)
            return self._failure(review.submission_id, path_key, review.version, exc.code, exc.message)
        except RegistryError as exc:
            logger.exception("Promotion failed for %s@%s", path_key, review.version)
            return self._failure(review.submission_id, path_key, review.version, exc.code, exc.message)
        except Exception as exc:
            logger.exception("Promotion failed for %s@%s", path_key, review.version)
            return self._failure(review.submission_id, path_key, review.version, "INTERNAL", str(exc))

        logger.info(
            "Promoted %s@%s (archived %s)",
            path_key,
            review.version,
            result.archived_version or "nothing",
        )
        return MergeEntryResult(
            submission_id=review.submission_id,
            path=path_key,
            version=review.version,
            status=MergeEntryStatus.PROMOTED,
            archived_version=result.archived_version,
        )

    def _failure(
        self,
        submission_id: str,
        path_key: str,
        version: str,
        code: str,
        message: str,
    ) -> MergeEntryResult:
        return MergeEntryResult(
            submission_id=submission_id,
            path=path_key,
            version=version,
            status=MergeEntryStatus.FAILED,
            error_code=code,
            error=message,
        )
