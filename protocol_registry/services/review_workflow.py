import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Template

from ..config import config
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import (
    ChecklistItem,
    ProtocolDefinition,
    RegistryPath,
    ReviewRecord,
    ReviewState,
    StagingEntry,
    StagingOutcome,
)
from .registry_store import dump_definition
from .staging_area import StagingArea
from .version_resolver import NAME_PATTERN, PLACEHOLDER_PATTERN, VersionResolver, parse_version

logger = logging.getLogger(__name__)

REQUEST_TITLE = "Protocol submission for review"
MERGE_REVIEWER = "merge-processor"
REQUEST_TEMPLATE_PATH = Path(__file__).resolve().parent.parent / "assets" / "templates" / "review_request.md.j2"

# (key, label, automated)
REVIEW_CHECKLIST = (
    ("naming", "Protocol follows naming conventions (underscores, descriptive)", True),
    ("fields", "Required fields are complete and consistent", True),
    ("examples", "Examples are realistic and comprehensive", False),
    ("documentation", "Documentation is clear and complete", False),
    ("bits", "Bit allocation is appropriate for data range", False),
    ("edge_cases", "Function handles edge cases properly (NA values, extremes)", False),
    ("description", "Description uses systematic placeholder syntax", True),
    ("atomic", "Protocol is atomic (single concept)", False),
    ("version", "Version number and change description are appropriate", True),
)


class ReviewWorkflow:
    """Change requests for staged submissions: opened -> approved | rejected."""

    def __init__(
        self,
        staging: StagingArea,
        resolver: VersionResolver,
        db_path: Optional[Path] = None,
    ) -> None:
        self.staging = staging
        self.resolver = resolver
        self.db_path = Path(db_path or config.REGISTRY.SUBMISSIONS_DB)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reviews (
                    submission_id TEXT PRIMARY KEY,
                    path TEXT NOT NULL,
                    version TEXT NOT NULL,
                    state TEXT NOT NULL,
                    checklist_json TEXT NOT NULL,
                    opened_at TEXT NOT NULL,
                    decided_at TEXT,
                    reviewer TEXT,
                    note TEXT
                )
                """
            )

    def open(self, entry: StagingEntry) -> ReviewRecord:
        checklist = self.precheck(entry.payload)
        now = datetime.utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reviews (
                    submission_id, path, version, state, checklist_json, opened_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.submission_id,
                    str(entry.path),
                    entry.version,
                    ReviewState.OPENED.value,
                    json.dumps([item.model_dump() for item in checklist]),
                    now.isoformat(),
                )
            )
        failed = [item.key for item in checklist if item.automated and not item.passed]
        if failed:
            logger.warning(
                "Submission %s opened with failing pre-checks: %s",
                entry.submission_id,
                ", ".join(failed),
            )
        else:
            logger.info("Opened review for submission %s (%s@%s)", entry.submission_id, entry.path, entry.version)
        return ReviewRecord(
            submission_id=entry.submission_id,
            path=entry.path,
            version=entry.version,
            state=ReviewState.OPENED,
            checklist=checklist,
            opened_at=now,
        )

    def precheck(self, definition: ProtocolDefinition) -> List[ChecklistItem]:
        """Evaluate the mechanically checkable checklist items; the rest stay for the reviewer."""
        results: Dict[str, tuple[bool, str]] = {}

        results["naming"] = (
            bool(NAME_PATTERN.match(definition.name)),
            "" if NAME_PATTERN.match(definition.name) else f"name {definition.name!r} is not snake_case",
        )

        try:
            self.resolver.check_fields(definition)
            results["fields"] = (True, "")
        except ValidationError as exc:
            results["fields"] = (False, exc.reason)

        placeholders = set(PLACEHOLDER_PATTERN.findall(definition.description))
        description_ok = bool(placeholders) and placeholders == set(definition.inputs)
        results["description"] = (
            description_ok,
            "" if description_ok else "placeholders do not match inputs",
        )

        version_detail = ""
        try:
            parse_version(definition.version)
        except ValidationError as exc:
            version_detail = exc.message
        if not version_detail and not definition.change_note.strip():
            version_detail = "change note is empty"
        results["version"] = (not version_detail, version_detail)

        checklist: List[ChecklistItem] = []
        for key, label, automated in REVIEW_CHECKLIST:
            item = ChecklistItem(key=key, label=label, automated=automated)
            if automated:
                passed, detail = results[key]
                item = item.model_copy(update={"passed": passed, "detail": detail})
            checklist.append(item)
        return checklist

    def get(self, submission_id: str) -> Optional[ReviewRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE submission_id = ?",
                (submission_id,)
            ).fetchone()
        if not row:
            return None
        return self._to_record(dict(row))

    def list_reviews(self, state: Optional[ReviewState] = None, limit: int = 100) -> List[ReviewRecord]:
        with self._connect() as conn:
            if state is None:
                rows = conn.execute(
                    "SELECT * FROM reviews ORDER BY opened_at DESC LIMIT ?",
                    (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM reviews WHERE state = ? ORDER BY opened_at DESC LIMIT ?",
                    (state.value, limit)
                ).fetchall()
        return [self._to_record(dict(row)) for row in rows]

    def approve(
        self,
        submission_id: str,
        reviewer: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ReviewRecord:
        record = self._decide(submission_id, ReviewState.APPROVED, reviewer, note)
        logger.info("Submission %s approved by %s", submission_id, reviewer or "unknown")
        return record

    def reject(
        self,
        submission_id: str,
        reviewer: Optional[str] = None,
        note: Optional[str] = None,
        *,
        outcome: StagingOutcome = StagingOutcome.REJECTED,
    ) -> ReviewRecord:
        record = self._decide(submission_id, ReviewState.REJECTED, reviewer, note)
        self.staging.resolve((str(record.path), record.version), outcome)
        logger.info("Submission %s rejected (%s)", submission_id, outcome.value)
        return record

    def reject_after_conflict(self, submission_id: str, reason: str) -> ReviewRecord:
        """
        Close an approved submission the merge could not apply.

        The only transition out of ``approved``: the record moves to
        ``rejected`` with the conflict as its note, and the staged payload is
        discarded.
        """
        record = self._decide(
            submission_id,
            ReviewState.REJECTED,
            MERGE_REVIEWER,
            reason,
            from_state=ReviewState.APPROVED,
        )
        self.staging.resolve((str(record.path), record.version), StagingOutcome.REJECTED)
        logger.warning("Submission %s rejected at merge: %s", submission_id, reason)
        return record

    def render_request(self, submission_id: str) -> str:
        """Render the change request body shown to reviewers."""
        record = self.get(submission_id)
        if record is None:
            raise NotFoundError(f"Submission not found: {submission_id}", submission_id=submission_id)
        entry = self.staging.get(submission_id)
        payload = entry.payload if entry is not None else self.staging.store.read(record.path, record.version)
        template = Template(REQUEST_TEMPLATE_PATH.read_text(encoding="utf-8"))
        return template.render(
            title=REQUEST_TITLE,
            path=str(record.path),
            version=record.version,
            submission_id=record.submission_id,
            author=payload.author,
            extends=payload.extends,
            change_note=payload.change_note,
            checklist=record.checklist,
            payload_yaml=dump_definition(payload),
        )

    def _decide(
        self,
        submission_id: str,
        state: ReviewState,
        reviewer: Optional[str],
        note: Optional[str],
        from_state: ReviewState = ReviewState.OPENED,
    ) -> ReviewRecord:
        now = datetime.utcnow().isoformat()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE reviews SET state = ?, decided_at = ?, reviewer = ?, note = ?
                WHERE submission_id = ? AND state = ?
                """,
                (state.value, now, reviewer, note, submission_id, from_state.value)
            )
            updated = cursor.rowcount
        record = self.get(submission_id)
        if record is None:
            raise NotFoundError(f"Submission not found: {submission_id}", submission_id=submission_id)
        if not updated:
            raise ConflictError(
                f"Submission {submission_id} is {record.state.value}, expected {from_state.value}",
                submission_id=submission_id,
                state=record.state.value,
            )
        return record

    def _to_record(self, row: Dict[str, Any]) -> ReviewRecord:
        decided_at = row.get("decided_at")
        return ReviewRecord(
            submission_id=row["submission_id"],
            path=RegistryPath.parse(row["path"]),
            version=row["version"],
            state=ReviewState(row["state"]),
            checklist=[ChecklistItem(**item) for item in json.loads(row["checklist_json"])],
            opened_at=datetime.fromisoformat(row["opened_at"]),
            decided_at=datetime.fromisoformat(decided_at) if decided_at else None,
            reviewer=row.get("reviewer"),
            note=row.get("note"),
        )
