"""
Data Models for the Protocol Registry.

This module defines the Pydantic models used throughout the registry for
validation, serialization, and type hinting. It covers:
- Protocol definitions and their registry addresses (ProtocolDefinition, RegistryPath)
- Submission lifecycle records (StagingEntry, ReviewRecord)
- Promotion outcomes (PromotionResult, MergeBatchReport)
- API Request/Response schemas
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EncodingType(str, Enum):
    """How a protocol's value is packed into its bit allocation."""
    BOOL = "bool"
    ENUM = "enum"
    INT = "int"
    FLOAT = "float"


class ReviewState(str, Enum):
    """
    Lifecycle state of a submission's change request.
    """
    OPENED = "opened"       # Staged and waiting for a decision
    APPROVED = "approved"   # Accepted; promoted by the next merge batch
    REJECTED = "rejected"   # Declined, expired or unmergeable; staging entry discarded


class StagingOutcome(str, Enum):
    """How a staging entry was consumed."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class MergeEntryStatus(str, Enum):
    PROMOTED = "promoted"
    DEFERRED = "deferred"  # A lower version for the same path is still under review
    FAILED = "failed"


class RegistryPath(BaseModel):
    """
    Address of a protocol slot: ``domain_path/name``.
    Paired with a version it names an immutable snapshot.
    """
    model_config = ConfigDict(frozen=True)

    domain_path: str
    name: str

    def __str__(self) -> str:
        return f"{self.domain_path}/{self.name}" if self.domain_path else self.name

    @classmethod
    def parse(cls, raw: str) -> "RegistryPath":
        clean = raw.strip().strip("/")
        domain_path, _, name = clean.rpartition("/")
        return cls(domain_path=domain_path, name=name)


class ProtocolDefinition(BaseModel):
    """
    A versioned encoding protocol, as produced by the protocol builder.
    Instances are immutable; use ``model_copy(update=...)`` to derive one.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    """Identifier, unique within its domain path."""

    domain_path: str = ""
    """Hierarchical location, e.g. 'environmental/soil'."""

    version: str = "1.0.0"
    """Semantic version (major.minor.patch)."""

    encoding_type: str
    """One of the EncodingType values; checked by the version resolver."""

    bits: int
    """Number of bits the encoded value occupies."""

    description: str
    """Human-readable template with {input} placeholders."""

    inputs: List[str] = Field(default_factory=list)
    """Ordered names of the parameters consumed by the test function."""

    example: Dict[str, Any] = Field(default_factory=dict)
    """Sample value for every declared input."""

    test_function: Optional[str] = None
    """Source of the external test function. Stored verbatim, never evaluated."""

    extends: Optional[str] = None
    """Lineage reference, 'name@version' or 'domain/path/name@version'."""

    change_note: str = ""
    """Rationale for this version."""

    author: Optional[str] = None

    @property
    def path(self) -> RegistryPath:
        return RegistryPath(domain_path=self.domain_path, name=self.name)


class StagingEntry(BaseModel):
    """A submitted, not yet reviewed definition."""
    submission_id: str
    path: RegistryPath
    version: str
    payload: ProtocolDefinition
    submitted_at: datetime

    @property
    def key(self) -> tuple[str, str]:
        return str(self.path), self.version


class ArchiveRecord(BaseModel):
    """A superseded final artifact, keyed by the version it held."""
    path: RegistryPath
    version: str
    payload: ProtocolDefinition


class ChecklistItem(BaseModel):
    key: str
    label: str
    automated: bool = False
    """True when the pre-check can decide this item mechanically."""
    passed: Optional[bool] = None
    detail: str = ""


class ReviewRecord(BaseModel):
    """Change request opened for a submission."""
    submission_id: str
    path: RegistryPath
    version: str
    state: ReviewState
    checklist: List[ChecklistItem] = Field(default_factory=list)
    opened_at: datetime
    decided_at: Optional[datetime] = None
    reviewer: Optional[str] = None
    note: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state != ReviewState.OPENED


class PromotionResult(BaseModel):
    path: RegistryPath
    version: str
    archived_version: Optional[str] = None
    final_written: bool = True


class MergeEntryResult(BaseModel):
    submission_id: str
    path: str
    version: str
    status: MergeEntryStatus
    archived_version: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class MergeBatchReport(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[MergeEntryResult] = Field(default_factory=list)

    @property
    def promoted(self) -> List[MergeEntryResult]:
        return [r for r in self.results if r.status == MergeEntryStatus.PROMOTED]

    @property
    def failed(self) -> List[MergeEntryResult]:
        return [r for r in self.results if r.status == MergeEntryStatus.FAILED]


class ProtocolPushRequest(BaseModel):
    """
    Payload for submitting a protocol version via POST /protocols.
    """
    definition: ProtocolDefinition
    domain_path: str
    version: str
    change_note: str = ""
    author: Optional[str] = None


class ProtocolPushResponse(BaseModel):
    submission_id: str
    path: str
    version: str
    state: ReviewState = ReviewState.OPENED


class ProtocolListResponse(BaseModel):
    paths: List[str]


class ProtocolHistoryResponse(BaseModel):
    path: str
    final_version: Optional[str] = None
    archived_versions: List[str] = Field(default_factory=list)


class ReviewDecisionRequest(BaseModel):
    reviewer: Optional[str] = None
    note: Optional[str] = None


class MergeTriggerRequest(BaseModel):
    """Merge event; omit submission_ids to process every approved submission."""
    submission_ids: Optional[List[str]] = None


class SubmissionStatusResponse(BaseModel):
    submission_id: str
    path: str
    version: str
    state: ReviewState
    staged: bool
    """False once the entry was promoted, rejected or expired."""
    checklist: List[ChecklistItem] = Field(default_factory=list)
    opened_at: datetime
    decided_at: Optional[datetime] = None
    reviewer: Optional[str] = None
    note: Optional[str] = None
