import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from ..errors import NotFoundError
from ..models import (
    ProtocolDefinition,
    ProtocolHistoryResponse,
    RegistryPath,
    StagingEntry,
    StagingOutcome,
)
from .registry_store import RegistryStore
from .review_workflow import ReviewWorkflow
from .staging_area import StagingArea
from .version_resolver import VersionResolver

logger = logging.getLogger(__name__)


def _address(name: str, domain_path: str) -> RegistryPath:
    return RegistryPath(domain_path=(domain_path or "").strip().strip("/"), name=(name or "").strip())


class RegistryClient:
    """The caller-facing surface: list, pull and push protocol definitions."""

    def __init__(
        self,
        store: RegistryStore,
        staging: StagingArea,
        reviews: ReviewWorkflow,
        resolver: VersionResolver,
    ) -> None:
        self.store = store
        self.staging = staging
        self.reviews = reviews
        self.resolver = resolver
        self._path_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def list(self, domain_filter: Optional[str] = None) -> List[RegistryPath]:
        return sorted(self.store.list(domain_filter), key=str)

    def pull(self, name: str, domain_path: str, version: Optional[str] = None) -> ProtocolDefinition:
        return self.store.read(_address(name, domain_path), version)

    def push(
        self,
        definition: ProtocolDefinition,
        domain_path: str,
        version: str,
        change_note: str,
        author: Optional[str] = None,
    ) -> str:
        """
        Validate ``definition`` against the current final and stage it for review.

        Returns the submission id tracking the change request. Raises
        ``ValidationError`` or ``ConflictError`` without touching stored state.
        """
        candidate = definition.model_copy(
            update={
                "domain_path": (domain_path or "").strip().strip("/"),
                "version": (version or "").strip(),
                "change_note": change_note or "",
                "author": author if author is not None else definition.author,
            }
        )
        path = candidate.path
        with self._path_lock(str(path)):
            current = self._read_current(path)
            staged = self.resolver.validate(candidate, current).raise_for_error()

            entry = StagingEntry(
                submission_id=str(uuid.uuid4()),
                path=path,
                version=staged.version,
                payload=staged,
                submitted_at=datetime.utcnow(),
            )
            self.staging.submit(entry)
            try:
                self.reviews.open(entry)
            except Exception:
                logger.exception("Failed to open review for %s@%s; discarding submission", path, entry.version)
                self.staging.resolve(entry.key, StagingOutcome.REJECTED)
                raise
        return entry.submission_id

    def history(self, name: str, domain_path: str) -> ProtocolHistoryResponse:
        path = _address(name, domain_path)
        current = self._read_current(path)
        archived = self.store.list_archived_versions(path)
        if current is None and not archived:
            raise NotFoundError(f"Protocol not found: {path}", path=str(path))
        return ProtocolHistoryResponse(
            path=str(path),
            final_version=current.version if current else None,
            archived_versions=archived,
        )

    def _read_current(self, path: RegistryPath) -> Optional[ProtocolDefinition]:
        try:
            return self.store.read(path)
        except NotFoundError:
            return None

    @contextmanager
    def _path_lock(self, path_key: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._path_locks.setdefault(path_key, threading.Lock())
        with lock:
            yield
