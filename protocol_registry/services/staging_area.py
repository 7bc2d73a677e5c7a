import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from ..config import config
from ..errors import ConflictError
from ..models import RegistryPath, StagingEntry, StagingOutcome
from .registry_store import RegistryStore
from .version_resolver import parse_version

logger = logging.getLogger(__name__)


class StagingArea:
    """
    SQLite index of submitted-but-unreviewed definitions.

    Payloads live in the store's staging tree; this index records which
    ``(path, version)`` keys are in flight and under which submission id.
    """

    def __init__(self, store: RegistryStore, db_path: Optional[Path] = None) -> None:
        self.store = store
        self.db_path = Path(db_path or config.REGISTRY.SUBMISSIONS_DB)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._submit_lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS staging_entries (
                    submission_id TEXT PRIMARY KEY,
                    path TEXT NOT NULL,
                    version TEXT NOT NULL,
                    submitted_at TEXT NOT NULL,
                    UNIQUE (path, version)
                )
                """
            )

    def submit(self, entry: StagingEntry) -> None:
        """Record ``entry`` and write its payload; nothing is kept if either step fails."""
        path_key = str(entry.path)
        new_version = parse_version(entry.version)
        with self._submit_lock:
            conn = self._connect()
            try:
                with conn:
                    rows = conn.execute(
                        "SELECT submission_id, version FROM staging_entries WHERE path = ?",
                        (path_key,)
                    ).fetchall()
                    for row in rows:
                        if parse_version(row["version"]) >= new_version:
                            raise ConflictError(
                                (
                                    f"Submission {row['submission_id']} already stages "
                                    f"{path_key}@{row['version']}; resubmit with a higher version"
                                ),
                                path=path_key,
                                version=entry.version,
                                staged_version=row["version"],
                            )
                    try:
                        conn.execute(
                            """
                            INSERT INTO staging_entries (
                                submission_id, path, version, submitted_at
                            ) VALUES (?, ?, ?, ?)
                            """,
                            (entry.submission_id, path_key, entry.version, entry.submitted_at.isoformat())
                        )
                    except sqlite3.IntegrityError as exc:
                        raise ConflictError(
                            f"Submission already in flight for {path_key}@{entry.version}",
                            path=path_key,
                            version=entry.version,
                        ) from exc
                    self.store.write_staged(entry.path, entry.version, entry.payload)
            finally:
                conn.close()
        logger.info("Staged %s@%s as submission %s", path_key, entry.version, entry.submission_id)

    def resolve(self, key: Tuple[str, str], outcome: StagingOutcome) -> Optional[str]:
        """Consume the entry for ``key``. Returns its submission id, or None if already resolved."""
        path_key, version = key
        with self._connect() as conn:
            row = conn.execute(
                "SELECT submission_id FROM staging_entries WHERE path = ? AND version = ?",
                (path_key, version)
            ).fetchone()
            if row:
                conn.execute(
                    "DELETE FROM staging_entries WHERE path = ? AND version = ?",
                    (path_key, version)
                )
        # Every indexed entry must have a payload, so the row goes first.
        self.store.delete_staged(RegistryPath.parse(path_key), version)
        if not row:
            return None
        logger.info(
            "Resolved staging entry %s@%s (%s) as %s",
            path_key,
            version,
            row["submission_id"],
            outcome.value,
        )
        return str(row["submission_id"])

    def get(self, submission_id: str) -> Optional[StagingEntry]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM staging_entries WHERE submission_id = ?",
                (submission_id,)
            ).fetchone()
        if not row:
            return None
        return self._load_entry(dict(row))

    def pending_ids(self) -> Set[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT submission_id FROM staging_entries").fetchall()
        return {str(row["submission_id"]) for row in rows}

    def list_pending(self, path: Optional[RegistryPath] = None) -> List[StagingEntry]:
        with self._connect() as conn:
            if path is None:
                rows = conn.execute(
                    "SELECT * FROM staging_entries ORDER BY submitted_at ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM staging_entries WHERE path = ? ORDER BY submitted_at ASC",
                    (str(path),)
                ).fetchall()
        return [self._load_entry(dict(row)) for row in rows]

    def list_stale(self, older_than_hours: int) -> List[Dict[str, Any]]:
        cutoff = (datetime.utcnow() - timedelta(hours=older_than_hours)).isoformat()
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM staging_entries WHERE submitted_at < ? ORDER BY submitted_at ASC",
                (cutoff,)
            ).fetchall()
        return [dict(row) for row in rows]

    def _load_entry(self, row: Dict[str, Any]) -> StagingEntry:
        path = RegistryPath.parse(row["path"])
        return StagingEntry(
            submission_id=row["submission_id"],
            path=path,
            version=row["version"],
            payload=self.store.read_staged(path, row["version"]),
            submitted_at=datetime.fromisoformat(row["submitted_at"]),
        )
