from __future__ import annotations

import logging
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Optional, Protocol

import pydantic
import yaml  # type: ignore

from ..config import config
from ..errors import ConflictError, IOFailure, NotFoundError, ValidationError
from ..models import ArchiveRecord, ProtocolDefinition, PromotionResult, RegistryPath
from .version_resolver import DOMAIN_SEGMENT_PATTERN, NAME_PATTERN, parse_version

logger = logging.getLogger(__name__)

PAYLOAD_SUFFIX = ".yml"


class RegistryStore(Protocol):
    """Path-addressed store holding final, archived and staged protocol payloads."""

    def list(self, prefix: Optional[str] = None) -> list[RegistryPath]:
        """
        Final protocols whose domain path equals ``prefix`` or lies below it.

        Matching is by whole segments: ``environmental`` selects
        ``environmental/soil`` but ``environmental/so`` does not.
        """
        ...

    def read(self, path: RegistryPath, version: Optional[str] = None) -> ProtocolDefinition:
        ...

    def exists(self, path: RegistryPath, version: Optional[str] = None) -> bool:
        ...

    def list_archived_versions(self, path: RegistryPath) -> list[str]:
        ...

    def write_staged(self, path: RegistryPath, version: str, payload: ProtocolDefinition) -> None:
        ...

    def read_staged(self, path: RegistryPath, version: str) -> ProtocolDefinition:
        ...

    def staged_exists(self, path: RegistryPath, version: str) -> bool:
        ...

    def delete_staged(self, path: RegistryPath, version: str) -> None:
        ...

    def promote(self, path: RegistryPath, version: str) -> PromotionResult:
        ...


def dump_definition(definition: ProtocolDefinition) -> str:
    """Serialize a definition as block-style YAML, keeping field order for readable diffs."""
    payload = definition.model_dump(mode="json")
    return yaml.safe_dump(payload, sort_keys=False, allow_unicode=True, default_flow_style=False)


def load_definition(text: str) -> ProtocolDefinition:
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Protocol payload must be a mapping")
    return ProtocolDefinition.model_validate(data)


def is_valid_address(path: RegistryPath, version: Optional[str] = None) -> bool:
    """True when ``path`` (and ``version``) can only name a file inside the store trees."""
    segments = path.domain_path.split("/") if path.domain_path else []
    if not segments or not all(DOMAIN_SEGMENT_PATTERN.match(s) for s in segments):
        return False
    if not NAME_PATTERN.match(path.name):
        return False
    if version is not None:
        try:
            parse_version(version)
        except ValidationError:
            return False
    return True


class FilesystemRegistryStore:
    """
    Registry store backed by a directory tree:

        final/<domain>/<name>.yml
        archive/<domain>/<name>/<version>.yml
        staging/<domain>/<name>/<version>.yml
    """

    def __init__(
        self,
        final_dir: Optional[Path] = None,
        archive_dir: Optional[Path] = None,
        staging_dir: Optional[Path] = None,
    ) -> None:
        self.final_dir = Path(final_dir or config.REGISTRY.FINAL_DIR)
        self.archive_dir = Path(archive_dir or config.REGISTRY.ARCHIVE_DIR)
        self.staging_dir = Path(staging_dir or config.REGISTRY.STAGING_DIR)

    @classmethod
    def from_root(cls, root: Path) -> "FilesystemRegistryStore":
        root = Path(root)
        return cls(root / "final", root / "archive", root / "staging")

    def _require_address(self, path: RegistryPath, version: Optional[str] = None) -> None:
        if not is_valid_address(path, version):
            address = f"{path}@{version}" if version is not None else str(path)
            raise NotFoundError(f"Not a valid protocol address: {address}", path=str(path), version=version)

    def _final_file(self, path: RegistryPath) -> Path:
        self._require_address(path)
        return self.final_dir / path.domain_path / f"{path.name}{PAYLOAD_SUFFIX}"

    def _archive_file(self, path: RegistryPath, version: str) -> Path:
        self._require_address(path, version)
        return self.archive_dir / path.domain_path / path.name / f"{version}{PAYLOAD_SUFFIX}"

    def _staged_file(self, path: RegistryPath, version: str) -> Path:
        self._require_address(path, version)
        return self.staging_dir / path.domain_path / path.name / f"{version}{PAYLOAD_SUFFIX}"

    def list(self, prefix: Optional[str] = None) -> list[RegistryPath]:
        """Final protocols under ``prefix``, matched by whole domain segments (see ``RegistryStore.list``)."""
        if not self.final_dir.exists():
            return []
        wanted = (prefix or "").strip().strip("/")
        paths: list[RegistryPath] = []
        try:
            for file_path in self.final_dir.rglob(f"*{PAYLOAD_SUFFIX}"):
                rel = file_path.relative_to(self.final_dir).with_suffix("")
                path = RegistryPath.parse(rel.as_posix())
                if wanted and not (
                    path.domain_path == wanted or path.domain_path.startswith(f"{wanted}/")
                ):
                    continue
                paths.append(path)
        except OSError as exc:
            raise IOFailure(f"Failed to list registry: {exc}") from exc
        return sorted(paths, key=str)

    def read(self, path: RegistryPath, version: Optional[str] = None) -> ProtocolDefinition:
        final = self.read_final(path)
        if version is None:
            if final is None:
                raise NotFoundError(f"Protocol not found: {path}", path=str(path))
            return final
        if final is not None and final.version == version:
            return final
        archive_file = self._archive_file(path, version)
        if not archive_file.exists():
            raise NotFoundError(
                f"Protocol version not found: {path}@{version}",
                path=str(path),
                version=version,
            )
        return self._read_file(archive_file)

    def read_final(self, path: RegistryPath) -> Optional[ProtocolDefinition]:
        final_file = self._final_file(path)
        if not final_file.exists():
            return None
        return self._read_file(final_file)

    def exists(self, path: RegistryPath, version: Optional[str] = None) -> bool:
        if not is_valid_address(path, version):
            return False
        if version is None:
            return self._final_file(path).exists()
        if self._archive_file(path, version).exists():
            return True
        final = self.read_final(path)
        return final is not None and final.version == version

    def list_archived_versions(self, path: RegistryPath) -> list[str]:
        self._require_address(path)
        archive_root = self.archive_dir / path.domain_path / path.name
        if not archive_root.exists():
            return []
        versions = [item.stem for item in archive_root.glob(f"*{PAYLOAD_SUFFIX}")]
        return sorted(versions, key=parse_version)

    def write_staged(self, path: RegistryPath, version: str, payload: ProtocolDefinition) -> None:
        self._write_file(self._staged_file(path, version), payload)

    def read_staged(self, path: RegistryPath, version: str) -> ProtocolDefinition:
        staged_file = self._staged_file(path, version)
        if not staged_file.exists():
            raise NotFoundError(
                f"Staged protocol not found: {path}@{version}",
                path=str(path),
                version=version,
            )
        return self._read_file(staged_file)

    def staged_exists(self, path: RegistryPath, version: str) -> bool:
        if not is_valid_address(path, version):
            return False
        return self._staged_file(path, version).exists()

    def delete_staged(self, path: RegistryPath, version: str) -> None:
        try:
            self._staged_file(path, version).unlink(missing_ok=True)
        except OSError as exc:
            raise IOFailure(f"Failed to remove staged payload {path}@{version}: {exc}") from exc

    def archive_current(self, path: RegistryPath) -> Optional[ArchiveRecord]:
        """Copy the current final into the archive under its own version."""
        current = self.read_final(path)
        if current is None:
            return None
        record = ArchiveRecord(path=path, version=current.version, payload=current)
        archive_file = self._archive_file(path, current.version)
        if archive_file.exists():
            logger.debug("Archive already holds %s@%s", path, current.version)
            return record
        self._write_file(archive_file, current)
        logger.info("Archived %s@%s", path, current.version)
        return record

    def write_final(self, payload: ProtocolDefinition) -> bool:
        """Write ``payload`` into its final slot; returns False when it already holds it."""
        current = self.read_final(payload.path)
        if current is not None and current == payload:
            return False
        self._write_file(self._final_file(payload.path), payload)
        return True

    def promote(self, path: RegistryPath, version: str) -> PromotionResult:
        staged = self.read_staged(path, version)
        current = self.read_final(path)
        archived_version: Optional[str] = None
        if current is not None:
            if current.version == version:
                if current != staged:
                    raise ConflictError(
                        f"Final slot already holds a different payload for {path}@{version}",
                        path=str(path),
                        version=version,
                    )
                return PromotionResult(path=path, version=version, final_written=False)
            if parse_version(current.version) > parse_version(version):
                raise ConflictError(
                    f"Out-of-order promotion for {path}: final={current.version}, staged={version}",
                    path=str(path),
                    version=version,
                    final_version=current.version,
                )
            archived = self.archive_current(path)
            archived_version = archived.version if archived else None
        written = self.write_final(staged)
        return PromotionResult(
            path=path,
            version=version,
            archived_version=archived_version,
            final_written=written,
        )

    def _read_file(self, file_path: Path) -> ProtocolDefinition:
        try:
            text = file_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise IOFailure(f"Failed to read {file_path}: {exc}") from exc
        try:
            return load_definition(text)
        except (yaml.YAMLError, ValueError, pydantic.ValidationError) as exc:
            raise IOFailure(f"Corrupt protocol payload {file_path}: {exc}") from exc

    def _write_file(self, file_path: Path, payload: ProtocolDefinition) -> None:
        try:
            self._write_text_atomically(file_path, dump_definition(payload))
        except OSError as exc:
            raise IOFailure(f"Failed to write {file_path}: {exc}") from exc

    def _write_text_atomically(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with NamedTemporaryFile("w", delete=False, dir=str(path.parent), encoding="utf-8") as tmp:
            tmp.write(content)
            tmp_path = Path(tmp.name)
        os.replace(tmp_path, path)
