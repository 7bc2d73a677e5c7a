import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

from packaging.version import Version

from ..config import config
from ..errors import ValidationError
from ..models import EncodingType, ProtocolDefinition, RegistryPath

if TYPE_CHECKING:
    from .registry_store import RegistryStore


NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
DOMAIN_SEGMENT_PATTERN = re.compile(r"^[a-z0-9_]+$")
PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

_SEMVER_PATTERN = re.compile(
    r"^(?P<core>\d+\.\d+\.\d+)"
    r"(?:-(?P<prerelease>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


def parse_version(raw: str) -> Version:
    """Parse ``major.minor.patch``; pre-release and build suffixes do not order."""
    match = _SEMVER_PATTERN.match((raw or "").strip())
    if not match:
        raise ValidationError(
            "INVALID_VERSION",
            f"Invalid protocol version: {raw!r} (expected major.minor.patch)",
            version=raw,
        )
    return Version(match.group("core"))


def compare_versions(left: str, right: str) -> int:
    left_parsed = parse_version(left)
    right_parsed = parse_version(right)
    if left_parsed < right_parsed:
        return -1
    if left_parsed > right_parsed:
        return 1
    return 0


def parse_reference(raw: str, default_domain: str) -> Tuple[RegistryPath, str]:
    """Split an ``extends`` reference into the slot it names and its version."""
    target, sep, version = (raw or "").strip().partition("@")
    if not sep or not target or not version:
        raise ValidationError(
            "INVALID_EXTENDS",
            f"extends must look like name@version, got {raw!r}",
            extends=raw,
        )
    if "/" in target:
        path = RegistryPath.parse(target)
    else:
        path = RegistryPath(domain_path=default_domain, name=target)
    if not NAME_PATTERN.match(path.name):
        raise ValidationError("INVALID_EXTENDS", f"extends names an invalid protocol: {raw!r}", extends=raw)
    try:
        parse_version(version)
    except ValidationError as exc:
        raise ValidationError("INVALID_EXTENDS", exc.message, extends=raw) from exc
    return path, version


@dataclass
class ValidationResult:
    definition: Optional[ProtocolDefinition] = None
    error: Optional[ValidationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> ProtocolDefinition:
        if self.error is not None:
            raise self.error
        assert self.definition is not None
        return self.definition


class VersionResolver:
    """Checks a candidate definition against the registry's current state."""

    def __init__(self, store: "RegistryStore", max_bits: Optional[int] = None) -> None:
        self.store = store
        self.max_bits = int(max_bits if max_bits is not None else config.REGISTRY.MAX_BITS)

    def validate(
        self,
        candidate: ProtocolDefinition,
        current_final: Optional[ProtocolDefinition],
    ) -> ValidationResult:
        """
        Run the submission rules in order and report the first violation.

        On success the returned definition carries the normalized change note
        (the initial-version marker for a path's first push).
        """
        try:
            self.check_fields(candidate)
            self._check_monotonic(candidate, current_final)
            self._check_extends(candidate)
            normalized = self._normalize_change_note(candidate, current_final)
        except ValidationError as exc:
            return ValidationResult(error=exc)
        return ValidationResult(definition=normalized)

    def check_fields(self, candidate: ProtocolDefinition) -> None:
        if not NAME_PATTERN.match(candidate.name or ""):
            raise ValidationError(
                "INVALID_NAME",
                f"Protocol name must be lowercase with underscores: {candidate.name!r}",
                name=candidate.name,
            )
        segments = candidate.domain_path.split("/") if candidate.domain_path else []
        if not segments or not all(DOMAIN_SEGMENT_PATTERN.match(s) for s in segments):
            raise ValidationError(
                "INVALID_DOMAIN_PATH",
                f"Invalid domain path: {candidate.domain_path!r}",
                domain_path=candidate.domain_path,
            )
        parse_version(candidate.version)

        allowed = {item.value for item in EncodingType}
        if candidate.encoding_type not in allowed:
            raise ValidationError(
                "UNSUPPORTED_ENCODING",
                f"Unsupported encoding type {candidate.encoding_type!r}; expected one of {sorted(allowed)}",
                encoding_type=candidate.encoding_type,
            )
        if candidate.bits < 1 or candidate.bits > self.max_bits:
            raise ValidationError(
                "BITS_OUT_OF_RANGE",
                f"bits must be between 1 and {self.max_bits}, got {candidate.bits}",
                bits=candidate.bits,
            )
        if candidate.encoding_type == EncodingType.BOOL.value and candidate.bits != 1:
            raise ValidationError("BITS_TYPE_MISMATCH", "bool protocols must use exactly 1 bit", bits=candidate.bits)
        if candidate.encoding_type == EncodingType.FLOAT.value and candidate.bits < 2:
            raise ValidationError("BITS_TYPE_MISMATCH", "float protocols need at least 2 bits", bits=candidate.bits)

        if not candidate.inputs:
            raise ValidationError("EMPTY_INPUTS", "Protocol must declare at least one input")
        seen: set[str] = set()
        for name in candidate.inputs:
            if name in seen:
                raise ValidationError("DUPLICATE_INPUT", f"Input declared twice: {name}", input=name)
            seen.add(name)

        placeholders = set(PLACEHOLDER_PATTERN.findall(candidate.description or ""))
        missing = [name for name in candidate.inputs if name not in placeholders]
        unknown = sorted(placeholders - seen)
        if missing or unknown:
            raise ValidationError(
                "DESCRIPTION_PLACEHOLDER_MISMATCH",
                "description placeholders must match inputs",
                missing=missing,
                unknown=unknown,
            )

        example_missing = [name for name in candidate.inputs if name not in candidate.example]
        example_extra = sorted(set(candidate.example) - seen)
        if example_missing or example_extra:
            raise ValidationError(
                "EXAMPLE_INCOMPLETE",
                "example must provide exactly one value per input",
                missing=example_missing,
                extra=example_extra,
            )

    def _check_monotonic(
        self,
        candidate: ProtocolDefinition,
        current_final: Optional[ProtocolDefinition],
    ) -> None:
        if current_final is None:
            return
        if parse_version(candidate.version) <= parse_version(current_final.version):
            raise ValidationError(
                "NON_MONOTONIC_VERSION",
                (
                    "Protocol update requires strictly higher version: "
                    f"current={current_final.version}, submitted={candidate.version}"
                ),
                current=current_final.version,
                submitted=candidate.version,
            )

    def _check_extends(self, candidate: ProtocolDefinition) -> None:
        if not candidate.extends:
            return
        ref_path, ref_version = parse_reference(candidate.extends, candidate.domain_path)
        if parse_version(ref_version) >= parse_version(candidate.version):
            raise ValidationError(
                "EXTENDS_NOT_LOWER",
                f"extends must reference a version lower than {candidate.version}",
                extends=candidate.extends,
            )
        if not self.store.exists(ref_path, ref_version):
            raise ValidationError(
                "EXTENDS_NOT_FOUND",
                f"extends references an unknown protocol version: {candidate.extends}",
                extends=candidate.extends,
            )

    def _normalize_change_note(
        self,
        candidate: ProtocolDefinition,
        current_final: Optional[ProtocolDefinition],
    ) -> ProtocolDefinition:
        note = (candidate.change_note or "").strip()
        if note:
            if note != candidate.change_note:
                return candidate.model_copy(update={"change_note": note})
            return candidate
        if current_final is None:
            return candidate.model_copy(update={"change_note": str(config.REGISTRY.INITIAL_CHANGE_NOTE)})
        raise ValidationError(
            "CHANGE_NOTE_REQUIRED",
            "A change note is required for every version after the first",
        )
