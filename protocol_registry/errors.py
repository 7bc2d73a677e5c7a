from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RegistryError(Exception):
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": False, "error": {"code": self.code, "message": self.message}}
        if self.details:
            payload["error"]["details"] = self.details
        return payload


class ValidationError(RegistryError):
    """A definition was rejected before any storage mutation."""

    def __init__(self, reason: str, message: str, **details: Any) -> None:
        super().__init__("VALIDATION_ERROR", message, {"reason": reason, **details})

    @property
    def reason(self) -> str:
        return str(self.details["reason"])


class ConflictError(RegistryError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("CONFLICT", message, dict(details))


class NotFoundError(RegistryError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("NOT_FOUND", message, dict(details))


class IOFailure(RegistryError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("IO_FAILURE", message, dict(details))
