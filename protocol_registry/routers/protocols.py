"""
API Router for Protocol Definitions.

Exposes endpoints for:
- Listing final protocols, optionally filtered by domain (GET /protocols)
- Pulling the final or an archived version (GET /protocols/{domain_path}/{name})
- Version history of one protocol (GET /protocols/{domain_path}/{name}/history)
- Submitting a new version for review (POST /protocols)
"""

from typing import Optional

from fastapi import APIRouter  # type: ignore[import-not-found]

from ..errors import RegistryError
from ..models import (
    ProtocolDefinition,
    ProtocolHistoryResponse,
    ProtocolListResponse,
    ProtocolPushRequest,
    ProtocolPushResponse,
    ReviewState,
)
from ..services.registry_runtime import get_registry_runtime
from .common import to_http_exception

router = APIRouter(prefix="/protocols", tags=["protocols"])


@router.get("", response_model=ProtocolListResponse)
async def list_protocols(domain: Optional[str] = None):
    try:
        paths = get_registry_runtime().client.list(domain)
    except RegistryError as exc:
        raise to_http_exception(exc)
    return ProtocolListResponse(paths=[str(path) for path in paths])


@router.post("", response_model=ProtocolPushResponse)
async def push_protocol(request: ProtocolPushRequest):
    try:
        submission_id = get_registry_runtime().client.push(
            request.definition,
            request.domain_path,
            request.version,
            request.change_note,
            author=request.author,
        )
    except RegistryError as exc:
        raise to_http_exception(exc)
    return ProtocolPushResponse(
        submission_id=submission_id,
        path=f"{request.domain_path.strip('/')}/{request.definition.name}",
        version=request.version.strip(),
        state=ReviewState.OPENED,
    )


@router.get("/{domain_path:path}/{name}/history", response_model=ProtocolHistoryResponse)
async def get_protocol_history(domain_path: str, name: str):
    try:
        return get_registry_runtime().client.history(name, domain_path)
    except RegistryError as exc:
        raise to_http_exception(exc)


@router.get("/{domain_path:path}/{name}", response_model=ProtocolDefinition)
async def pull_protocol(domain_path: str, name: str, version: Optional[str] = None):
    try:
        return get_registry_runtime().client.pull(name, domain_path, version)
    except RegistryError as exc:
        raise to_http_exception(exc)
