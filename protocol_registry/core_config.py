"""
Core Configuration Definitions.

This module defines the default structure and values for the registry's
configuration system using `yacs`. It serves as the single source of truth
for all configurable parameters.

Configuration is organized into sections:
- SYSTEM: Global paths and environment settings.
- REGISTRY: Protocol store layout, validation limits and staging lifecycle.
- SERVER: Bind address of the HTTP service.
"""

import os
from pathlib import Path
from yacs.config import CfgNode as CN  # type: ignore[import-untyped]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw.strip())


_C = CN()

# -----------------------------------------------------------------------------
# System Configuration
# -----------------------------------------------------------------------------
_C.SYSTEM = CN()
# Root directory of the project (calculated dynamically if not set)
_C.SYSTEM.ROOT = str(Path(__file__).parent.parent)

# Data directory for submission records and logs
_C.SYSTEM.DATA_DIR = os.environ.get(
    "PROTOCOL_REGISTRY_DATA_DIR",
    os.path.join(_C.SYSTEM.ROOT, "data"),
)

# -----------------------------------------------------------------------------
# Registry Configuration
# -----------------------------------------------------------------------------
_C.REGISTRY = CN()

# Root of the shared protocol store (final, archive and staging trees)
_C.REGISTRY.ROOT = os.environ.get(
    "PROTOCOL_REGISTRY_ROOT",
    os.path.join(_C.SYSTEM.DATA_DIR, "registry"),
)
_C.REGISTRY.FINAL_DIR = os.path.join(_C.REGISTRY.ROOT, "final")
_C.REGISTRY.ARCHIVE_DIR = os.path.join(_C.REGISTRY.ROOT, "archive")
_C.REGISTRY.STAGING_DIR = os.path.join(_C.REGISTRY.ROOT, "staging")

# Staging entries and review records
_C.REGISTRY.SUBMISSIONS_DB = os.path.join(_C.SYSTEM.DATA_DIR, "submissions.db")

# Widest encodable field
_C.REGISTRY.MAX_BITS = _env_int("PROTOCOL_REGISTRY_MAX_BITS", 32)

# Change note recorded for the first version of a protocol when none is given
_C.REGISTRY.INITIAL_CHANGE_NOTE = "Initial version"

# Staged submissions older than this are expired (0 disables expiry)
_C.REGISTRY.STAGING_TTL_HOURS = _env_int("PROTOCOL_REGISTRY_STAGING_TTL_HOURS", 0)

# Staging expiry scheduler interval in hours
_C.REGISTRY.STAGING_CLEANUP_INTERVAL_HOURS = _env_int(
    "PROTOCOL_REGISTRY_STAGING_CLEANUP_INTERVAL_HOURS", 12
)

# -----------------------------------------------------------------------------
# HTTP Service Configuration
# -----------------------------------------------------------------------------
_C.SERVER = CN()
_C.SERVER.HOST = os.environ.get("PROTOCOL_REGISTRY_HOST", "127.0.0.1")
_C.SERVER.PORT = _env_int("PROTOCOL_REGISTRY_PORT", 8000)


def get_cfg_defaults():
    """
    Get a yacs CfgNode object with default values.
    Returns a clone to ensure thread-safety during initialization.
    """
    return _C.clone()
