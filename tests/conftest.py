import sys
from pathlib import Path
import pytest

# Add project root to sys.path
# This ensures that 'protocol_registry' is importable as a top-level module during tests
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def registry_runtime(tmp_path):
    from protocol_registry.services.registry_runtime import build_registry_runtime

    return build_registry_runtime(tmp_path / "registry", tmp_path / "submissions.db")


@pytest.fixture
def registry_config(tmp_path):
    from protocol_registry.config import config

    old_root = config.REGISTRY.ROOT
    old_final = config.REGISTRY.FINAL_DIR
    old_archive = config.REGISTRY.ARCHIVE_DIR
    old_staging = config.REGISTRY.STAGING_DIR
    old_db = config.REGISTRY.SUBMISSIONS_DB
    old_ttl = config.REGISTRY.STAGING_TTL_HOURS

    config.defrost()
    config.REGISTRY.ROOT = str(tmp_path / "registry")
    config.REGISTRY.FINAL_DIR = str(tmp_path / "registry" / "final")
    config.REGISTRY.ARCHIVE_DIR = str(tmp_path / "registry" / "archive")
    config.REGISTRY.STAGING_DIR = str(tmp_path / "registry" / "staging")
    config.REGISTRY.SUBMISSIONS_DB = str(tmp_path / "submissions.db")
    config.freeze()

    try:
        yield config
    finally:
        config.defrost()
        config.REGISTRY.ROOT = old_root
        config.REGISTRY.FINAL_DIR = old_final
        config.REGISTRY.ARCHIVE_DIR = old_archive
        config.REGISTRY.STAGING_DIR = old_staging
        config.REGISTRY.SUBMISSIONS_DB = old_db
        config.REGISTRY.STAGING_TTL_HOURS = old_ttl
        config.freeze()
