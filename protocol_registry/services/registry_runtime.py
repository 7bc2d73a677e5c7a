from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from .merge_processor import MergeProcessor
from .registry_client import RegistryClient
from .registry_store import FilesystemRegistryStore
from .review_workflow import ReviewWorkflow
from .staging_area import StagingArea
from .version_resolver import VersionResolver


@dataclass
class RegistryRuntime:
    store: FilesystemRegistryStore
    resolver: VersionResolver
    staging: StagingArea
    reviews: ReviewWorkflow
    client: RegistryClient
    merge_processor: MergeProcessor


def build_registry_runtime(
    registry_root: Optional[Path] = None,
    db_path: Optional[Path] = None,
) -> RegistryRuntime:
    """Wire every component around one store handle."""
    store = (
        FilesystemRegistryStore.from_root(registry_root)
        if registry_root is not None
        else FilesystemRegistryStore()
    )
    resolver = VersionResolver(store)
    staging = StagingArea(store, db_path=db_path)
    reviews = ReviewWorkflow(staging, resolver, db_path=db_path)
    return RegistryRuntime(
        store=store,
        resolver=resolver,
        staging=staging,
        reviews=reviews,
        client=RegistryClient(store, staging, reviews, resolver),
        merge_processor=MergeProcessor(store, staging, reviews),
    )


@lru_cache(maxsize=1)
def get_registry_runtime() -> RegistryRuntime:
    return build_registry_runtime()
