"""
Package registry core: manifest policy, version naming, descriptor assembly,
per-repository caching and index aggregation.
"""

from .aggregator import AggregationEngine, BuildResult
from .cache import CacheRecord, RepositoryCache
from .descriptors import RefDescriptorBuilder, RefLookupCache, build_descriptor
from .manifest import validate_manifest
from .static import load_static_packages, merge_static
from .versions import resolve_version

__all__ = [
    "AggregationEngine",
    "BuildResult",
    "CacheRecord",
    "RefDescriptorBuilder",
    "RefLookupCache",
    "RepositoryCache",
    "build_descriptor",
    "load_static_packages",
    "merge_static",
    "resolve_version",
    "validate_manifest",
]
