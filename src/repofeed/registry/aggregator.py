"""
Registry index aggregation.

One run enumerates the visible GitLab projects, decides whether the served
index is stale, and if so rebuilds it from per-repository cache records,
the static package file and freshly described refs.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from ..errors import ConfigurationError
from ..gitlab import GitLabAPIError, GitLabClient, Repository
from ..logger import get_logger
from ..settings import AppSettings
from ..storage import file_mtime, write_json_atomic
from .cache import RepositoryCache
from .descriptors import PackageEntry, RefDescriptorBuilder, RefLookupCache, RefSource
from .static import Packages, load_static_packages, merge_static
from .versions import resolve_version

log = get_logger(__name__)


class RepositorySource(RefSource, Protocol):
    """Host operations needed to enumerate and describe repositories."""

    def list_groups(self) -> List[Dict[str, Any]]:
        ...

    def iter_group_projects(self, group_id: int) -> Iterator[Repository]:
        ...

    def iter_projects(self) -> Iterator[Repository]:
        ...


@dataclass
class BuildResult:
    """Outcome of one aggregation run."""

    rebuilt: bool
    index_path: Path
    repository_count: int
    package_count: Optional[int] = None
    skipped: List[str] = field(default_factory=list)
    cache_cleared: bool = False
    duration_ms: float = 0.0


class AggregationEngine:
    """Drives the fetch, cache and merge pipeline for the whole host."""

    # Serializes runs within one process; files are replaced atomically
    # so separate processes only ever race to write complete artifacts.
    _build_lock = threading.Lock()

    def __init__(self, settings: AppSettings, client: Optional[RepositorySource] = None) -> None:
        self.settings = settings
        self.policy = settings.policy()
        self.cache = RepositoryCache(settings.cache_dir)
        self._client = client

    @property
    def index_path(self) -> Path:
        return self.settings.packages_file

    @property
    def client(self) -> RepositorySource:
        if self._client is None:
            self._client = GitLabClient(
                endpoint=self.settings.gitlab_endpoint,
                token=self.settings.gitlab_api_key,
                per_page=self.settings.gitlab_per_page,
                timeout=self.settings.gitlab_timeout,
            )
        return self._client

    def _require_config_file(self) -> Path:
        config_file = self.settings.config_path
        if config_file is None or not Path(config_file).is_file():
            raise ConfigurationError(f"configuration file missing: {config_file}")
        return Path(config_file)

    def run(self, force: bool = False) -> BuildResult:
        """Rebuild the index when stale (or forced) and report what happened."""
        config_file = self._require_config_file()
        start_time = time.time()
        with self._build_lock:
            cleared = self.cache.clear_on_config_change(config_file, self.index_path)
            repositories = self.list_repositories()
            latest_activity = max(
                (repo.activity_timestamp for repo in repositories), default=0.0
            )

            index_mtime = file_mtime(self.index_path)
            if not force and index_mtime is not None and index_mtime >= latest_activity:
                log.info(
                    "index_up_to_date",
                    repositories=len(repositories),
                    index=str(self.index_path),
                )
                return BuildResult(
                    rebuilt=False,
                    index_path=self.index_path,
                    repository_count=len(repositories),
                    cache_cleared=cleared,
                    duration_ms=(time.time() - start_time) * 1000.0,
                )

            static_packages = load_static_packages(self.settings.static_file)
            packages, skipped = self.collect_packages(repositories)
            merge_static(packages, static_packages)
            published = {name: entry for name, entry in packages.items() if entry}
            write_json_atomic(self.index_path, {"packages": published})

        result = BuildResult(
            rebuilt=True,
            index_path=self.index_path,
            repository_count=len(repositories),
            package_count=len(published),
            skipped=skipped,
            cache_cleared=cleared,
            duration_ms=(time.time() - start_time) * 1000.0,
        )
        log.info(
            "index_rebuilt",
            packages=result.package_count,
            repositories=result.repository_count,
            skipped=len(skipped),
            forced=force,
            duration_ms=round(result.duration_ms, 1),
        )
        return result

    def list_repositories(self) -> List[Repository]:
        """Projects of the allow-listed groups, or every accessible project."""
        client = self.client
        groups = self.settings.gitlab_groups
        found: Dict[int, Repository] = {}
        if groups:
            for group in client.list_groups():
                if group.get("name") not in groups:
                    continue
                for repository in client.iter_group_projects(group["id"]):
                    found.setdefault(repository.id, repository)
        else:
            for repository in client.iter_projects():
                found.setdefault(repository.id, repository)
        log.info("repositories_listed", count=len(found), groups=groups or None)
        return list(found.values())

    def collect_packages(self, repositories: List[Repository]) -> Tuple[Packages, List[str]]:
        """Describe every repository; host failures only drop that repository."""
        builder = RefDescriptorBuilder(self.client, self.policy, RefLookupCache())
        packages: Packages = {}
        skipped: List[str] = []
        for repository in repositories:
            try:
                versions = self.cache.fetch_or_compute(repository, builder.fetch_refs)
                if not versions:
                    continue
                name = self.package_name(repository, versions, builder)
            except GitLabAPIError as exc:
                log.warning(
                    "repository_skipped",
                    repository=repository.path_with_namespace,
                    error=str(exc),
                )
                skipped.append(repository.path_with_namespace)
                continue

            if not name:
                log.warning(
                    "repository_without_default_manifest",
                    repository=repository.path_with_namespace,
                    default_branch=repository.default_branch,
                )
                skipped.append(repository.path_with_namespace)
                continue

            if name in packages:
                log.warning(
                    "package_name_collision",
                    package=name,
                    repository=repository.path_with_namespace,
                )
                packages[name].update(versions)
            else:
                packages[name] = dict(versions)
        return packages, skipped

    def package_name(
        self,
        repository: Repository,
        versions: PackageEntry,
        builder: RefDescriptorBuilder,
    ) -> Optional[str]:
        """Repository path, or the default branch's manifest name when mismatches are allowed."""
        if not self.policy.allow_name_mismatch:
            return repository.path_with_namespace
        if repository.default_branch:
            descriptor = versions.get(resolve_version(repository.default_branch))
            if descriptor and descriptor.get("name"):
                return descriptor["name"]
        return builder.default_branch_name(repository)
