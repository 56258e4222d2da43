"""
Assembly of versioned package descriptors from refs and manifests.

``build_descriptor`` is pure; ``RefDescriptorBuilder`` adds the network
bound manifest fetch on top of it and memoizes every lookup for the
lifetime of one aggregation run.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Tuple

from ..gitlab import GitLabAPIError, Ref, Repository
from ..logger import get_logger
from ..settings import RegistryPolicy
from .manifest import validate_manifest
from .versions import dev_alias, is_dev_version, resolve_version

log = get_logger(__name__)

PackageEntry = Dict[str, Dict[str, Any]]
RefKey = Tuple[int, str, str]


class RefSource(Protocol):
    """The subset of the GitLab client needed to describe refs."""

    def list_branches(self, project_id: int) -> list[Ref]:
        ...

    def list_tags(self, project_id: int) -> list[Ref]:
        ...

    def get_branch(self, project_id: int, name: str) -> Ref:
        ...

    def get_file(self, project_id: int, file_path: str, ref: str) -> Optional[bytes]:
        ...


def source_url(repository: Repository, policy: RegistryPolicy) -> Optional[str]:
    """Checkout URL for the configured method, honouring a custom ssh port."""
    url = repository.url_for(policy.method)
    if policy.method == "ssh" and policy.port and repository.ssh_url_to_repo:
        host = repository.ssh_url_to_repo.split(":", 1)[0]
        url = f"ssh://{host}:{policy.port}/{repository.path_with_namespace}"
    return url


def build_descriptor(
    repository: Repository,
    ref: Ref,
    manifest: Dict[str, Any],
    version: str,
    policy: RegistryPolicy,
) -> Dict[str, Any]:
    descriptor = dict(manifest)
    descriptor["version"] = version
    descriptor["source"] = {
        "url": source_url(repository, policy),
        "type": "git",
        "reference": ref.commit_id,
    }
    return descriptor


class RefLookupCache:
    """Per-run memo of ``{version: descriptor}`` results keyed by repository and ref."""

    def __init__(self) -> None:
        self._entries: Dict[RefKey, PackageEntry] = {}

    @staticmethod
    def key(repository: Repository, ref: Ref) -> RefKey:
        return (repository.id, ref.name, ref.commit_id)

    def get(self, repository: Repository, ref: Ref) -> Optional[PackageEntry]:
        return self._entries.get(self.key(repository, ref))

    def put(self, repository: Repository, ref: Ref, entry: PackageEntry) -> None:
        self._entries[self.key(repository, ref)] = entry

    def __len__(self) -> int:
        return len(self._entries)


class RefDescriptorBuilder:
    """Turns the refs of a repository into a package entry."""

    def __init__(
        self,
        client: RefSource,
        policy: RegistryPolicy,
        memo: Optional[RefLookupCache] = None,
    ) -> None:
        self.client = client
        self.policy = policy
        self.memo = memo if memo is not None else RefLookupCache()

    def fetch_ref(self, repository: Repository, ref: Ref) -> PackageEntry:
        """Describe a single ref; the manifest is fetched at most once per run."""
        cached = self.memo.get(repository, ref)
        if cached is not None:
            return cached

        version = resolve_version(ref.name)
        manifest = self._fetch_manifest(repository, ref)
        entry: PackageEntry = {}
        if manifest is not None:
            entry[version] = build_descriptor(repository, ref, manifest, version, self.policy)
        self.memo.put(repository, ref, entry)
        return entry

    def _fetch_manifest(self, repository: Repository, ref: Ref) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.get_file(repository.id, self.policy.manifest_path, ref.commit_id)
        except GitLabAPIError as exc:
            log.debug(
                "manifest_fetch_failed",
                repository=repository.path_with_namespace,
                ref=ref.name,
                error=str(exc),
            )
            return None
        return validate_manifest(raw, repository.path_with_namespace, self.policy)

    def fetch_refs(self, repository: Repository) -> PackageEntry:
        """Describe every branch and tag of ``repository``.

        Release versions are registered twice, once verbatim and once under
        their ``dev-`` alias, so consumers can require either form.
        """
        versions: PackageEntry = {}
        try:
            refs = self.client.list_branches(repository.id) + self.client.list_tags(repository.id)
        except GitLabAPIError as exc:
            # 404 means an empty or unreadable repository; anything else is
            # transient and must not be cached as "no packages".
            if exc.status_code != 404:
                raise
            log.info(
                "repository_refs_unavailable",
                repository=repository.path_with_namespace,
                error=str(exc),
            )
            return {}

        for ref in refs:
            for version, descriptor in self.fetch_ref(repository, ref).items():
                if not is_dev_version(version):
                    alias = dev_alias(version)
                    versions[alias] = dict(descriptor, version=alias)
                versions[version] = descriptor
        return versions

    def default_branch_name(self, repository: Repository) -> Optional[str]:
        """Manifest name declared on the default branch, if it is publishable."""
        if not repository.default_branch:
            return None
        ref = self.client.get_branch(repository.id, repository.default_branch)
        for descriptor in self.fetch_ref(repository, ref).values():
            return descriptor.get("name")
        return None
