from __future__ import annotations

import hashlib
import json
import os
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from repofeed.gitlab import GitLabAPIError, Ref, Repository, parse_timestamp
from repofeed.settings import AppSettings, load_settings

# Config files are back-dated so freshly built indexes are always newer.
CONFIG_MTIME = parse_timestamp("2020-01-01T00:00:00Z").timestamp()


class FakeGitLab:
    """In-memory stand-in for GitLabClient that counts every call."""

    def __init__(self) -> None:
        self.groups: List[Dict[str, Any]] = []
        self.group_projects: Dict[int, List[int]] = {}
        self.repositories: Dict[int, Repository] = {}
        self.branches: Dict[int, List[Ref]] = {}
        self.tags: Dict[int, List[Ref]] = {}
        self.files: Dict[tuple, bytes] = {}
        self.broken_repositories: set[int] = set()
        self.broken_files: set[tuple] = set()
        self.outages: set[int] = set()
        self.calls: Counter = Counter()

    def add_repository(
        self,
        path: str,
        activity: str = "2024-01-01T00:00:00Z",
        default_branch: Optional[str] = "main",
        group: Optional[str] = None,
    ) -> Repository:
        repo_id = len(self.repositories) + 1
        repository = Repository(
            id=repo_id,
            path_with_namespace=path,
            last_activity_at=parse_timestamp(activity),
            default_branch=default_branch,
            ssh_url_to_repo=f"git@gitlab.example.com:{path}.git",
            http_url_to_repo=f"https://gitlab.example.com/{path}.git",
        )
        self.repositories[repo_id] = repository
        self.branches.setdefault(repo_id, [])
        self.tags.setdefault(repo_id, [])
        if group is not None:
            group_id = self._group_id(group)
            self.group_projects.setdefault(group_id, []).append(repo_id)
        return repository

    def touch(self, repository: Repository, activity: str) -> Repository:
        updated = Repository(
            id=repository.id,
            path_with_namespace=repository.path_with_namespace,
            last_activity_at=parse_timestamp(activity),
            default_branch=repository.default_branch,
            ssh_url_to_repo=repository.ssh_url_to_repo,
            http_url_to_repo=repository.http_url_to_repo,
        )
        self.repositories[repository.id] = updated
        return updated

    def add_ref(
        self,
        repository: Repository,
        name: str,
        manifest: Optional[Dict[str, Any]] = None,
        tag: bool = False,
        raw: Optional[bytes] = None,
    ) -> Ref:
        commit = hashlib.sha1(f"{repository.id}:{name}".encode()).hexdigest()
        ref = Ref(name=name, commit_id=commit)
        (self.tags if tag else self.branches)[repository.id].append(ref)
        if raw is None and manifest is not None:
            raw = json.dumps(manifest).encode("utf-8")
        if raw is not None:
            self.files[(repository.id, commit)] = raw
        return ref

    def _group_id(self, name: str) -> int:
        for group in self.groups:
            if group["name"] == name:
                return group["id"]
        group = {"id": 100 + len(self.groups), "name": name}
        self.groups.append(group)
        return group["id"]

    def list_groups(self) -> List[Dict[str, Any]]:
        self.calls["list_groups"] += 1
        return list(self.groups)

    def iter_group_projects(self, group_id: int):
        self.calls["iter_group_projects"] += 1
        for repo_id in self.group_projects.get(group_id, []):
            yield self.repositories[repo_id]

    def iter_projects(self):
        self.calls["iter_projects"] += 1
        yield from self.repositories.values()

    def list_branches(self, project_id: int) -> List[Ref]:
        self.calls["list_branches"] += 1
        if project_id in self.broken_repositories:
            raise GitLabAPIError("404 Repository Not Found", status_code=404)
        if project_id in self.outages:
            raise GitLabAPIError("503 Service Unavailable", status_code=503)
        return list(self.branches[project_id])

    def list_tags(self, project_id: int) -> List[Ref]:
        self.calls["list_tags"] += 1
        return list(self.tags[project_id])

    def get_branch(self, project_id: int, name: str) -> Ref:
        self.calls["get_branch"] += 1
        for ref in self.branches[project_id]:
            if ref.name == name:
                return ref
        raise GitLabAPIError(f"404 Branch {name} Not Found", status_code=404)

    def get_file(self, project_id: int, file_path: str, ref: str) -> Optional[bytes]:
        self.calls["get_file"] += 1
        if (project_id, ref) in self.broken_files:
            raise GitLabAPIError("500 Internal Server Error", status_code=500)
        return self.files.get((project_id, ref))

    def list_commits(self, project_id: int, ref: Optional[str] = None, per_page: int = 20):
        self.calls["list_commits"] += 1
        return [{"short_id": "abc1234", "title": "Initial commit"}]


@pytest.fixture
def gitlab() -> FakeGitLab:
    return FakeGitLab()


def write_config(
    directory: Path,
    packages: Optional[Dict[str, Any]] = None,
    gitlab: Optional[Dict[str, Any]] = None,
    static_file: Optional[str] = None,
) -> Path:
    lines = ["[gitlab]", 'endpoint = "https://gitlab.example.com/api/v4/"', 'api_key = "token"']
    for key, value in (gitlab or {}).items():
        lines.append(f"{key} = {json.dumps(value)}")
    lines.append("[packages]")
    for key, value in (packages or {}).items():
        lines.append(f"{key} = {json.dumps(value)}")
    lines.append("[paths]")
    lines.append('cache_dir = "cache"')
    if static_file:
        lines.append(f'static_file = "{static_file}"')
    lines.append("[general]")
    lines.append('log_level = "DEBUG"')
    path = directory / "repofeed.toml"
    path.write_text("\n".join(lines) + "\n")
    os.utime(path, (CONFIG_MTIME, CONFIG_MTIME))
    return path


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., AppSettings]:
    def _make(**kwargs: Any) -> AppSettings:
        return load_settings(write_config(tmp_path, **kwargs))

    return _make


@pytest.fixture
def settings(make_settings: Callable[..., AppSettings]) -> AppSettings:
    return make_settings()
