"""
GitLab REST (v4) client.

Covers the handful of endpoints the registry needs: group and project
listings, branches, tags, file blobs and recent commits. Paged listings are
walked until the first empty page. Rate limiting (429) and transient server
errors are retried with exponential backoff.
"""
from __future__ import annotations

import base64
import time
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

import requests

from ..logger import get_logger
from .errors import GitLabAPIError
from .models import Ref, Repository

log = get_logger(__name__)

_RETRY_STATUSES = {429, 500, 502, 503, 504}


class GitLabClient:
    """Thin synchronous wrapper over the GitLab REST API."""

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        per_page: int = 100,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/") + "/"
        self.per_page = per_page
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.session = session or requests.Session()
        if token:
            self.session.headers["PRIVATE-TOKEN"] = token
        self.session.headers.setdefault("User-Agent", "repofeed")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _backoff(self, attempt: int, response: Optional[requests.Response]) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return min(float(retry_after), self.max_delay)
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = self.endpoint + path.lstrip("/")
        for attempt in range(self.max_retries):
            response: Optional[requests.Response] = None
            try:
                response = self.session.request("GET", url, params=params, timeout=self.timeout)
            except requests.RequestException as exc:
                if attempt == self.max_retries - 1:
                    raise GitLabAPIError.transport(path, exc) from exc
                log.warning("gitlab_request_failed", path=path, error=str(exc), attempt=attempt + 1)
            else:
                if response.status_code not in _RETRY_STATUSES:
                    return response
                if attempt == self.max_retries - 1:
                    return response
                log.info("gitlab_retrying", path=path, status=response.status_code, attempt=attempt + 1)
            time.sleep(self._backoff(attempt, response))
        raise GitLabAPIError(f"GitLab request to {path} exhausted retries")  # pragma: no cover

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = self._request(path, params)
        if not response.ok:
            raise GitLabAPIError.http_error(response.status_code, path, _error_detail(response))
        try:
            return response.json()
        except ValueError as exc:
            raise GitLabAPIError.unexpected_payload(path) from exc

    def _iter_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        page = 1
        while True:
            query = dict(params or {}, page=page, per_page=self.per_page)
            items = self._get_json(path, query)
            if not isinstance(items, list):
                raise GitLabAPIError.unexpected_payload(path)
            if not items:
                return
            yield from items
            page += 1

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    def list_groups(self) -> List[Dict[str, Any]]:
        return list(self._iter_pages("groups"))

    def iter_group_projects(self, group_id: int) -> Iterator[Repository]:
        for item in self._iter_pages(f"groups/{group_id}/projects"):
            yield Repository.from_api_response(item)

    def iter_projects(self) -> Iterator[Repository]:
        """Every project visible to the token, not only those it is a member of."""
        for item in self._iter_pages("projects"):
            yield Repository.from_api_response(item)

    def get_project(self, project_id: int | str) -> Repository:
        return Repository.from_api_response(self._get_json(f"projects/{_encode(project_id)}"))

    def list_branches(self, project_id: int) -> List[Ref]:
        return [
            Ref.from_api_response(item)
            for item in self._iter_pages(f"projects/{project_id}/repository/branches")
        ]

    def get_branch(self, project_id: int, name: str) -> Ref:
        data = self._get_json(f"projects/{project_id}/repository/branches/{_encode(name)}")
        return Ref.from_api_response(data)

    def list_tags(self, project_id: int) -> List[Ref]:
        return [
            Ref.from_api_response(item)
            for item in self._iter_pages(f"projects/{project_id}/repository/tags")
        ]

    def get_file(self, project_id: int, file_path: str, ref: str) -> Optional[bytes]:
        """Return the raw bytes of ``file_path`` at ``ref``; None when absent."""
        path = f"projects/{project_id}/repository/files/{_encode(file_path)}"
        response = self._request(path, {"ref": ref})
        if response.status_code == 404:
            return None
        if not response.ok:
            raise GitLabAPIError.http_error(response.status_code, path, _error_detail(response))
        try:
            payload = response.json()
        except ValueError as exc:
            raise GitLabAPIError.unexpected_payload(path) from exc
        content = payload.get("content") if isinstance(payload, dict) else None
        if content is None:
            return None
        if payload.get("encoding", "base64") == "base64":
            return base64.b64decode(content)
        return content.encode("utf-8")

    def list_commits(
        self, project_id: int, ref: Optional[str] = None, per_page: int = 20
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"per_page": per_page}
        if ref:
            params["ref_name"] = ref
        commits = self._get_json(f"projects/{project_id}/repository/commits", params)
        if not isinstance(commits, list):
            raise GitLabAPIError.unexpected_payload("commits")
        return commits


def _encode(value: int | str) -> str:
    return quote(str(value), safe="")


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or "")
    return ""
