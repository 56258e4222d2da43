"""Typed views over the GitLab project and ref payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def parse_timestamp(value: str) -> datetime:
    """Parse a GitLab ISO-8601 timestamp into an aware UTC datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Repository:
    """A GitLab project as seen during one aggregation run."""

    id: int
    path_with_namespace: str
    last_activity_at: datetime
    default_branch: Optional[str] = None
    ssh_url_to_repo: Optional[str] = None
    http_url_to_repo: Optional[str] = None

    @property
    def activity_timestamp(self) -> float:
        return self.last_activity_at.timestamp()

    def url_for(self, method: str) -> Optional[str]:
        if method == "http":
            return self.http_url_to_repo
        return self.ssh_url_to_repo

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> Repository:
        return cls(
            id=int(data["id"]),
            path_with_namespace=data["path_with_namespace"],
            last_activity_at=parse_timestamp(data["last_activity_at"]),
            default_branch=data.get("default_branch"),
            ssh_url_to_repo=data.get("ssh_url_to_repo"),
            http_url_to_repo=data.get("http_url_to_repo"),
        )


@dataclass(frozen=True)
class Ref:
    """A branch or tag and the commit it points to."""

    name: str
    commit_id: str

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> Ref:
        commit = data.get("commit") or {}
        return cls(name=data["name"], commit_id=commit.get("id", ""))
