"""
Per-repository cache of computed package entries.

Records are keyed by the repository's ``last_activity_at``: a record computed
against an activity time at least as recent as the repository's current one
is reused verbatim, so no explicit invalidation is needed. A record with no
versions is the explicit "no package here" marker.
"""

from __future__ import annotations

import json
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..errors import CacheSafetyError
from ..gitlab import Repository
from ..logger import get_logger
from ..storage import file_mtime, write_json_atomic
from .descriptors import PackageEntry

log = get_logger(__name__)

MIN_CACHE_PATH_LENGTH = 20
RECORD_SUFFIX = ".json"


@dataclass
class CacheRecord:
    """Persisted result of describing one repository."""

    last_activity_at: float
    versions: PackageEntry = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.versions

    def is_fresh_for(self, repository: Repository) -> bool:
        return self.last_activity_at >= repository.activity_timestamp

    def to_dict(self) -> dict:
        return {"last_activity_at": self.last_activity_at, "versions": self.versions}


class RepositoryCache:
    """Filesystem-backed store of ``CacheRecord`` files, one per repository."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)

    def record_path(self, repository: Repository) -> Path:
        relative = Path(repository.path_with_namespace + RECORD_SUFFIX)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"unsafe repository path: {repository.path_with_namespace}")
        return self.cache_dir / relative

    def load(self, repository: Repository) -> Optional[CacheRecord]:
        path = self.record_path(repository)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            log.warning("cache_record_unreadable", path=str(path))
            return None
        if (
            not isinstance(payload, dict)
            or not isinstance(payload.get("last_activity_at"), (int, float))
            or not isinstance(payload.get("versions"), dict)
        ):
            log.warning("cache_record_malformed", path=str(path))
            return None
        return CacheRecord(
            last_activity_at=float(payload["last_activity_at"]),
            versions=payload["versions"],
        )

    def store(self, repository: Repository, versions: PackageEntry) -> CacheRecord:
        record = CacheRecord(last_activity_at=repository.activity_timestamp, versions=versions)
        write_json_atomic(
            self.record_path(repository),
            record.to_dict(),
            mtime=record.last_activity_at,
        )
        return record

    def fetch_or_compute(
        self,
        repository: Repository,
        compute: Callable[[Repository], PackageEntry],
    ) -> Optional[PackageEntry]:
        """Return the repository's package entry, recomputing only when stale.

        None means the repository publishes no package.
        """
        record = self.load(repository)
        if record is not None and record.is_fresh_for(repository):
            log.debug(
                "cache_hit",
                repository=repository.path_with_namespace,
                empty=record.is_empty,
            )
            return None if record.is_empty else record.versions

        versions = compute(repository)
        self.store(repository, versions)
        log.info(
            "cache_refreshed",
            repository=repository.path_with_namespace,
            versions=len(versions),
        )
        return versions or None

    def _check_clearable(self) -> Path:
        resolved = self.cache_dir.resolve()
        if not resolved.is_dir():
            raise CacheSafetyError.missing(resolved)
        if (
            len(str(resolved)) < MIN_CACHE_PATH_LENGTH
            or resolved == Path(resolved.anchor)
            or resolved == Path.home().resolve()
        ):
            raise CacheSafetyError.unsafe_path(resolved)
        return resolved

    def clear_all(self) -> int:
        """Irrecoverably delete every record and the built index."""
        root = self._check_clearable()
        removed = 0
        for entry in root.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        log.warning("cache_cleared", cache_dir=str(root), entries=removed)
        return removed

    def clear_on_config_change(self, config_file: Path, index_file: Path) -> bool:
        """Clear everything when the config is newer than the built index."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        if not os.access(self.cache_dir, os.W_OK):
            raise CacheSafetyError.not_writable(self.cache_dir)

        index_mtime = file_mtime(index_file)
        config_mtime = file_mtime(config_file)
        if index_mtime is not None and (config_mtime is None or config_mtime <= index_mtime):
            return False

        log.info(
            "configuration_changed",
            config_file=str(config_file),
            index_present=index_mtime is not None,
        )
        self.clear_all()
        return True
