"""
In-memory build and serve counters reported by ``/telemetry``.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..registry import BuildResult


@dataclass
class LastBuild:
    """Summary of the most recent aggregation run, successful or not."""

    ok: bool
    forced: bool
    duration_ms: float
    rebuilt: bool = False
    repository_count: int = 0
    package_count: Optional[int] = None
    skipped: List[str] = field(default_factory=list)
    cache_cleared: bool = False
    error: Optional[str] = None
    finished_at: float = field(default_factory=time.time)

    @classmethod
    def from_result(cls, result: BuildResult, forced: bool) -> LastBuild:
        return cls(
            ok=True,
            forced=forced,
            duration_ms=result.duration_ms,
            rebuilt=result.rebuilt,
            repository_count=result.repository_count,
            package_count=result.package_count,
            skipped=list(result.skipped),
            cache_cleared=result.cache_cleared,
        )


class Telemetry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.builds = 0
        self.rebuilds = 0
        self.failures = 0
        self.served = 0
        self.not_modified = 0
        self.last_build: Optional[LastBuild] = None

    def record_build(self, result: BuildResult, forced: bool = False) -> None:
        with self._lock:
            self.builds += 1
            if result.rebuilt:
                self.rebuilds += 1
            self.last_build = LastBuild.from_result(result, forced)

    def record_failure(self, error: Exception, duration_ms: float, forced: bool = False) -> None:
        with self._lock:
            self.builds += 1
            self.failures += 1
            self.last_build = LastBuild(
                ok=False, forced=forced, duration_ms=duration_ms, error=str(error)
            )

    def record_serve(self, not_modified: bool) -> None:
        with self._lock:
            self.served += 1
            if not_modified:
                self.not_modified += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "builds": self.builds,
                "rebuilds": self.rebuilds,
                "failures": self.failures,
                "served": self.served,
                "not_modified": self.not_modified,
                "last_build": asdict(self.last_build) if self.last_build else None,
            }
