"""Error taxonomy shared by the engine, the CLI and the HTTP layer."""

from __future__ import annotations


class RepofeedError(RuntimeError):
    """Base class for errors that abort a registry build."""


class ConfigurationError(RepofeedError):
    """Raised when the configuration file is missing or unusable."""


class CacheSafetyError(RepofeedError):
    """Raised when a cache directory fails the sanity checks before clearing."""

    @classmethod
    def unsafe_path(cls, path: object) -> CacheSafetyError:
        return cls(f"refusing to clear cache directory {path}: path is not specific enough")

    @classmethod
    def missing(cls, path: object) -> CacheSafetyError:
        return cls(f"cache directory {path} does not exist")

    @classmethod
    def not_writable(cls, path: object) -> CacheSafetyError:
        return cls(f"cache directory {path} is not writable")


class StaticOverrideError(RepofeedError):
    """Raised when the static package file cannot be merged."""
