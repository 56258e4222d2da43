"""GitLab API errors."""

from __future__ import annotations


class GitLabAPIError(RuntimeError):
    """Raised when GitLab returns an error response or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, path: str, detail: str = "") -> GitLabAPIError:
        """Return an error for non-2xx HTTP responses."""
        message = f"GitLab HTTP {status_code} for {path}"
        if detail:
            message = f"{message}: {detail}"
        return cls(message, status_code=status_code)

    @classmethod
    def transport(cls, path: str, exc: Exception) -> GitLabAPIError:
        """Return an error for connection level failures."""
        return cls(f"GitLab request to {path} failed: {exc}")

    @classmethod
    def unexpected_payload(cls, path: str) -> GitLabAPIError:
        return cls(f"GitLab response for {path} has an unexpected shape")
