"""
GitLab host integration: REST client and typed payload views.
"""

from .client import GitLabClient
from .errors import GitLabAPIError
from .models import Ref, Repository, parse_timestamp

__all__ = ["GitLabAPIError", "GitLabClient", "Ref", "Repository", "parse_timestamp"]
