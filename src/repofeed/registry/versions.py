"""Map ref names onto Composer version strings."""

from __future__ import annotations

import re

DEV_PREFIX = "dev-"

RELEASE_PATTERN = re.compile(
    r"^v?\d+\.\d+(\.\d+)*(-(dev|patch|alpha|beta|RC)\d*)?$", re.ASCII
)


def is_release_ref(ref_name: str) -> bool:
    return RELEASE_PATTERN.match(ref_name) is not None


def resolve_version(ref_name: str) -> str:
    """Release-like refs are used verbatim, anything else becomes ``dev-<ref>``."""
    if is_release_ref(ref_name):
        return ref_name
    return DEV_PREFIX + ref_name


def is_dev_version(version: str) -> bool:
    return version.startswith(DEV_PREFIX)


def dev_alias(version: str) -> str:
    """The development-channel alias registered next to a release version."""
    return DEV_PREFIX + version
