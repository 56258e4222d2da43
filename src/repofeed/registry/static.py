"""
Statically curated packages merged over the computed index.

Static entries replace any computed entry of the same name wholesale. Every
static version is tagged in its ``extra`` section with a ``_source: static``
marker; if the key is taken it is prefixed with ``_`` until it is free.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import StaticOverrideError
from ..logger import get_logger
from .descriptors import PackageEntry

log = get_logger(__name__)

SOURCE_MARKER_KEY = "_source"
SOURCE_MARKER_VALUE = "static"

Packages = Dict[str, PackageEntry]


def load_static_packages(path: Optional[Path]) -> Packages:
    """Read the static package file; an absent file contributes nothing."""
    if path is None or not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise StaticOverrideError(f"cannot read static packages {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StaticOverrideError(f"static packages {path} must be a JSON object")
    for name, package in data.items():
        if not isinstance(package, dict) or not all(
            isinstance(root, dict) for root in package.values()
        ):
            raise StaticOverrideError(
                f"static package {name!r} must map versions to objects"
            )
    return data


def marker_key(extra: Dict[str, Any]) -> str:
    key = SOURCE_MARKER_KEY
    while key in extra:
        key = "_" + key
    return key


def mark_static(root: Dict[str, Any]) -> Dict[str, Any]:
    """Inject the provenance marker into one version descriptor, in place."""
    extra = root.get("extra")
    if isinstance(extra, dict):
        extra[marker_key(extra)] = SOURCE_MARKER_VALUE
    elif extra is None:
        root["extra"] = {SOURCE_MARKER_KEY: SOURCE_MARKER_VALUE}
    else:
        raise StaticOverrideError(
            f"static version {root.get('version')!r} has a non-object extra section"
        )
    return root


def merge_static(packages: Packages, static_packages: Packages) -> Packages:
    """Overlay static packages onto ``packages`` and return it."""
    for name, package in static_packages.items():
        for root in package.values():
            mark_static(root)
        if name in packages:
            log.info("static_package_overrides_repository", package=name)
        packages[name] = package
    return packages
