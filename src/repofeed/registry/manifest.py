"""
Manifest parsing and publication policy.

A manifest only becomes a package when it parses as a JSON object, is not a
hidden ``project`` and declares a name matching its repository (unless name
mismatches are allowed).
"""
from __future__ import annotations

import json
import string
from typing import Any, Dict, Optional

from ..settings import RegistryPolicy

_ASCII_FOLD = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def names_match(declared: str, path_with_namespace: str) -> bool:
    """Case-insensitive comparison that only folds ASCII letters."""
    return declared.translate(_ASCII_FOLD) == path_with_namespace.translate(_ASCII_FOLD)


def parse_manifest(raw: Optional[bytes]) -> Optional[Dict[str, Any]]:
    """Decode a manifest blob; None when absent or not a JSON object."""
    if raw is None:
        return None
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(document, dict):
        return None
    return document


def validate_manifest(
    raw: Optional[bytes],
    path_with_namespace: str,
    policy: RegistryPolicy,
) -> Optional[Dict[str, Any]]:
    """Return the manifest if it may be published for this repository."""
    manifest = parse_manifest(raw)
    if manifest is None:
        return None

    if manifest.get("type") == "project" and policy.hide_projects:
        return None

    name = manifest.get("name")
    if not name or not isinstance(name, str):
        return None
    if not policy.allow_name_mismatch and not names_match(name, path_with_namespace):
        return None

    return manifest
