"""Core primitives for the trusted issuers registry.

This module provides the foundational utilities used throughout the package:
- Cryptographic hashing (SHA-256)
- Canonical JSON serialization (JCS/RFC8785 subset)
- YAML/JSON loading with consistent encoding
- Package-relative resource paths

Design principles:
- Pure functions where possible
- No global mutable state
- Explicit error handling
"""

from __future__ import annotations

import hashlib
import json
import pathlib
from datetime import date, datetime, timezone
from typing import Any, Dict

import yaml

# Package directory, computed once at module load
PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent
SCHEMAS_DIR = PACKAGE_ROOT / "schemas"


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of bytes, returning lowercase hex string."""
    return hashlib.sha256(data).hexdigest()


def load_yaml(path: pathlib.Path) -> Any:
    """Load YAML file with UTF-8 encoding."""
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    """Load JSON file with UTF-8 encoding."""
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def load_document(path: pathlib.Path) -> Any:
    """Load a JSON or YAML document, chosen by file suffix."""
    p = pathlib.Path(path)
    if p.suffix.lower() in (".yaml", ".yml"):
        return load_yaml(p)
    return load_json(p)


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - YAML loaders may produce datetime/date objects; convert them to ISO strings.
    - Floats are rejected to avoid non-JCS number edge cases.
    - Tuples become lists.
    """
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in JCS canonicalization. Use strings or integers.")
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def canonical_json_bytes(obj: Any) -> bytes:
    """Serialize object to canonical JSON bytes (JCS/RFC8785 subset).

    Properties:
    - Keys sorted lexicographically
    - No whitespace
    - UTF-8 encoded
    - Floats rejected (use strings/ints)

    This ensures byte-for-byte reproducibility for state digests.
    """
    clean = _coerce_json_types(obj)
    return json.dumps(
        clean,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def canonical_digest(obj: Any) -> str:
    """SHA-256 of the canonical JSON bytes of ``obj``."""
    return sha256_bytes(canonical_json_bytes(obj))