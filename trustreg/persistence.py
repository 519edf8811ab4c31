"""Snapshot persistence for the trusted issuers registry.

Snapshots are plain documents (see ``IssuerRegistry.snapshot``) validated
against ``schemas/trusted-issuers-registry.schema.json`` before a registry is
rebuilt from them. Files ending in ``.yaml``/``.yml`` are written with PyYAML,
everything else as canonical JSON bytes.

Writes are atomic: the document goes to a temporary file in the target
directory and is moved into place with ``os.replace``. When a previous file
exists and backups are enabled it is first copied to ``<path>.backup``.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from trustreg.config import get_config
from trustreg.core import SCHEMAS_DIR, canonical_json_bytes, load_document, load_json
from trustreg.hardening import SnapshotError
from trustreg.observability import get_logger, timed_operation
from trustreg.registry import IssuerRegistry

log = get_logger("persistence")

SNAPSHOT_SCHEMA = SCHEMAS_DIR / "trusted-issuers-registry.schema.json"

PathLike = Union[str, Path]


@lru_cache(maxsize=1)
def _schema_registry() -> Registry:
    """Registry of every shipped schema, keyed by ``$id``, for ``$ref`` resolution."""
    resources = []
    for schema_path in sorted(SCHEMAS_DIR.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or schema_path.name
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=1)
def snapshot_validator() -> Draft202012Validator:
    """Validator for registry snapshot documents."""
    schema = load_json(SNAPSHOT_SCHEMA)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_snapshot(data: Any) -> List[str]:
    """Schema errors for ``data`` as ``"<json path>: <message>"`` strings; empty when valid."""
    return [
        f"{error.json_path}: {error.message}"
        for error in snapshot_validator().iter_errors(data)
    ]


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def dump_snapshot(data: Dict[str, Any], path: PathLike) -> bytes:
    """Serialize a snapshot in the format implied by ``path``."""
    if _is_yaml(Path(path)):
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False).encode("utf-8")
    return canonical_json_bytes(data) + b"\n"


@timed_operation(log, "save_snapshot")
def save_snapshot(
    registry: IssuerRegistry,
    path: Optional[PathLike] = None,
    keep_backup: Optional[bool] = None,
) -> Path:
    """
    Write ``registry.snapshot()`` to ``path`` atomically.

    ``path`` and ``keep_backup`` default to the ``storage`` configuration.
    Returns the path written.
    """
    cfg = get_config().storage
    target = Path(path if path is not None else cfg.snapshot_path.get())
    if keep_backup is None:
        keep_backup = cfg.keep_backup.get()

    payload = dump_snapshot(registry.snapshot(), target)
    target.parent.mkdir(parents=True, exist_ok=True)

    if keep_backup and target.exists():
        shutil.copy2(target, target.with_name(target.name + ".backup"))

    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    log.info("Snapshot saved", operation="save_snapshot", path=str(target), issuers=len(registry))
    return target


def load_snapshot(path: PathLike) -> Dict[str, Any]:
    """
    Read and schema-validate a snapshot document.

    Raises:
        SnapshotError: missing file, unparsable content, or schema violations
    """
    p = Path(path)
    if not p.exists():
        raise SnapshotError(f"Snapshot file not found: {p}")

    try:
        data = load_document(p)
    except (ValueError, yaml.YAMLError) as e:
        raise SnapshotError(f"Unreadable snapshot {p}: {e}") from e

    errors = validate_snapshot(data)
    if errors:
        raise SnapshotError(f"Snapshot {p} failed schema validation: " + "; ".join(errors))
    return data


@timed_operation(log, "load_registry")
def load_registry(path: Optional[PathLike] = None, **kwargs: Any) -> IssuerRegistry:
    """
    Load and rebuild a registry from a snapshot file.

    Keyword arguments are passed to ``IssuerRegistry.from_snapshot``.
    """
    target = Path(path if path is not None else get_config().storage.snapshot_path.get())
    return IssuerRegistry.from_snapshot(load_snapshot(target), **kwargs)
