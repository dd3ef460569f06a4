"""
Local filesystem storage contract.

Defaults:
- STORAGE_ROOT: ./data/storage

Refs handed out to callers have the stable shape storage://<relpath>.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

REF_PREFIX = "storage://"


def _repo_root() -> Path:
    # apps/api/charforge/core/storage.py -> repo root = parents[4]
    return Path(__file__).resolve().parents[4]


def resolve_root(raw: str) -> Path:
    p = Path(raw)
    return (_repo_root() / p).resolve() if not p.is_absolute() else p


def ensure_root(raw: str) -> Path:
    root = resolve_root(raw)
    root.mkdir(parents=True, exist_ok=True)
    return root


def write_blob(raw_root: str, relpath: str, data: bytes) -> str:
    root = ensure_root(raw_root)
    target = ref_to_path(raw_root, REF_PREFIX + relpath)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return REF_PREFIX + target.relative_to(root).as_posix()


def ref_to_path(raw_root: str, ref: str) -> Path:
    if not ref.startswith(REF_PREFIX):
        raise ValueError(f"not a storage ref: {ref!r}")
    root = resolve_root(raw_root).resolve()
    rel = ref[len(REF_PREFIX) :].lstrip("/").replace("\\", "/")
    target = (root / rel).resolve()
    if not target.is_relative_to(root):
        raise ValueError("Path traversal blocked")
    return target


def storage_health(raw_root: str) -> Dict[str, Any]:
    try:
        root = ensure_root(raw_root)
        probe = root / ".probe_write"
        probe.write_text("ok", encoding="utf-8")
        probe.unlink(missing_ok=True)
        return {"status": "ok", "kind": "local_fs", "root": str(root.as_posix())}
    except Exception as e:
        return {"status": "error", "kind": "local_fs", "root": str(resolve_root(raw_root).as_posix()), "error": str(e)}
