from __future__ import annotations

import hashlib
import json
import re
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from charforge.core.errors import NotFoundError, UnsupportedSystemError, ValidationError
from charforge.core.ids import new_ulid
from charforge.core.observability import emit, now_iso
from charforge.core.storage import ensure_root
from charforge.modules.characters.schemas import StoredCharacter
from charforge.modules.characters.service import CharacterStore

MANIFEST_VERSION = "1.0"

_BACKUP_ID_RE = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$")


def _sha256_file(p: Path) -> str:
    h = hashlib.sha256()
    with p.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def _write_json(p: Path, data: Any) -> None:
    p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def _read_json(p: Path, missing: str) -> Any:
    if not p.exists():
        raise NotFoundError(f"NOT_FOUND: {missing}", details={"path": p.as_posix()})
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except ValueError as e:
        raise ValidationError(f"{p.name} is not valid JSON", details={"path": p.as_posix()}) from e


class BackupService:
    """
    Whole-collection backup packages under <exports_root>/backups/<id>/:

      bundle.json    every stored record, oldest first
      manifest.json  counts + sha256 of the bundle
      backup.json    the record returned by create()/get()

    Restore replaces the collection with the bundle's records, keeping their
    ids and timestamps.
    """

    def __init__(self, store: CharacterStore, exports_root: str) -> None:
        self.store = store
        self.exports_root = exports_root

    def _root(self) -> Path:
        return ensure_root(self.exports_root) / "backups"

    def _dir(self, backup_id: str) -> Path:
        if not _BACKUP_ID_RE.match(backup_id or ""):
            raise NotFoundError("NOT_FOUND: backup", details={"backup_id": backup_id})
        return self._root() / backup_id

    def create(self, note: Optional[str] = None) -> Dict[str, Any]:
        records = self.store.all_for_backup()
        backup_id = new_ulid()
        backup_dir = self._root() / backup_id
        backup_dir.mkdir(parents=True, exist_ok=False)
        created_at = now_iso()

        bundle_path = backup_dir / "bundle.json"
        manifest_path = backup_dir / "manifest.json"
        record_path = backup_dir / "backup.json"

        _write_json(bundle_path, {"characters": [r.model_dump(mode="json", by_alias=True) for r in records]})

        counts = {
            "characters": len(records),
            "npcs": sum(1 for r in records if r.is_npc),
        }
        manifest = {
            "manifest_version": MANIFEST_VERSION,
            "backup_id": backup_id,
            "created_at": created_at,
            "note": note,
            "counts": counts,
            "systems": dict(Counter(r.system.value for r in records)),
            "bundle_sha256": _sha256_file(bundle_path),
        }
        _write_json(manifest_path, manifest)

        record = {
            "backup_id": backup_id,
            "status": "completed",
            "created_at": created_at,
            "package_path": backup_dir.as_posix(),
            "manifest_path": manifest_path.as_posix(),
            "bundle_path": bundle_path.as_posix(),
            "counts": counts,
            "note": note,
        }
        _write_json(record_path, record)
        emit("info", "backup.created", backup_id, module=__name__, counts=counts)
        return record

    def get(self, backup_id: str) -> Dict[str, Any]:
        return _read_json(self._dir(backup_id) / "backup.json", "backup")

    def manifest(self, backup_id: str) -> Dict[str, Any]:
        return _read_json(self._dir(backup_id) / "manifest.json", "manifest")

    def load(self, backup_id: str) -> List[StoredCharacter]:
        """Read and verify a package's records without touching the store."""
        backup_dir = self._dir(backup_id)
        manifest = self.manifest(backup_id)
        bundle_path = backup_dir / "bundle.json"
        bundle = _read_json(bundle_path, "bundle")

        expected = manifest.get("bundle_sha256")
        if expected and _sha256_file(bundle_path) != expected:
            raise ValidationError("bundle checksum mismatch", details={"backup_id": backup_id})

        raw = bundle.get("characters") if isinstance(bundle, dict) else None
        if not isinstance(raw, list):
            raise ValidationError("bundle has no characters list", details={"backup_id": backup_id})

        records: List[StoredCharacter] = []
        for i, item in enumerate(raw):
            try:
                records.append(StoredCharacter.model_validate(item))
            except (PydanticValidationError, UnsupportedSystemError) as e:
                raise ValidationError(
                    f"bundle record {i} is invalid",
                    details={"backup_id": backup_id, "index": i, "type": type(e).__name__},
                ) from e
        return records

    def restore(self, backup_id: str, *, replace: bool = True) -> Dict[str, Any]:
        records = self.load(backup_id)
        cleared, restored = self.store.replace_all(records, replace=replace)
        emit("audit", "backup.restored", backup_id, module=__name__, cleared=cleared, restored=restored)
        return {"backup_id": backup_id, "replaced": replace, "cleared": cleared, "restored": restored}

    def validate(self) -> Dict[str, Any]:
        count, problems = self.store.audit()
        return {"valid": not problems, "count": count, "invalid": problems}

    def reset(self) -> Dict[str, Any]:
        cleared = self.store.clear()
        emit("audit", "store.reset", f"cleared {cleared} records", module=__name__, cleared=cleared)
        return {"cleared": cleared}
