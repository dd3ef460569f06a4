from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class BackupCreateIn(BaseModel):
    note: Optional[str] = None


class BackupOut(BaseModel):
    backup_id: str
    status: Literal["completed", "failed"]
    created_at: str
    package_path: str
    manifest_path: str
    bundle_path: str
    counts: Dict[str, int] = Field(default_factory=dict)
    note: Optional[str] = None


class RestoreIn(BaseModel):
    # false merges the bundle over the current collection
    replace: bool = True


class RestoreOut(BaseModel):
    backup_id: str
    replaced: bool
    cleared: int
    restored: int


class ValidateOut(BaseModel):
    valid: bool
    count: int
    invalid: List[Dict[str, Any]] = Field(default_factory=list)


class ResetIn(BaseModel):
    confirm: bool = False


class ResetOut(BaseModel):
    cleared: int
