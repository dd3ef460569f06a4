from __future__ import annotations

from fastapi import APIRouter, Depends

from charforge.core.deps import get_backups
from charforge.core.errors import ValidationError

from .schemas import BackupCreateIn, BackupOut, ResetIn, ResetOut, RestoreIn, RestoreOut, ValidateOut
from .service import BackupService

router = APIRouter(tags=["backups"])


@router.post("/backups", response_model=BackupOut)
def api_create_backup(body: BackupCreateIn | None = None, backups: BackupService = Depends(get_backups)):
    return backups.create(note=body.note if body else None)


# declared before /backups/{backup_id} so "validate" is not taken as an id
@router.get("/backups/validate", response_model=ValidateOut)
def api_validate_store(backups: BackupService = Depends(get_backups)):
    return backups.validate()


@router.get("/backups/{backup_id}", response_model=BackupOut)
def api_get_backup(backup_id: str, backups: BackupService = Depends(get_backups)):
    return backups.get(backup_id)


@router.post("/backups/{backup_id}/restore", response_model=RestoreOut)
def api_restore_backup(
    backup_id: str, body: RestoreIn | None = None, backups: BackupService = Depends(get_backups)
):
    return backups.restore(backup_id, replace=body.replace if body else True)


@router.post("/backups/reset", response_model=ResetOut)
def api_reset_store(body: ResetIn, backups: BackupService = Depends(get_backups)):
    if not body.confirm:
        raise ValidationError("reset requires confirm=true", details={"confirm": body.confirm})
    return backups.reset()
