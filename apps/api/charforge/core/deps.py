"""
FastAPI dependencies. Collaborators are built in create_app() and hung on
app.state; routers only ever reach them through these accessors.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from charforge.modules.backups.service import BackupService
    from charforge.modules.characters.service import CharacterStore
    from charforge.modules.generation.service import CharacterGenerator
    from charforge.modules.portraits.service import PortraitService


def get_store(request: Request) -> "CharacterStore":
    return request.app.state.store


def get_generator(request: Request) -> "CharacterGenerator":
    return request.app.state.generator


def get_portraits(request: Request) -> "PortraitService":
    return request.app.state.portraits


def get_backups(request: Request) -> "BackupService":
    return request.app.state.backups
