from __future__ import annotations

import contextlib
import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DatabaseError, OperationalError
from sqlmodel import Session, col, select

from charforge.core.errors import NotFoundError, StoreUnavailableError, UnsupportedSystemError, ValidationError
from charforge.core.ids import new_ulid
from charforge.core.observability import emit

from .models import StoredCharacterRow
from .schemas import CharacterSheet, StoredCharacter, character_to_dict, parse_character
from .systems import GameSystem, coerce_system

TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# fields a caller may change through update(); id/system/created_at are fixed
UPDATABLE_FIELDS = ("prompt", "is_npc", "character", "portrait_ref")
IMMUTABLE_FIELDS = ("id", "system", "created_at", "updated_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(dt: datetime) -> str:
    dt = as_utc(dt).replace(tzinfo=None)
    return dt.strftime(TS_FORMAT)


def parse_ts(s: str) -> datetime:
    return datetime.strptime(s, TS_FORMAT).replace(tzinfo=timezone.utc)


def _validation_details(e: PydanticValidationError) -> List[Dict[str, Any]]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in e.errors()]


class CharacterStore:
    """
    CRUD + query access over stored characters.

    Every list is newest-first (created_at DESC, id DESC). Timestamps handed out
    by one store never repeat or go backwards, so ordering and "updated_at
    strictly increases" hold even when the clock is coarse.
    """

    def __init__(self, engine: Engine, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.engine = engine
        self._clock = clock or _utcnow
        self._lock = threading.RLock()
        self._last: Optional[datetime] = None

    # --- internals ---
    def _next_stamp(self, after: Optional[str] = None) -> str:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        floor = self._last
        if after is not None:
            prev = parse_ts(after)
            floor = prev if floor is None or prev > floor else floor
        if floor is not None and now <= floor:
            now = floor + timedelta(microseconds=1)
        self._last = now
        return format_ts(now)

    def _observe(self, stamp: str) -> None:
        # later stamps from this store must sort after restored ones
        seen = parse_ts(stamp)
        if self._last is None or seen > self._last:
            self._last = seen

    @contextlib.contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except (OperationalError, DatabaseError) as e:
            emit("error", "store.unavailable", str(e), module=__name__)
            raise StoreUnavailableError("character store unavailable", details={"type": type(e).__name__}) from e

    @staticmethod
    def _row_to_record(row: StoredCharacterRow) -> StoredCharacter:
        return StoredCharacter.model_validate(
            {
                "id": row.id,
                "system": row.system,
                "prompt": row.prompt,
                "character": json.loads(row.character_json),
                "is_npc": bool(row.is_npc),
                "portrait_ref": row.portrait_ref,
                "created_at": row.created_at,
                "updated_at": row.updated_at,
            }
        )

    @staticmethod
    def _validated(system: GameSystem, character: Any) -> CharacterSheet:
        try:
            return parse_character(system, character)
        except PydanticValidationError as e:
            raise ValidationError(
                f"character does not match the {system.value} sheet",
                details={"system": system.value, "errors": _validation_details(e)},
            ) from e

    def _get_row(self, session: Session, character_id: str) -> StoredCharacterRow:
        row = session.get(StoredCharacterRow, character_id)
        if row is None:
            raise NotFoundError(f"NOT_FOUND: character {character_id}", details={"id": character_id})
        return row

    # --- writes ---
    def create(
        self,
        system: Any,
        prompt: str,
        character: Any,
        is_npc: bool = False,
        *,
        portrait_ref: Optional[str] = None,
    ) -> StoredCharacter:
        s = coerce_system(system)
        sheet = self._validated(s, character)
        with self._lock, self._session() as session:
            now = self._next_stamp()
            row = StoredCharacterRow(
                id=new_ulid(),
                system=s.value,
                name=sheet.name,
                prompt=prompt,
                character_json=json.dumps(character_to_dict(sheet), ensure_ascii=False),
                is_npc=1 if is_npc else 0,
                portrait_ref=portrait_ref,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            rec = self._row_to_record(row)
        emit("info", "character.created", f"{s.value} {rec.name}", module=__name__, id=rec.id, is_npc=rec.is_npc)
        return rec

    def update(self, character_id: str, fields: Dict[str, Any]) -> StoredCharacter:
        bad = sorted(k for k in fields if k in IMMUTABLE_FIELDS)
        if bad:
            raise ValidationError(f"immutable fields: {', '.join(bad)}", details={"fields": bad})
        unknown = sorted(k for k in fields if k not in UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"unknown fields: {', '.join(unknown)}", details={"fields": unknown})

        with self._lock, self._session() as session:
            row = self._get_row(session, character_id)
            if "prompt" in fields and fields["prompt"] is not None:
                row.prompt = str(fields["prompt"])
            if "is_npc" in fields and fields["is_npc"] is not None:
                row.is_npc = 1 if fields["is_npc"] else 0
            if "character" in fields and fields["character"] is not None:
                sheet = self._validated(coerce_system(row.system), fields["character"])
                row.character_json = json.dumps(character_to_dict(sheet), ensure_ascii=False)
                row.name = sheet.name
            if "portrait_ref" in fields:
                row.portrait_ref = fields["portrait_ref"]
            row.updated_at = self._next_stamp(after=row.updated_at)
            session.add(row)
            session.commit()
            session.refresh(row)
            rec = self._row_to_record(row)
        emit("info", "character.updated", rec.name, module=__name__, id=rec.id, fields=sorted(fields))
        return rec

    def delete(self, character_id: str) -> None:
        """Remove a record. Deleting an absent id raises NotFoundError."""
        with self._lock, self._session() as session:
            row = self._get_row(session, character_id)
            session.delete(row)
            session.commit()
        emit("info", "character.deleted", character_id, module=__name__, id=character_id)

    def _merge_all(self, session: Session, records: Sequence[StoredCharacter]) -> None:
        for rec in records:
            sheet = self._validated(rec.system, rec.character)
            row = StoredCharacterRow(
                id=rec.id,
                system=rec.system.value,
                name=sheet.name,
                prompt=rec.prompt,
                character_json=json.dumps(character_to_dict(sheet), ensure_ascii=False),
                is_npc=1 if rec.is_npc else 0,
                portrait_ref=rec.portrait_ref,
                created_at=rec.created_at,
                updated_at=rec.updated_at,
            )
            session.merge(row)

    def bulk_upsert(self, records: Sequence[StoredCharacter]) -> int:
        """Insert or replace whole records, keeping their ids and created_at."""
        with self._lock, self._session() as session:
            self._merge_all(session, records)
            session.commit()
        for rec in records:
            self._observe(rec.updated_at)
        return len(records)

    def replace_all(self, records: Sequence[StoredCharacter], *, replace: bool = True) -> Tuple[int, int]:
        """
        Optionally wipe the collection, then upsert `records`, in one transaction.

        Nothing is committed unless every record is written; returns (cleared, written).
        """
        with self._lock, self._session() as session:
            cleared = 0
            if replace:
                cleared = int(session.exec(select(func.count()).select_from(StoredCharacterRow)).one())
                session.execute(delete(StoredCharacterRow))
            self._merge_all(session, records)
            session.commit()
        for rec in records:
            self._observe(rec.updated_at)
        return cleared, len(records)

    def clear(self) -> int:
        with self._lock, self._session() as session:
            n = session.exec(select(func.count()).select_from(StoredCharacterRow)).one()
            session.execute(delete(StoredCharacterRow))
            session.commit()
        return int(n)

    # --- reads ---
    def get_by_id(self, character_id: str) -> Optional[StoredCharacter]:
        with self._session() as session:
            row = session.get(StoredCharacterRow, character_id)
            return self._row_to_record(row) if row is not None else None

    def require(self, character_id: str) -> StoredCharacter:
        rec = self.get_by_id(character_id)
        if rec is None:
            raise NotFoundError(f"NOT_FOUND: character {character_id}", details={"id": character_id})
        return rec

    def query(
        self,
        *,
        system: Any = None,
        is_npc: Optional[bool] = None,
        term: Optional[str] = None,
        deep: bool = False,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[StoredCharacter], int]:
        """Filtered newest-first listing; returns (page, total matching)."""
        start = as_utc(start) if start is not None else None
        end = as_utc(end) if end is not None else None
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end", details={"start": str(start), "end": str(end)})

        conds = []
        if system is not None:
            conds.append(col(StoredCharacterRow.system) == coerce_system(system).value)
        if is_npc is not None:
            conds.append(col(StoredCharacterRow.is_npc) == (1 if is_npc else 0))
        if start is not None:
            conds.append(col(StoredCharacterRow.created_at) >= format_ts(start))
        if end is not None:
            conds.append(col(StoredCharacterRow.created_at) <= format_ts(end))
        if term:
            needle = term.casefold()
            haystacks = [StoredCharacterRow.name, StoredCharacterRow.prompt]
            if deep:
                haystacks.append(StoredCharacterRow.character_json)
            conds.append(or_(*[func.casefold(col(h)).contains(needle, autoescape=True) for h in haystacks]))

        with self._session() as session:
            total = session.exec(select(func.count()).select_from(StoredCharacterRow).where(*conds)).one()
            stmt = (
                select(StoredCharacterRow)
                .where(*conds)
                .order_by(col(StoredCharacterRow.created_at).desc(), col(StoredCharacterRow.id).desc())
                .offset(max(offset, 0))
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = session.exec(stmt).all()
            return [self._row_to_record(r) for r in rows], int(total)

    def get_all(self) -> List[StoredCharacter]:
        return self.query()[0]

    def get_by_system(self, system: Any) -> List[StoredCharacter]:
        return self.query(system=system)[0]

    def get_by_npc_status(self, is_npc: bool) -> List[StoredCharacter]:
        return self.query(is_npc=is_npc)[0]

    def get_by_date_range(self, start: datetime, end: datetime) -> List[StoredCharacter]:
        """Both ends inclusive."""
        return self.query(start=start, end=end)[0]

    def search(self, term: str, *, deep: bool = False) -> List[StoredCharacter]:
        """Case-insensitive substring match on name and prompt (and the full sheet when deep)."""
        return self.query(term=term, deep=deep)[0]

    def first_non_npc(self) -> Optional[StoredCharacter]:
        items, _total = self.query(is_npc=False, limit=1)
        return items[0] if items else None

    def count(self) -> int:
        with self._session() as session:
            return int(session.exec(select(func.count()).select_from(StoredCharacterRow)).one())

    def all_for_backup(self) -> List[StoredCharacter]:
        """Every record, oldest first."""
        return list(reversed(self.get_all()))

    def audit(self) -> Tuple[int, List[Dict[str, Any]]]:
        """Re-validate every stored row; returns (rows seen, problems)."""
        problems: List[Dict[str, Any]] = []
        with self._session() as session:
            rows = session.exec(select(StoredCharacterRow).order_by(col(StoredCharacterRow.created_at))).all()
            for row in rows:
                try:
                    self._row_to_record(row)
                except (PydanticValidationError, UnsupportedSystemError, ValueError) as e:
                    problems.append({"id": row.id, "system": row.system, "error": type(e).__name__})
            return len(rows), problems
