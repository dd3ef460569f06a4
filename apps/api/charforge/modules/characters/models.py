from typing import Optional

from sqlmodel import Field, SQLModel


# system: dnd5e|pf2e|blades
class StoredCharacterRow(SQLModel, table=True):
    __tablename__ = "stored_characters"

    id: str = Field(primary_key=True)
    system: str = Field(index=True)
    # denormalized from character_json for search/list
    name: str = Field(index=True)
    prompt: str
    character_json: str
    is_npc: int = Field(default=0, index=True)  # 0|1
    portrait_ref: Optional[str] = Field(default=None)

    # fixed-width UTC ISO strings; lexical order == time order
    created_at: str = Field(index=True)
    updated_at: str
