"""v1.0: stored_characters

- One row per generated character (player or NPC).
- character_json holds the full sheet; name is copied out of it for search.
- created_at/updated_at are fixed-width UTC strings so lexical order is time order.
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_stored_characters"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "stored_characters",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("system", sa.Text(), nullable=False),  # dnd5e|pf2e|blades
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("character_json", sa.Text(), nullable=False),
        sa.Column("is_npc", sa.Integer(), nullable=False, server_default="0"),  # 0|1
        sa.Column("portrait_ref", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.Text(), nullable=False),
    )
    op.create_index("ix_stored_characters_system", "stored_characters", ["system"])
    op.create_index("ix_stored_characters_name", "stored_characters", ["name"])
    op.create_index("ix_stored_characters_is_npc", "stored_characters", ["is_npc"])
    op.create_index("ix_stored_characters_created_at", "stored_characters", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_stored_characters_created_at", table_name="stored_characters")
    op.drop_index("ix_stored_characters_is_npc", table_name="stored_characters")
    op.drop_index("ix_stored_characters_name", table_name="stored_characters")
    op.drop_index("ix_stored_characters_system", table_name="stored_characters")
    op.drop_table("stored_characters")
