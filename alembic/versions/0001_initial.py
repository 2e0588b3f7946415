"""initial schema: lots, message mappings, no-match markers

Revision ID: 0001_initial
Revises:
Create Date: 2025-01-10 12:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "lots",
        sa.Column("number", sa.String(255), primary_key=True),
        sa.Column("title", sa.Text(), nullable=False, server_default=""),
        sa.Column("link", sa.Text(), nullable=False, server_default=""),
        sa.Column("address", sa.Text()),
        sa.Column("lot_type", sa.String(500)),
        sa.Column("price", sa.Numeric(15, 2)),
        sa.Column("monthly_price", sa.Numeric(15, 2)),
        sa.Column("deposit", sa.Numeric(15, 2)),
        sa.Column("area", sa.Numeric(12, 2)),
        sa.Column("contract_term", sa.String(255)),
        sa.Column("cadastral_number", sa.String(100)),
        sa.Column("deadline", sa.String(100)),
        sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_lots_is_sent", "lots", ["is_sent"])

    op.create_table(
        "message_mappings",
        sa.Column(
            "lot_number", sa.String(255),
            sa.ForeignKey("lots.number", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("message_id", sa.BigInteger(), primary_key=True),
        sa.Column("chat_id", sa.BigInteger(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_message_mappings_message", "message_mappings", ["message_id", "chat_id"])

    op.create_table(
        "no_match_lots",
        sa.Column("lot_id", sa.String(255), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("no_match_lots")
    op.drop_index("idx_message_mappings_message", table_name="message_mappings")
    op.drop_table("message_mappings")
    op.drop_index("idx_lots_is_sent", table_name="lots")
    op.drop_table("lots")
