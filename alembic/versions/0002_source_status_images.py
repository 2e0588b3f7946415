"""lots: source, lot_status, image_urls, organizer

Новые колонки добавляются с значениями по умолчанию, старые строки не трогаем.

Revision ID: 0002_source_status_images
Revises: 0001_initial
Create Date: 2025-02-03 09:30:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002_source_status_images"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("lots") as batch:
        batch.add_column(sa.Column("source", sa.String(255)))
        batch.add_column(sa.Column("lot_status", sa.String(20), server_default="ACTIVE"))
        batch.add_column(sa.Column("image_urls", sa.JSON(), server_default="[]"))
        batch.add_column(sa.Column("organizer", sa.Text()))
    op.create_index("idx_lots_status", "lots", ["lot_status"])


def downgrade() -> None:
    op.drop_index("idx_lots_status", table_name="lots")
    with op.batch_alter_table("lots") as batch:
        batch.drop_column("organizer")
        batch.drop_column("image_urls")
        batch.drop_column("lot_status")
        batch.drop_column("source")
