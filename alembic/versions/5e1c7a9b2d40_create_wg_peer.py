"""create wg_peer table

Revision ID: 5e1c7a9b2d40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5e1c7a9b2d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "wg_peer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("address", sa.String(length=32), nullable=False),
        sa.Column("public_key", sa.String(length=64), nullable=False),
        sa.Column("private_key", sa.String(length=64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("allowed_routes", sa.JSON(), nullable=False),
        sa.Column("endpoint_override", sa.String(length=255), nullable=True),
        sa.Column("dns_hint", sa.String(length=255), nullable=True),
        sa.Column("keepalive_seconds", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("interface_name", sa.String(length=32), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("last_handshake_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen_addr", sa.String(length=64), nullable=True),
        sa.Column("rx_bytes", sa.BigInteger(), nullable=False),
        sa.Column("tx_bytes", sa.BigInteger(), nullable=False),
        sa.Column("last_connection_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address"),
        sa.UniqueConstraint("public_key"),
    )
    op.create_index(op.f("ix_wg_peer_name"), "wg_peer", ["name"], unique=True)
    op.create_index(op.f("ix_wg_peer_enabled"), "wg_peer", ["enabled"], unique=False)
    op.create_index("ix_wg_peer_enabled_name", "wg_peer", ["enabled", "name"], unique=False)
    op.create_index("ix_wg_peer_created_at", "wg_peer", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_wg_peer_created_at", table_name="wg_peer")
    op.drop_index("ix_wg_peer_enabled_name", table_name="wg_peer")
    op.drop_index(op.f("ix_wg_peer_enabled"), table_name="wg_peer")
    op.drop_index(op.f("ix_wg_peer_name"), table_name="wg_peer")
    op.drop_table("wg_peer")
