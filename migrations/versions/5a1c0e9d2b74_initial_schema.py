"""initial schema

Revision ID: 5a1c0e9d2b74
Revises:
Create Date: 2026-10-19 09:12:40.512331

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5a1c0e9d2b74"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create identity, room, message and file metadata tables."""
    op.create_table(
        "user_identity",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("public_key_b64", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_table(
        "room",
        sa.Column("room_id", sa.Text(), nullable=False),
        sa.Column("members", sa.JSON(), nullable=False),
        sa.Column("secret_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rotated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("room_id"),
    )
    op.create_table(
        "room_key",
        sa.Column("room_id", sa.Text(), nullable=False),
        sa.Column("member_id", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("sealed_key_b64", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["room_id"], ["room.room_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("room_id", "member_id", "version"),
    )
    op.create_table(
        "room_message",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            autoincrement=True,
            nullable=False,
        ),
        sa.Column("room_id", sa.Text(), nullable=False),
        sa.Column("sender_id", sa.Text(), nullable=False),
        sa.Column("ciphertext_b64", sa.Text(), nullable=False),
        sa.Column("nonce_b64", sa.Text(), nullable=False),
        sa.Column("key_version", sa.Integer(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["room_id"], ["room.room_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_room_message_room_created",
        "room_message",
        ["room_id", "created_at", "id"],
        unique=False,
    )
    op.create_table(
        "encrypted_file",
        sa.Column("file_id", sa.Text(), nullable=False),
        sa.Column("original_name", sa.Text(), nullable=False),
        sa.Column("original_size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("file_hash", sa.Text(), nullable=False),
        sa.Column("header_b64", sa.Text(), nullable=True),
        sa.Column("header_ref", sa.Text(), nullable=False),
        sa.Column("chunk_refs", sa.JSON(), nullable=False),
        sa.Column("chunk_count", sa.Integer(), nullable=False),
        sa.Column("sealed_keys", sa.JSON(), nullable=False),
        sa.Column("sealed_key", sa.Text(), nullable=True),
        sa.Column("scan_result", sa.JSON(), nullable=False),
        sa.Column("room_id", sa.Text(), nullable=True),
        sa.Column("uploaded_by", sa.Text(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("file_id"),
    )
    op.create_index("ix_encrypted_file_room_id", "encrypted_file", ["room_id"], unique=False)


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_encrypted_file_room_id", table_name="encrypted_file")
    op.drop_table("encrypted_file")
    op.drop_index("ix_room_message_room_created", table_name="room_message")
    op.drop_table("room_message")
    op.drop_table("room_key")
    op.drop_table("room")
    op.drop_table("user_identity")
