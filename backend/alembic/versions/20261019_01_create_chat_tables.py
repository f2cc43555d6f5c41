"""create chat tables

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


PRESENCE_STATUS = sa.Enum("online", "away", "offline", name="presence_status")
FRIEND_REQUEST_STATUS = sa.Enum("pending", "accepted", "rejected", name="friend_request_status")
MESSAGE_TYPE = sa.Enum("text", "image", "file", name="message_type")


def _timestamp(name: str, *, onupdate: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        onupdate=sa.func.now() if onupdate else None,
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("login", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("avatar_path", sa.String(length=512), nullable=True),
        sa.Column("presence_status", PRESENCE_STATUS, nullable=False, server_default="offline"),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at", onupdate=True),
        sa.UniqueConstraint("login", name="uq_users_login"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "friendships",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_low_id", sa.Integer(), nullable=False),
        sa.Column("user_high_id", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["user_low_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_high_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_low_id", "user_high_id", name="uq_friendship_pair"),
        sa.CheckConstraint("user_low_id < user_high_id", name="ck_friendship_order"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "friend_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("addressee_id", sa.Integer(), nullable=False),
        sa.Column("status", FRIEND_REQUEST_STATUS, nullable=False, server_default="pending"),
        _timestamp("created_at"),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_key", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["requester_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["addressee_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("pending_key", name="uq_friend_requests_pending_key"),
        mysql_charset="utf8mb4",
    )
    op.create_index(
        "ix_friend_requests_pair_status",
        "friend_requests",
        ["requester_id", "addressee_id", "status"],
    )
    op.create_index("ix_friend_requests_addressee", "friend_requests", ["addressee_id", "status"])

    op.create_table(
        "user_blocks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("blocker_id", sa.Integer(), nullable=False),
        sa.Column("blocked_id", sa.Integer(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["blocker_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["blocked_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("blocker_id", "blocked_id", name="uq_user_block"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("admin_id", sa.Integer(), nullable=True),
        sa.Column("direct_key", sa.String(length=64), nullable=True),
        sa.Column("last_message_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at", onupdate=True),
        sa.ForeignKeyConstraint(["admin_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("direct_key", name="uq_rooms_direct_key"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "room_members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("joined_at"),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["room_id"], ["rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("room_id", "user_id", name="uq_room_member"),
        mysql_charset="utf8mb4",
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.Integer(), nullable=True),
        sa.Column("type", MESSAGE_TYPE, nullable=False, server_default="text"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("file_url", sa.String(length=512), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("content_type", sa.String(length=128), nullable=True),
        sa.Column("reply_to_id", sa.Integer(), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["room_id"], ["rooms.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reply_to_id"], ["messages.id"], ondelete="SET NULL"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_messages_room_created_at", "messages", ["room_id", "created_at"])

    op.create_foreign_key(
        "fk_rooms_last_message",
        "rooms",
        "messages",
        ["last_message_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "message_reactions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("emoji", sa.String(length=32), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_reaction_user"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_reactions_message", "message_reactions", ["message_id"])

    op.create_table(
        "message_receipts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("message_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        _timestamp("read_at"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("message_id", "user_id", name="uq_message_receipt"),
        mysql_charset="utf8mb4",
    )
    op.create_index("ix_receipts_user", "message_receipts", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_receipts_user", table_name="message_receipts")
    op.drop_table("message_receipts")
    op.drop_index("ix_reactions_message", table_name="message_reactions")
    op.drop_table("message_reactions")
    op.drop_constraint("fk_rooms_last_message", "rooms", type_="foreignkey")
    op.drop_index("ix_messages_room_created_at", table_name="messages")
    op.drop_table("messages")
    op.drop_table("room_members")
    op.drop_table("rooms")
    op.drop_table("user_blocks")
    op.drop_index("ix_friend_requests_addressee", table_name="friend_requests")
    op.drop_index("ix_friend_requests_pair_status", table_name="friend_requests")
    op.drop_table("friend_requests")
    op.drop_table("friendships")
    op.drop_table("users")

    MESSAGE_TYPE.drop(op.get_bind(), checkfirst=False)
    FRIEND_REQUEST_STATUS.drop(op.get_bind(), checkfirst=False)
    PRESENCE_STATUS.drop(op.get_bind(), checkfirst=False)
