"""DuckDB-based Identity & Membership Store.

This module owns every durable record of the chat core: users, admins,
conversations, messages and the admin activity log. The service implements
the singleton pattern so only one database connection exists per process.

Database Schema:
    users:          identity, soft-delete marker, ban overlay
    admins:         dashboard administrators
    conversations:  participants / group_admins stored as JSON arrays
    messages:       seq (insertion order) for stable newest-first paging,
                    reactions / read_by stored as JSON arrays
    activity_logs:  append-only admin audit trail

Concurrency:
    The DuckDB connection is NOT thread-safe. Every public method is a
    coroutine that runs its SQL on the default executor while holding a
    process-wide lock, so storage calls are the only suspension points of
    the engines and two calls never touch the connection at once. Read-modify-write
    sequences that must not interleave (find-or-create of a one-to-one
    conversation, reaction toggles) run inside a single call. Message writes
    touch only the columns they change.

Usage:
    store = ChatStore.get_instance()
    user = await store.get_user(user_id)
"""
import asyncio
import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import duckdb

from ..config import get_config
from ..errors import ConflictError, StorageError
from .schemas import (
    ActivityAction,
    ActivityLogEntry,
    Admin,
    BanDetails,
    Conversation,
    FileRef,
    Message,
    MessageStatus,
    MessageType,
    Reaction,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_COLUMNS = (
    "id, full_name, email, password_hash, profile_picture_url, last_seen, created_at, "
    "created_by, deleted_at, deleted_by, is_banned, ban_reason, banned_at, "
    "ban_expires_at, banned_by"
)

CONVERSATION_COLUMNS = (
    "id, participants, is_group_chat, group_name, group_picture_url, group_admins, "
    "last_message_id, created_at, updated_at"
)

MESSAGE_COLUMNS = (
    "id, conversation_id, sender_id, content, message_type, file_url, file_type, "
    "file_name, reactions, status, read_by, is_edited, deleted_at, reply_to, "
    "reply_snippet, reply_sender_name, created_at, updated_at"
)

ACTIVITY_COLUMNS = (
    "id, admin_id, admin_name, action, target_type, target_id, target_name, details, logged_at"
)


# =============================================================================
# Row mapping
# =============================================================================


def _fetch_dicts(conn: duckdb.DuckDBPyConnection, sql: str, params: Iterable[Any] = ()) -> List[dict]:
    conn.execute(sql, list(params))
    columns = [col[0] for col in conn.description]
    return [dict(zip(columns, row)) for row in conn.fetchall()]


def _fetch_one(conn: duckdb.DuckDBPyConnection, sql: str, params: Iterable[Any] = ()) -> Optional[dict]:
    rows = _fetch_dicts(conn, sql, params)
    return rows[0] if rows else None


def _member_pattern(user_id: str) -> str:
    """LIKE pattern matching *user_id* inside a JSON array column."""
    return f'%"{user_id}"%'


def _row_to_user(row: dict) -> User:
    ban = None
    if row["ban_reason"] is not None:
        ban = BanDetails(
            reason=row["ban_reason"],
            bannedAt=row["banned_at"],
            expiresAt=row["ban_expires_at"],
            bannedBy=row["banned_by"],
        )
    return User(
        id=row["id"],
        fullName=row["full_name"],
        email=row["email"],
        passwordHash=row["password_hash"],
        profilePictureUrl=row["profile_picture_url"] or "",
        lastSeen=row["last_seen"],
        createdAt=row["created_at"],
        createdBy=row["created_by"],
        deletedAt=row["deleted_at"],
        deletedBy=row["deleted_by"],
        isBanned=bool(row["is_banned"]),
        banDetails=ban,
    )


def _user_params(user: User) -> List[Any]:
    ban = user.banDetails
    return [
        user.fullName,
        user.email,
        user.passwordHash,
        user.profilePictureUrl,
        user.lastSeen,
        user.createdAt,
        user.createdBy,
        user.deletedAt,
        user.deletedBy,
        user.isBanned,
        ban.reason if ban else None,
        ban.bannedAt if ban else None,
        ban.expiresAt if ban else None,
        ban.bannedBy if ban else None,
    ]


def _row_to_conversation(row: dict) -> Conversation:
    return Conversation(
        id=row["id"],
        participants=json.loads(row["participants"]),
        isGroupChat=bool(row["is_group_chat"]),
        groupName=row["group_name"] or "",
        groupPictureUrl=row["group_picture_url"] or "",
        groupAdmins=json.loads(row["group_admins"]),
        lastMessageId=row["last_message_id"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def _insert_conversation(conn: duckdb.DuckDBPyConnection, conversation: Conversation) -> None:
    conn.execute(
        f"INSERT INTO conversations ({CONVERSATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        [
            conversation.id,
            json.dumps(conversation.participants),
            conversation.isGroupChat,
            conversation.groupName,
            conversation.groupPictureUrl,
            json.dumps(conversation.groupAdmins),
            conversation.lastMessageId,
            conversation.createdAt,
            conversation.updatedAt,
        ],
    )


def _select_one_to_one(conn: duckdb.DuckDBPyConnection, user_a: str, user_b: str) -> Optional[Conversation]:
    rows = _fetch_dicts(
        conn,
        f"""
        SELECT {CONVERSATION_COLUMNS} FROM conversations
        WHERE NOT is_group_chat AND participants LIKE ? AND participants LIKE ?
        ORDER BY created_at
        """,
        [_member_pattern(user_a), _member_pattern(user_b)],
    )
    wanted = {user_a, user_b}
    for row in rows:
        conversation = _row_to_conversation(row)
        if len(conversation.participants) == 2 and set(conversation.participants) == wanted:
            return conversation
    return None


def _row_to_message(row: dict) -> Message:
    file_ref = None
    if row["file_url"]:
        file_ref = FileRef(url=row["file_url"], mimeType=row["file_type"] or "", name=row["file_name"] or "")
    return Message(
        id=row["id"],
        conversationId=row["conversation_id"],
        senderId=row["sender_id"],
        content=row["content"],
        messageType=MessageType(row["message_type"]),
        file=file_ref,
        reactions=[Reaction(**item) for item in json.loads(row["reactions"])],
        status=MessageStatus(row["status"]),
        readBy=json.loads(row["read_by"]),
        isEdited=bool(row["is_edited"]),
        deletedAt=row["deleted_at"],
        replyTo=row["reply_to"],
        replySnippet=row["reply_snippet"] or "",
        replySenderName=row["reply_sender_name"] or "",
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


def _message_params(message: Message) -> List[Any]:
    return [
        message.conversationId,
        message.senderId,
        message.content,
        message.messageType.value,
        message.file.url if message.file else "",
        message.file.mimeType if message.file else "",
        message.file.name if message.file else "",
        json.dumps([reaction.model_dump() for reaction in message.reactions]),
        message.status.value,
        json.dumps(message.readBy),
        message.isEdited,
        message.deletedAt,
        message.replyTo,
        message.replySnippet,
        message.replySenderName,
        message.createdAt,
        message.updatedAt,
    ]


def _row_to_activity(row: dict) -> ActivityLogEntry:
    return ActivityLogEntry(
        id=row["id"],
        adminId=row["admin_id"],
        adminName=row["admin_name"],
        action=ActivityAction(row["action"]),
        targetType=row["target_type"],
        targetId=row["target_id"],
        targetName=row["target_name"] or "",
        details=row["details"] or "",
        timestamp=row["logged_at"],
    )


# =============================================================================
# Store
# =============================================================================


class ChatStore:
    """Singleton service persisting the chat core's records in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file (":memory:" in tests).
    """

    _instance: Optional["ChatStore"] = None
    _db_path: str = "chatcore.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Initialize the store, creating the schema if needed.

        Args:
            db_path: Path to the DuckDB file. Defaults to "chatcore.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "ChatStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
                Falls back to ``storage.db_path`` from the config.
        """
        if cls._instance is None:
            cls._instance = cls(db_path or get_config().storage.db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and forget the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create sequences and tables. Safe to call multiple times."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("CREATE SEQUENCE IF NOT EXISTS activity_logs_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR NOT NULL,
                full_name VARCHAR NOT NULL,
                email VARCHAR NOT NULL,
                password_hash VARCHAR NOT NULL,
                profile_picture_url VARCHAR,
                last_seen TIMESTAMP NOT NULL,
                created_at TIMESTAMP NOT NULL,
                created_by VARCHAR,
                deleted_at TIMESTAMP,
                deleted_by VARCHAR,
                is_banned BOOLEAN NOT NULL DEFAULT FALSE,
                ban_reason VARCHAR,
                banned_at TIMESTAMP,
                ban_expires_at TIMESTAMP,
                banned_by VARCHAR
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS admins (
                id VARCHAR NOT NULL,
                full_name VARCHAR NOT NULL,
                email VARCHAR NOT NULL,
                password_hash VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id VARCHAR NOT NULL,
                participants VARCHAR NOT NULL,
                is_group_chat BOOLEAN NOT NULL,
                group_name VARCHAR,
                group_picture_url VARCHAR,
                group_admins VARCHAR NOT NULL,
                last_message_id VARCHAR,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq'),
                id VARCHAR NOT NULL,
                conversation_id VARCHAR NOT NULL,
                sender_id VARCHAR,
                content VARCHAR,
                message_type VARCHAR NOT NULL,
                file_url VARCHAR,
                file_type VARCHAR,
                file_name VARCHAR,
                reactions VARCHAR NOT NULL,
                status VARCHAR NOT NULL,
                read_by VARCHAR NOT NULL,
                is_edited BOOLEAN NOT NULL,
                deleted_at TIMESTAMP,
                reply_to VARCHAR,
                reply_snippet VARCHAR,
                reply_sender_name VARCHAR,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS activity_logs (
                id INTEGER DEFAULT nextval('activity_logs_seq'),
                admin_id VARCHAR NOT NULL,
                admin_name VARCHAR NOT NULL,
                action VARCHAR NOT NULL,
                target_type VARCHAR NOT NULL,
                target_id VARCHAR NOT NULL,
                target_name VARCHAR,
                details VARCHAR,
                logged_at TIMESTAMP NOT NULL
            )
        """)

    def _call(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        with self._lock:
            try:
                return fn(self._get_connection())
            except duckdb.Error as exc:
                logger.error("Storage operation failed: %s", exc)
                raise StorageError("Storage is unavailable, please retry.") from exc

    async def _run(self, fn: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run *fn* with the connection on the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._call, fn)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # =========================================================================
    # Users
    # =========================================================================

    @staticmethod
    def _ensure_email_free(conn: duckdb.DuckDBPyConnection, email: str, user_id: str) -> None:
        taken = _fetch_one(
            conn,
            "SELECT id FROM users WHERE email = ? AND id <> ?",
            [email, user_id],
        )
        if taken:
            raise ConflictError("This email address is already in use.")

    async def create_user(self, user: User) -> User:
        """Insert *user*. Raises ConflictError if the email is taken."""
        def op(conn):
            self._ensure_email_free(conn, user.email, user.id)
            conn.execute(
                f"INSERT INTO users ({USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [user.id] + _user_params(user),
            )
            return user
        return await self._run(op)

    async def save_user(self, user: User) -> User:
        """Write every field of *user* back. Raises ConflictError on email clash."""
        def op(conn):
            self._ensure_email_free(conn, user.email, user.id)
            conn.execute(
                """
                UPDATE users SET full_name = ?, email = ?, password_hash = ?,
                    profile_picture_url = ?, last_seen = ?, created_at = ?, created_by = ?,
                    deleted_at = ?, deleted_by = ?, is_banned = ?, ban_reason = ?,
                    banned_at = ?, ban_expires_at = ?, banned_by = ?
                WHERE id = ?
                """,
                _user_params(user) + [user.id],
            )
            return user
        return await self._run(op)

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._run(
            lambda conn: _fetch_one(conn, f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", [user_id])
        )
        return _row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        row = await self._run(
            lambda conn: _fetch_one(
                conn, f"SELECT {USER_COLUMNS} FROM users WHERE email = ?", [email.strip().lower()]
            )
        )
        return _row_to_user(row) if row else None

    async def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        """Fetch several users at once, keyed by id. Unknown ids are skipped."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn, f"SELECT {USER_COLUMNS} FROM users WHERE id IN ({placeholders})", ids
            )
        )
        return {row["id"]: _row_to_user(row) for row in rows}

    async def missing_user_ids(self, user_ids: Iterable[str]) -> List[str]:
        """Return the ids in *user_ids* that have no user record, in input order."""
        ids = list(dict.fromkeys(user_ids))
        found = await self.get_users(ids)
        return [user_id for user_id in ids if user_id not in found]

    async def list_users(self, exclude_id: Optional[str] = None) -> List[User]:
        """Active (not soft-deleted) users, newest first."""
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn,
                f"""
                SELECT {USER_COLUMNS} FROM users
                WHERE deleted_at IS NULL AND id <> ?
                ORDER BY created_at DESC
                """,
                [exclude_id or ""],
            )
        )
        return [_row_to_user(row) for row in rows]

    async def list_active_users(self, offset: int, limit: int) -> Tuple[List[User], int]:
        """One page of users that are neither soft-deleted nor banned, plus the total."""
        where = "deleted_at IS NULL AND NOT is_banned"

        def op(conn):
            total = conn.execute(f"SELECT COUNT(*) FROM users WHERE {where}").fetchone()[0]
            rows = _fetch_dicts(
                conn,
                f"SELECT {USER_COLUMNS} FROM users WHERE {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                [limit, offset],
            )
            return rows, total
        rows, total = await self._run(op)
        return [_row_to_user(row) for row in rows], total

    async def list_banned_users(self) -> List[User]:
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn, f"SELECT {USER_COLUMNS} FROM users WHERE is_banned ORDER BY banned_at DESC"
            )
        )
        return [_row_to_user(row) for row in rows]

    async def list_deleted_users(self) -> List[User]:
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn,
                f"SELECT {USER_COLUMNS} FROM users WHERE deleted_at IS NOT NULL ORDER BY deleted_at DESC",
            )
        )
        return [_row_to_user(row) for row in rows]

    async def touch_last_seen(self, user_id: str, seen_at: Optional[datetime] = None) -> None:
        await self._run(
            lambda conn: conn.execute(
                "UPDATE users SET last_seen = ? WHERE id = ?", [seen_at or utcnow(), user_id]
            )
        )

    async def delete_user(self, user_id: str) -> Optional[User]:
        """Hard-delete a user. Messages and memberships are left untouched."""
        def op(conn):
            row = _fetch_one(conn, f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", [user_id])
            if row:
                conn.execute("DELETE FROM users WHERE id = ?", [user_id])
            return row
        row = await self._run(op)
        return _row_to_user(row) if row else None

    async def purge_deleted_users(self, deleted_before: datetime) -> int:
        """Hard-delete users soft-deleted at or before *deleted_before*."""
        def op(conn):
            count = conn.execute(
                "SELECT COUNT(*) FROM users WHERE deleted_at IS NOT NULL AND deleted_at <= ?",
                [deleted_before],
            ).fetchone()[0]
            if count:
                conn.execute(
                    "DELETE FROM users WHERE deleted_at IS NOT NULL AND deleted_at <= ?",
                    [deleted_before],
                )
            return count
        return await self._run(op)

    # =========================================================================
    # Admins
    # =========================================================================

    async def create_admin(self, admin: Admin) -> Admin:
        def op(conn):
            taken = _fetch_one(conn, "SELECT id FROM admins WHERE email = ?", [admin.email])
            if taken:
                raise ConflictError("An admin with this email already exists.")
            conn.execute(
                "INSERT INTO admins (id, full_name, email, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                [admin.id, admin.fullName, admin.email, admin.passwordHash, admin.createdAt],
            )
            return admin
        return await self._run(op)

    async def get_admin(self, admin_id: str) -> Optional[Admin]:
        row = await self._run(
            lambda conn: _fetch_one(conn, "SELECT * FROM admins WHERE id = ?", [admin_id])
        )
        return self._row_to_admin(row) if row else None

    async def get_admin_by_email(self, email: str) -> Optional[Admin]:
        row = await self._run(
            lambda conn: _fetch_one(conn, "SELECT * FROM admins WHERE email = ?", [email.strip().lower()])
        )
        return self._row_to_admin(row) if row else None

    @staticmethod
    def _row_to_admin(row: dict) -> Admin:
        return Admin(
            id=row["id"],
            fullName=row["full_name"],
            email=row["email"],
            passwordHash=row["password_hash"],
            createdAt=row["created_at"],
        )

    # =========================================================================
    # Conversations
    # =========================================================================

    async def insert_conversation(self, conversation: Conversation) -> Conversation:
        await self._run(lambda conn: _insert_conversation(conn, conversation))
        return conversation

    async def find_or_insert_one_to_one(self, conversation: Conversation) -> Tuple[Conversation, bool]:
        """Return the existing conversation for the pair, or insert *conversation*.

        Lookup and insert run in one locked call, so concurrent requests for
        the same pair always end up with a single conversation.

        Returns:
            ``(conversation, created)``.
        """
        user_a, user_b = conversation.participants

        def op(conn):
            existing = _select_one_to_one(conn, user_a, user_b)
            if existing is not None:
                return existing, False
            _insert_conversation(conn, conversation)
            return conversation, True
        return await self._run(op)

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """Write the structural fields of *conversation* back (last-write-wins)."""
        conversation.updatedAt = utcnow()
        await self._run(
            lambda conn: conn.execute(
                """
                UPDATE conversations SET participants = ?, is_group_chat = ?, group_name = ?,
                    group_picture_url = ?, group_admins = ?, updated_at = ?
                WHERE id = ?
                """,
                [
                    json.dumps(conversation.participants),
                    conversation.isGroupChat,
                    conversation.groupName,
                    conversation.groupPictureUrl,
                    json.dumps(conversation.groupAdmins),
                    conversation.updatedAt,
                    conversation.id,
                ],
            )
        )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        row = await self._run(
            lambda conn: _fetch_one(
                conn, f"SELECT {CONVERSATION_COLUMNS} FROM conversations WHERE id = ?", [conversation_id]
            )
        )
        return _row_to_conversation(row) if row else None

    async def find_one_to_one(self, user_a: str, user_b: str) -> Optional[Conversation]:
        """Find the non-group conversation whose participants are exactly {a, b}."""
        return await self._run(lambda conn: _select_one_to_one(conn, user_a, user_b))

    async def list_conversations_for(self, user_id: str) -> List[Conversation]:
        """Conversations *user_id* participates in, most recently active first."""
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn,
                f"""
                SELECT {CONVERSATION_COLUMNS} FROM conversations
                WHERE participants LIKE ?
                ORDER BY updated_at DESC
                """,
                [_member_pattern(user_id)],
            )
        )
        conversations = [_row_to_conversation(row) for row in rows]
        return [conv for conv in conversations if conv.is_participant(user_id)]

    async def list_conversations(self) -> List[Conversation]:
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn, f"SELECT {CONVERSATION_COLUMNS} FROM conversations ORDER BY updated_at DESC"
            )
        )
        return [_row_to_conversation(row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        def op(conn):
            exists = _fetch_one(conn, "SELECT id FROM conversations WHERE id = ?", [conversation_id])
            if exists:
                conn.execute("DELETE FROM conversations WHERE id = ?", [conversation_id])
            return exists is not None
        return await self._run(op)

    async def set_last_message(self, conversation_id: str, message_id: str) -> bool:
        """Point the conversation at its newest message. False if it no longer exists."""
        def op(conn):
            exists = _fetch_one(conn, "SELECT id FROM conversations WHERE id = ?", [conversation_id])
            if exists:
                conn.execute(
                    "UPDATE conversations SET last_message_id = ?, updated_at = ? WHERE id = ?",
                    [message_id, utcnow(), conversation_id],
                )
            return exists is not None
        return await self._run(op)

    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        """Messages not sent by *user_id* whose readBy does not contain them."""
        rows = await self._run(
            lambda conn: conn.execute(
                """
                SELECT read_by FROM messages
                WHERE conversation_id = ? AND (sender_id IS NULL OR sender_id <> ?)
                """,
                [conversation_id, user_id],
            ).fetchall()
        )
        return sum(1 for (read_by,) in rows if user_id not in json.loads(read_by))

    # =========================================================================
    # Messages
    # =========================================================================

    async def insert_message(self, message: Message) -> Message:
        await self._run(
            lambda conn: conn.execute(
                f"INSERT INTO messages ({MESSAGE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [message.id] + _message_params(message),
            )
        )
        return message

    async def update_reactions(
        self,
        message_id: str,
        change: Callable[[List[Reaction]], List[Reaction]],
    ) -> Optional[Message]:
        """Apply *change* to the message's current reactions and write them back.

        Only the ``reactions`` column is rewritten, and the read and the write
        happen in one locked call, so concurrent reactions and read receipts
        are never lost.

        Returns:
            The updated message, or None if it does not exist.
        """
        def op(conn):
            row = _fetch_one(conn, f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id])
            if row is None:
                return None
            message = _row_to_message(row)
            message.reactions = change(list(message.reactions))
            message.updatedAt = utcnow()
            conn.execute(
                "UPDATE messages SET reactions = ?, updated_at = ? WHERE id = ?",
                [json.dumps([r.model_dump() for r in message.reactions]), message.updatedAt, message_id],
            )
            return message
        return await self._run(op)

    async def update_content(
        self,
        message_id: str,
        content: str,
        *,
        edited: bool = False,
        deleted_at: Optional[datetime] = None,
        clear_file: bool = False,
        clear_reactions: bool = False,
    ) -> Optional[Message]:
        """Overwrite a message's content for an edit, delete or moderation.

        Delivery status and ``readBy`` are left untouched.

        Returns:
            The updated message, or None if it does not exist.
        """
        assignments = ["content = ?", "updated_at = ?"]
        params: List[Any] = [content, utcnow()]
        if edited:
            assignments.append("is_edited = TRUE")
        if deleted_at is not None:
            assignments.append("deleted_at = ?")
            params.append(deleted_at)
        if clear_file:
            assignments.append("file_url = '', file_type = '', file_name = ''")
        if clear_reactions:
            assignments.append("reactions = '[]'")

        def op(conn):
            conn.execute(f"UPDATE messages SET {', '.join(assignments)} WHERE id = ?", params + [message_id])
            row = _fetch_one(conn, f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id])
            return _row_to_message(row) if row else None
        return await self._run(op)

    async def update_message_status(self, message_id: str, status: MessageStatus) -> None:
        await self._run(
            lambda conn: conn.execute(
                "UPDATE messages SET status = ?, updated_at = ? WHERE id = ?",
                [status.value, utcnow(), message_id],
            )
        )

    async def get_message(self, message_id: str) -> Optional[Message]:
        row = await self._run(
            lambda conn: _fetch_one(conn, f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id])
        )
        return _row_to_message(row) if row else None

    async def get_messages(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        ids = [message_id for message_id in dict.fromkeys(message_ids) if message_id]
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn, f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id IN ({placeholders})", ids
            )
        )
        return {row["id"]: _row_to_message(row) for row in rows}

    async def list_messages(self, conversation_id: str, offset: int, limit: int) -> List[Message]:
        """One page of a conversation's history, newest first."""
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn,
                f"""
                SELECT {MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ?
                ORDER BY seq DESC
                LIMIT ? OFFSET ?
                """,
                [conversation_id, limit, offset],
            )
        )
        return [_row_to_message(row) for row in rows]

    async def search_messages(self, conversation_id: str, query: str) -> List[Message]:
        """Case-insensitive substring search over non-deleted messages, newest first."""
        rows = await self._run(
            lambda conn: _fetch_dicts(
                conn,
                f"""
                SELECT {MESSAGE_COLUMNS} FROM messages
                WHERE conversation_id = ? AND deleted_at IS NULL
                    AND content IS NOT NULL AND contains(lower(content), ?)
                ORDER BY seq DESC
                """,
                [conversation_id, query.lower()],
            )
        )
        return [_row_to_message(row) for row in rows]

    async def mark_read(self, conversation_id: str, reader_id: str) -> int:
        """Mark the conversation's messages as read by *reader_id*.

        Every message not sent by the reader that is either not yet
        ``status = read`` or does not list the reader in ``readBy`` gets
        ``status = read`` and the reader added to ``readBy``. Both updates
        are idempotent, so a repeated call modifies nothing.

        Returns:
            Number of messages modified.
        """
        def op(conn):
            rows = conn.execute(
                """
                SELECT id, status, read_by FROM messages
                WHERE conversation_id = ? AND (sender_id IS NULL OR sender_id <> ?)
                """,
                [conversation_id, reader_id],
            ).fetchall()
            now = utcnow()
            modified = 0
            for message_id, status, read_by in rows:
                readers = json.loads(read_by)
                if status == MessageStatus.READ.value and reader_id in readers:
                    continue
                if reader_id not in readers:
                    readers.append(reader_id)
                conn.execute(
                    "UPDATE messages SET status = ?, read_by = ?, updated_at = ? WHERE id = ?",
                    [MessageStatus.READ.value, json.dumps(readers), now, message_id],
                )
                modified += 1
            return modified
        return await self._run(op)

    # =========================================================================
    # Activity log
    # =========================================================================

    async def log_activity(self, entry: ActivityLogEntry) -> ActivityLogEntry:
        """Append *entry* and return it with its assigned id."""
        def op(conn):
            return conn.execute(
                """
                INSERT INTO activity_logs
                    (admin_id, admin_name, action, target_type, target_id, target_name, details, logged_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                [
                    entry.adminId,
                    entry.adminName,
                    entry.action.value,
                    entry.targetType,
                    entry.targetId,
                    entry.targetName,
                    entry.details,
                    entry.timestamp,
                ],
            ).fetchone()[0]
        entry_id = await self._run(op)
        return entry.model_copy(update={"id": entry_id})

    async def list_activity(
        self,
        search: Optional[str],
        offset: int,
        limit: int,
    ) -> Tuple[List[ActivityLogEntry], int]:
        """One page of activity entries (newest first) plus the matching total.

        *search* matches admin name, action or target name, case-insensitively.
        """
        where = "TRUE"
        params: List[Any] = []
        if search:
            term = search.lower()
            where = (
                "contains(lower(admin_name), ?) OR contains(lower(action), ?) "
                "OR contains(lower(coalesce(target_name, '')), ?)"
            )
            params = [term, term, term]

        def op(conn):
            total = conn.execute(f"SELECT COUNT(*) FROM activity_logs WHERE {where}", params).fetchone()[0]
            rows = _fetch_dicts(
                conn,
                f"""
                SELECT {ACTIVITY_COLUMNS} FROM activity_logs
                WHERE {where}
                ORDER BY logged_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                params + [limit, offset],
            )
            return rows, total
        rows, total = await self._run(op)
        return [_row_to_activity(row) for row in rows], total
