"""SQLite storage backend with WAL mode."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from contentos.storage.base import StorageBackend

logger = logging.getLogger(__name__)

# Column whitelists per table for UPDATE statements
_ALLOWED_COLUMNS: dict[str, set[str]] = {
    "users": {"email", "name", "role", "updated_at"},
    "content_cards": {
        "stage_id",
        "title",
        "description",
        "content",
        "content_type",
        "priority",
        "status",
        "assigned_to",
        "due_date",
        "position",
        "tags",
        "updated_at",
    },
    "card_checklist_items": {"is_completed", "completed_at", "completed_by", "updated_at"},
}

_JSON_FIELDS = ("tags", "mentions", "changed_fields", "metadata", "content_pillars")
_BOOL_FIELDS = ("is_client", "is_read", "is_completed")

_CLIENT_COLUMNS = ("client_company_name", "industry", "contact_email")

_CARD_SELECT = """
    SELECT content_cards.*, stages.name AS stage_name FROM content_cards
    LEFT JOIN stages ON stages.id = content_cards.stage_id
"""


def _validate_update_keys(table: str, updates: dict[str, Any]) -> dict[str, Any]:
    """Filter update dict to only allowed column names."""
    allowed = _ALLOWED_COLUMNS.get(table, set())
    filtered = {k: v for k, v in updates.items() if k in allowed}
    rejected = set(updates.keys()) - allowed - {"id"}
    if rejected:
        logger.warning("Rejected invalid column names for %s: %s", table, rejected)
    return filtered


class SQLiteStore(StorageBackend):
    """SQLite-based storage for users, teams, cards and their activity."""

    def __init__(self, db_path: Path, *, wal_mode: bool = True) -> None:
        self.db_path = db_path
        self.wal_mode = wal_mode
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and apply schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        if self.wal_mode:
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.executescript(_load_sql("contentos.sql"))
        await self._db.commit()
        logger.info("Initialized SQLite store at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self._db

    async def _update(
        self, table: str, row_id: str, updates: dict[str, Any]
    ) -> bool:
        updates = _validate_update_keys(table, updates)
        updates = _serialize_json_fields(updates, list(_JSON_FIELDS))
        if not updates:
            return False
        set_clauses = [f"{key} = ?" for key in updates]
        values = [*updates.values(), row_id]
        await self.db.execute(
            f"UPDATE {table} SET {', '.join(set_clauses)} WHERE id = ?",
            values,
        )
        await self.db.commit()
        return True

    # --- Users ---

    async def insert_user(self, user: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO users (id, email, name, role, created_at, updated_at)
               VALUES (:id, :email, :name, :role, :created_at, :updated_at)""",
            user,
        )
        await self.db.commit()
        return user

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT * FROM users WHERE lower(email) = lower(?)", (email,)
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_users(self, *, role: str | None = None) -> list[dict[str, Any]]:
        if role:
            cursor = await self.db.execute(
                "SELECT * FROM users WHERE role = ? ORDER BY created_at", (role,)
            )
        else:
            cursor = await self.db.execute("SELECT * FROM users ORDER BY created_at")
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def count_users(self, *, role: str | None = None) -> int:
        if role:
            cursor = await self.db.execute("SELECT COUNT(*) FROM users WHERE role = ?", (role,))
        else:
            cursor = await self.db.execute("SELECT COUNT(*) FROM users")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        existing = await self.get_user(user_id)
        if not existing:
            return None
        if not await self._update("users", user_id, updates):
            return existing
        return await self.get_user(user_id)

    async def delete_user(self, user_id: str) -> bool:
        cursor = await self.db.execute("DELETE FROM users WHERE id = ?", (user_id,))
        await self.db.commit()
        return cursor.rowcount > 0

    # --- Teams and stages ---

    async def insert_team(self, team: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO teams (id, name, description, is_client, client_company_name,
               industry, contact_email, created_by, created_at)
               VALUES (:id, :name, :description, :is_client, :client_company_name,
               :industry, :contact_email, :created_by, :created_at)""",
            {**dict.fromkeys(_CLIENT_COLUMNS), **team},
        )
        await self.db.commit()
        return team

    async def get_team(self, team_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM teams WHERE id = ?", (team_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_teams(self, *, is_client: bool | None = None) -> list[dict[str, Any]]:
        if is_client is None:
            cursor = await self.db.execute("SELECT * FROM teams ORDER BY created_at")
        else:
            cursor = await self.db.execute(
                "SELECT * FROM teams WHERE is_client = ? ORDER BY created_at",
                (int(is_client),),
            )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def insert_client_profile(self, profile: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO client_profiles (team_id, brand_bio, brand_voice, target_audience,
               content_pillars, style_guidelines, performance_goals, created_at)
               VALUES (:team_id, :brand_bio, :brand_voice, :target_audience,
               :content_pillars, :style_guidelines, :performance_goals, :created_at)""",
            _serialize_json_fields(profile, ["content_pillars"]),
        )
        await self.db.commit()
        return profile

    async def get_client_profile(self, team_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT * FROM client_profiles WHERE team_id = ?", (team_id,)
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_teams_for_user(self, user_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            """SELECT teams.* FROM teams
               JOIN team_members ON team_members.team_id = teams.id
               WHERE team_members.user_id = ?
               ORDER BY teams.created_at""",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def add_team_member(self, team_id: str, user_id: str) -> None:
        await self.db.execute(
            """INSERT OR IGNORE INTO team_members (team_id, user_id, joined_at)
               VALUES (?, ?, datetime('now'))""",
            (team_id, user_id),
        )
        await self.db.commit()

    async def list_team_members(self, team_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            """SELECT users.* FROM users
               JOIN team_members ON team_members.user_id = users.id
               WHERE team_members.team_id = ?
               ORDER BY team_members.joined_at""",
            (team_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def is_team_member(self, team_id: str, user_id: str) -> bool:
        cursor = await self.db.execute(
            "SELECT 1 FROM team_members WHERE team_id = ? AND user_id = ?",
            (team_id, user_id),
        )
        return await cursor.fetchone() is not None

    async def insert_stage(self, stage: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO stages (id, team_id, name, description, position, color, created_at)
               VALUES (:id, :team_id, :name, :description, :position, :color, :created_at)""",
            stage,
        )
        await self.db.commit()
        return stage

    async def get_stage(self, stage_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM stages WHERE id = ?", (stage_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_stages(self, team_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM stages WHERE team_id = ? ORDER BY position", (team_id,)
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    # --- Cards ---

    async def insert_card(self, card: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO content_cards (id, team_id, stage_id, title, description,
               content, content_type, priority, status, assigned_to, created_by,
               due_date, position, tags, created_at, updated_at)
               VALUES (:id, :team_id, :stage_id, :title, :description,
               :content, :content_type, :priority, :status, :assigned_to, :created_by,
               :due_date, :position, :tags, :created_at, :updated_at)""",
            _serialize_json_fields(card, ["tags"]),
        )
        await self.db.commit()
        return card

    async def get_card(self, card_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            f"{_CARD_SELECT} WHERE content_cards.id = ?", (card_id,)
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_cards(
        self, team_id: str, *, stage_id: str | None = None
    ) -> list[dict[str, Any]]:
        conditions = ["content_cards.team_id = ?"]
        params: list[Any] = [team_id]
        if stage_id:
            conditions.append("content_cards.stage_id = ?")
            params.append(stage_id)
        where = " AND ".join(conditions)
        cursor = await self.db.execute(
            f"""{_CARD_SELECT} WHERE {where}
                ORDER BY stages.position, content_cards.position NULLS LAST,
                content_cards.created_at""",
            params,
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def update_card(self, card_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        existing = await self.get_card(card_id)
        if not existing:
            return None
        if not await self._update("content_cards", card_id, updates):
            return existing
        return await self.get_card(card_id)

    async def delete_card(self, card_id: str) -> bool:
        cursor = await self.db.execute("DELETE FROM content_cards WHERE id = ?", (card_id,))
        await self.db.commit()
        return cursor.rowcount > 0

    async def next_card_position(self, stage_id: str) -> int:
        cursor = await self.db.execute(
            "SELECT COALESCE(MAX(position), 0) FROM content_cards WHERE stage_id = ?",
            (stage_id,),
        )
        row = await cursor.fetchone()
        return (row[0] if row else 0) + 1

    # --- Comments ---

    async def insert_comment(self, comment: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO comments (id, card_id, user_id, content, mentions,
               parent_comment_id, created_at, updated_at)
               VALUES (:id, :card_id, :user_id, :content, :mentions,
               :parent_comment_id, :created_at, :updated_at)""",
            _serialize_json_fields(comment, ["mentions"]),
        )
        await self.db.commit()
        return comment

    async def get_comment(self, comment_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute("SELECT * FROM comments WHERE id = ?", (comment_id,))
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_comments(self, card_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM comments WHERE card_id = ? ORDER BY created_at", (card_id,)
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def delete_comment(self, comment_id: str) -> bool:
        cursor = await self.db.execute("DELETE FROM comments WHERE id = ?", (comment_id,))
        await self.db.commit()
        return cursor.rowcount > 0

    async def list_mentions(self, user_id: str, *, limit: int = 50) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            """SELECT comments.*, content_cards.title AS card_title,
               content_cards.team_id AS team_id, stages.name AS stage_name,
               users.name AS author_name
               FROM comments
               JOIN content_cards ON content_cards.id = comments.card_id
               LEFT JOIN stages ON stages.id = content_cards.stage_id
               LEFT JOIN users ON users.id = comments.user_id
               WHERE EXISTS (
                   SELECT 1 FROM json_each(comments.mentions) WHERE json_each.value = ?
               )
               ORDER BY comments.created_at DESC, comments.rowid DESC
               LIMIT ?""",
            (user_id, limit),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    # --- Checklists ---

    async def insert_checklist_item(self, item: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO card_checklist_items (id, card_id, title, description, position,
               is_completed, completed_at, completed_by, created_at, updated_at)
               VALUES (:id, :card_id, :title, :description, :position,
               :is_completed, :completed_at, :completed_by, :created_at, :updated_at)""",
            item,
        )
        await self.db.commit()
        return item

    async def get_checklist_item(self, item_id: str) -> dict[str, Any] | None:
        cursor = await self.db.execute(
            "SELECT * FROM card_checklist_items WHERE id = ?", (item_id,)
        )
        row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_checklist_items(self, card_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            """SELECT * FROM card_checklist_items WHERE card_id = ?
               ORDER BY position, created_at""",
            (card_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def update_checklist_item(
        self, item_id: str, updates: dict[str, Any]
    ) -> dict[str, Any] | None:
        existing = await self.get_checklist_item(item_id)
        if not existing:
            return None
        if not await self._update("card_checklist_items", item_id, updates):
            return existing
        return await self.get_checklist_item(item_id)

    async def delete_checklist_item(self, item_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM card_checklist_items WHERE id = ?", (item_id,)
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def next_checklist_position(self, card_id: str) -> int:
        cursor = await self.db.execute(
            "SELECT MAX(position) FROM card_checklist_items WHERE card_id = ?", (card_id,)
        )
        row = await cursor.fetchone()
        return 0 if row is None or row[0] is None else row[0] + 1

    # --- Assignments ---

    async def insert_assignment(self, assignment: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO card_assignments (id, card_id, user_id, assigned_by, created_at)
               VALUES (:id, :card_id, :user_id, :assigned_by, :created_at)""",
            assignment,
        )
        await self.db.commit()
        return assignment

    async def list_assignments(self, card_id: str) -> list[dict[str, Any]]:
        cursor = await self.db.execute(
            "SELECT * FROM card_assignments WHERE card_id = ? ORDER BY created_at",
            (card_id,),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def delete_assignment(self, card_id: str, user_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM card_assignments WHERE card_id = ? AND user_id = ?",
            (card_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    # --- Notifications ---

    async def insert_notification(self, notification: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO notifications (id, user_id, type, title, message,
               related_card_id, related_comment_id, is_read, created_at)
               VALUES (:id, :user_id, :type, :title, :message,
               :related_card_id, :related_comment_id, :is_read, :created_at)""",
            notification,
        )
        await self.db.commit()
        return notification

    async def list_notifications(
        self, user_id: str, *, unread_only: bool = False, limit: int = 20, offset: int = 0
    ) -> list[dict[str, Any]]:
        where = "user_id = ?" + (" AND is_read = 0" if unread_only else "")
        cursor = await self.db.execute(
            f"""SELECT * FROM notifications WHERE {where}
                ORDER BY created_at DESC LIMIT ? OFFSET ?""",
            (user_id, limit, offset),
        )
        rows = await cursor.fetchall()
        return [_row_to_dict(row) for row in rows]

    async def count_unread_notifications(self, user_id: str) -> int:
        cursor = await self.db.execute(
            "SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def mark_notification_read(self, notification_id: str, user_id: str) -> bool:
        cursor = await self.db.execute(
            "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
            (notification_id, user_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def mark_all_notifications_read(self, user_id: str) -> int:
        cursor = await self.db.execute(
            "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0",
            (user_id,),
        )
        await self.db.commit()
        return cursor.rowcount

    # --- Audit log ---

    async def insert_audit_log(self, entry: dict[str, Any]) -> dict[str, Any]:
        await self.db.execute(
            """INSERT INTO audit_logs (id, entity_type, entity_id, action, user_id,
               team_id, changed_fields, metadata, created_at)
               VALUES (:id, :entity_type, :entity_id, :action, :user_id,
               :team_id, :changed_fields, :metadata, :created_at)""",
            _serialize_json_fields(entry, ["changed_fields", "metadata"]),
        )
        await self.db.commit()
        return entry

    async def query_audit_logs(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        team_id: str | None = None,
        action: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        conditions: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("entity_type", entity_type),
            ("entity_id", entity_id),
            ("team_id", team_id),
            ("action", action),
            ("user_id", user_id),
        ):
            if value:
                conditions.append(f"audit_logs.{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        cursor = await self.db.execute(
            f"""SELECT audit_logs.*, users.name AS user_name FROM audit_logs
                LEFT JOIN users ON users.id = audit_logs.user_id
                {where}
                ORDER BY audit_logs.created_at DESC, audit_logs.rowid DESC
                LIMIT ? OFFSET ?""",
            [*params, limit, offset],
        )
        rows = await cursor.fetchall()

        cursor = await self.db.execute(f"SELECT COUNT(*) FROM audit_logs {where}", params)
        count_row = await cursor.fetchone()
        total = count_row[0] if count_row else 0
        return [_row_to_dict(row) for row in rows], total

    # --- Stats ---

    async def get_stats(self) -> dict[str, Any]:
        counts: dict[str, Any] = {}
        for table in ("users", "teams", "stages", "content_cards", "comments", "audit_logs"):
            cursor = await self.db.execute(f"SELECT COUNT(*) FROM {table}")
            row = await cursor.fetchone()
            counts[table] = row[0] if row else 0

        cursor = await self.db.execute("SELECT role, COUNT(*) AS count FROM users GROUP BY role")
        rows = await cursor.fetchall()
        counts["roles"] = {row["role"]: row["count"] for row in rows}
        counts["db_path"] = str(self.db_path)
        return counts


# --- Helpers ---


def _load_sql(filename: str) -> str:
    """Load SQL file from the schema package."""
    schema_dir = Path(__file__).parent.parent / "schema"
    return (schema_dir / filename).read_text()


def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    """Convert an aiosqlite Row to a dict, deserializing JSON and flag fields."""
    d = dict(row)
    for key in _JSON_FIELDS:
        if key in d and isinstance(d[key], str):
            try:
                d[key] = json.loads(d[key])
            except (json.JSONDecodeError, TypeError):
                pass
    for key in _BOOL_FIELDS:
        if key in d and d[key] is not None:
            d[key] = bool(d[key])
    return d


def _serialize_json_fields(data: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    """Serialize dict/list fields to JSON strings for SQLite storage."""
    result = dict(data)
    for field in fields:
        if field in result and not isinstance(result[field], str) and result[field] is not None:
            result[field] = json.dumps(result[field])
    return result
