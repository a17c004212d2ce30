from __future__ import annotations

from eprocurement.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        user_id: int,
        title: str,
        message: str,
        notification_type: str,
        related_id: int | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (user_id, title, message, type, related_id, is_read)
            VALUES (?, ?, ?, ?, ?, 0)
            RETURNING id
            """,
            (user_id, title, message, notification_type, related_id),
        )
        return self.inserted_id(cursor)

    def list_for_user(self, db, user_id: int, *, limit: int = 50) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, user_id, title, message, type, related_id, is_read, created_at
            FROM notifications
            WHERE user_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def unread_count(self, db, user_id: int) -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM notifications WHERE user_id = ? AND is_read = 0",
            (user_id,),
        ).fetchone()
        return int(row["total"] or 0) if row else 0

    def get_by_id(self, db, notification_id: int) -> dict | None:
        row = db.execute(
            "SELECT id, user_id, is_read FROM notifications WHERE id = ? LIMIT 1",
            (notification_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def mark_read(self, db, notification_id: int) -> None:
        db.execute("UPDATE notifications SET is_read = 1 WHERE id = ?", (notification_id,))

    def mark_all_read(self, db, user_id: int) -> None:
        db.execute("UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0", (user_id,))
