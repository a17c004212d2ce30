from __future__ import annotations

from typing import Iterable

from eprocurement.infrastructure.repositories.base import BaseRepository


class ProfileRepository(BaseRepository):
    def get_by_id(self, db, profile_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, email, full_name, role, phone, area, is_active, created_at
            FROM users_profile
            WHERE id = ?
            LIMIT 1
            """,
            (profile_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def get_by_email(self, db, email: str) -> dict | None:
        row = db.execute(
            """
            SELECT id, email, full_name, role, password_hash, is_active
            FROM users_profile
            WHERE LOWER(email) = ?
            LIMIT 1
            """,
            ((email or "").strip().lower(),),
        ).fetchone()
        return self.row_to_dict(row)

    def create(
        self,
        db,
        *,
        email: str,
        full_name: str,
        role: str,
        password_hash: str | None = None,
        phone: str | None = None,
        area: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO users_profile (email, full_name, role, password_hash, phone, area)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            ((email or "").strip().lower(), full_name, role, password_hash, phone, area),
        )
        return self.inserted_id(cursor)

    def list_ids_by_roles(self, db, roles: Iterable[str]) -> list[int]:
        role_list = list(roles)
        if not role_list:
            return []
        rows = db.execute(
            f"""
            SELECT id
            FROM users_profile
            WHERE is_active = 1 AND role IN ({self.placeholders(role_list)})
            ORDER BY id
            """,
            tuple(role_list),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def list_ids_by_emails(self, db, emails: Iterable[str]) -> list[int]:
        email_list = sorted({(email or "").strip().lower() for email in emails if email})
        if not email_list:
            return []
        rows = db.execute(
            f"""
            SELECT id
            FROM users_profile
            WHERE is_active = 1 AND LOWER(email) IN ({self.placeholders(email_list)})
            ORDER BY id
            """,
            tuple(email_list),
        ).fetchall()
        return [int(row["id"]) for row in rows]
