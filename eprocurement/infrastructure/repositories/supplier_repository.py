from __future__ import annotations

from typing import Iterable

from eprocurement.infrastructure.repositories.base import BaseRepository


class SupplierRepository(BaseRepository):
    def get_by_id(self, db, supplier_id: int) -> dict | None:
        row = db.execute("SELECT * FROM suppliers WHERE id = ? LIMIT 1", (supplier_id,)).fetchone()
        return self.row_to_dict(row)

    def get_active_by_contact_email(self, db, email: str) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM suppliers
            WHERE LOWER(contact_email) = ? AND is_active = 1
            ORDER BY id
            LIMIT 1
            """,
            ((email or "").strip().lower(),),
        ).fetchone()
        return self.row_to_dict(row)

    def list_active(self, db) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, name, contact_name, contact_email, contact_phone, contract_fee_percentage,
                   total_invitations, total_awards
            FROM suppliers
            WHERE is_active = 1
            ORDER BY name, id
            """
        ).fetchall()
        return self.rows_to_dicts(rows)

    def active_ids(self, db, supplier_ids: Iterable[int]) -> set[int]:
        ids = list(supplier_ids)
        if not ids:
            return set()
        rows = db.execute(
            f"SELECT id FROM suppliers WHERE is_active = 1 AND id IN ({self.placeholders(ids)})",
            tuple(ids),
        ).fetchall()
        return {int(row["id"]) for row in rows}

    def contact_emails(self, db, supplier_ids: Iterable[int]) -> list[str]:
        ids = list(supplier_ids)
        if not ids:
            return []
        rows = db.execute(
            f"SELECT contact_email FROM suppliers WHERE id IN ({self.placeholders(ids)}) ORDER BY id",
            tuple(ids),
        ).fetchall()
        return [str(row["contact_email"]) for row in rows if row["contact_email"]]

    def create(
        self,
        db,
        *,
        name: str,
        contact_email: str | None,
        contract_fee_percentage: float = 0.0,
        contact_name: str | None = None,
        contact_phone: str | None = None,
        is_active: bool = True,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO suppliers (name, contact_name, contact_email, contact_phone, contract_fee_percentage, is_active)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                name,
                contact_name,
                (contact_email or "").strip().lower() or None,
                contact_phone,
                float(contract_fee_percentage or 0),
                1 if is_active else 0,
            ),
        )
        return self.inserted_id(cursor)

    def increment_invitations(self, db, supplier_ids: Iterable[int]) -> None:
        for supplier_id in supplier_ids:
            db.execute(
                """
                UPDATE suppliers
                SET total_invitations = total_invitations + 1, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (supplier_id,),
            )

    def decrement_invitations(self, db, supplier_ids: Iterable[int]) -> None:
        for supplier_id in supplier_ids:
            db.execute(
                """
                UPDATE suppliers
                SET total_invitations = CASE WHEN total_invitations > 0 THEN total_invitations - 1 ELSE 0 END,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (supplier_id,),
            )

    def increment_awards(self, db, supplier_id: int) -> None:
        db.execute(
            """
            UPDATE suppliers
            SET total_awards = total_awards + 1, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (supplier_id,),
        )
