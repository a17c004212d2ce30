from __future__ import annotations

from eprocurement.infrastructure.repositories.base import BaseRepository, utc_now_iso


class InvitationRepository(BaseRepository):
    def existing_supplier_ids(self, db, request_id: int) -> set[int]:
        rows = db.execute(
            "SELECT supplier_id FROM request_invitations WHERE request_id = ?",
            (request_id,),
        ).fetchall()
        return {int(row["supplier_id"]) for row in rows}

    def create(self, db, request_id: int, supplier_id: int) -> int:
        cursor = db.execute(
            """
            INSERT INTO request_invitations (request_id, supplier_id, invited_at)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (request_id, supplier_id, utc_now_iso()),
        )
        return self.inserted_id(cursor)

    def exists(self, db, request_id: int, supplier_id: int) -> bool:
        row = db.execute(
            """
            SELECT 1
            FROM request_invitations
            WHERE request_id = ? AND supplier_id = ?
            LIMIT 1
            """,
            (request_id, supplier_id),
        ).fetchone()
        return row is not None

    def list_for_request(self, db, request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT i.id, i.request_id, i.supplier_id, i.invited_at, i.notified_at,
                   s.name AS supplier_name, s.contact_email, s.contract_fee_percentage
            FROM request_invitations i
            JOIN suppliers s ON s.id = i.supplier_id
            WHERE i.request_id = ?
            ORDER BY s.name, i.id
            """,
            (request_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_supplier(self, db, supplier_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT i.id, i.request_id, i.invited_at, i.notified_at,
                   r.request_number, r.title, r.description, r.event_type, r.status,
                   r.current_round, r.max_rounds, r.round_status, r.round_deadline,
                   (
                       SELECT pr.status
                       FROM proposals pr
                       WHERE pr.request_id = r.id
                         AND pr.supplier_id = i.supplier_id
                         AND pr.round_number = r.current_round
                       LIMIT 1
                   ) AS current_proposal_status
            FROM request_invitations i
            JOIN requests r ON r.id = i.request_id
            WHERE i.supplier_id = ?
              AND r.status IN ('active', 'evaluation', 'awarded')
            ORDER BY r.id DESC
            """,
            (supplier_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def delete_for_suppliers(self, db, request_id: int, supplier_ids: list[int]) -> None:
        if not supplier_ids:
            return
        db.execute(
            f"DELETE FROM request_invitations WHERE request_id = ? AND supplier_id IN ({self.placeholders(supplier_ids)})",
            (request_id, *supplier_ids),
        )

    def supplier_ids_for_request(self, db, request_id: int) -> list[int]:
        return sorted(self.existing_supplier_ids(db, request_id))

    def mark_notified(self, db, request_id: int) -> None:
        db.execute(
            """
            UPDATE request_invitations
            SET notified_at = ?
            WHERE request_id = ? AND notified_at IS NULL
            """,
            (utc_now_iso(), request_id),
        )

    def count_active_for_supplier(self, db, supplier_id: int) -> int:
        row = db.execute(
            """
            SELECT COUNT(*) AS total
            FROM request_invitations i
            JOIN requests r ON r.id = i.request_id
            WHERE i.supplier_id = ? AND r.status IN ('active', 'evaluation')
            """,
            (supplier_id,),
        ).fetchone()
        return int(row["total"] or 0) if row else 0
