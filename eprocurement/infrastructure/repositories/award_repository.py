from __future__ import annotations

from eprocurement.infrastructure.repositories.base import BaseRepository, utc_now_iso


_SELECTION_COLUMNS = """
    s.id, s.request_id, s.selected_proposal_id, s.selected_supplier_id, s.selected_amount,
    s.is_lowest_price, s.creator_justification, s.selected_by, s.selected_at, s.status,
    s.approved_by, s.approved_at, s.approval_notes
"""


class AwardRepository(BaseRepository):
    def get_selection(self, db, selection_id: int) -> dict | None:
        row = db.execute(
            f"SELECT {_SELECTION_COLUMNS} FROM award_selections s WHERE s.id = ? LIMIT 1",
            (selection_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def get_selection_by_request(self, db, request_id: int) -> dict | None:
        row = db.execute(
            f"SELECT {_SELECTION_COLUMNS} FROM award_selections s WHERE s.request_id = ? LIMIT 1",
            (request_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def upsert_selection(
        self,
        db,
        *,
        request_id: int,
        proposal_id: int,
        supplier_id: int,
        amount: float,
        is_lowest_price: bool,
        justification: str | None,
        selected_by: int,
    ) -> int:
        existing = self.get_selection_by_request(db, request_id)
        selected_at = utc_now_iso()
        if existing:
            db.execute(
                """
                UPDATE award_selections
                SET selected_proposal_id = ?, selected_supplier_id = ?, selected_amount = ?,
                    is_lowest_price = ?, creator_justification = ?, selected_by = ?, selected_at = ?,
                    status = 'pending_approval', approved_by = NULL, approved_at = NULL, approval_notes = NULL
                WHERE id = ?
                """,
                (
                    proposal_id,
                    supplier_id,
                    amount,
                    1 if is_lowest_price else 0,
                    justification,
                    selected_by,
                    selected_at,
                    existing["id"],
                ),
            )
            return int(existing["id"])

        cursor = db.execute(
            """
            INSERT INTO award_selections (
                request_id, selected_proposal_id, selected_supplier_id, selected_amount, is_lowest_price,
                creator_justification, selected_by, selected_at, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending_approval')
            RETURNING id
            """,
            (
                request_id,
                proposal_id,
                supplier_id,
                amount,
                1 if is_lowest_price else 0,
                justification,
                selected_by,
                selected_at,
            ),
        )
        return self.inserted_id(cursor)

    def decide_selection(
        self,
        db,
        selection_id: int,
        *,
        status: str,
        decided_by: int,
        notes: str | None,
    ) -> None:
        db.execute(
            """
            UPDATE award_selections
            SET status = ?, approved_by = ?, approved_at = ?, approval_notes = ?
            WHERE id = ?
            """,
            (status, decided_by, utc_now_iso(), notes, selection_id),
        )

    def list_selections(self, db, *, status: str = "pending_approval") -> list[dict]:
        rows = db.execute(
            f"""
            SELECT {_SELECTION_COLUMNS}, r.request_number, r.title AS request_title, r.internal_budget,
                   r.current_round, sp.name AS supplier_name, p.full_name AS selected_by_name
            FROM award_selections s
            JOIN requests r ON r.id = s.request_id
            JOIN suppliers sp ON sp.id = s.selected_supplier_id
            LEFT JOIN users_profile p ON p.id = s.selected_by
            WHERE s.status = ?
            ORDER BY s.selected_at DESC, s.id DESC
            """,
            (status,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def count_selections(self, db, *, status: str = "pending_approval") -> int:
        row = db.execute(
            "SELECT COUNT(*) AS total FROM award_selections WHERE status = ?",
            (status,),
        ).fetchone()
        return int(row["total"] or 0) if row else 0

    def create_award(
        self,
        db,
        *,
        selection: dict,
        justification: str | None,
        awarded_by: int,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO awards (
                award_selection_id, request_id, winning_proposal_id, winning_supplier_id, awarded_amount,
                is_lowest_price, justification, awarded_by, awarded_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                selection["id"],
                selection["request_id"],
                selection["selected_proposal_id"],
                selection["selected_supplier_id"],
                selection["selected_amount"],
                1 if selection.get("is_lowest_price") else 0,
                justification,
                awarded_by,
                utc_now_iso(),
            ),
        )
        return self.inserted_id(cursor)

    def get_award(self, db, award_id: int) -> dict | None:
        row = db.execute("SELECT * FROM awards WHERE id = ? LIMIT 1", (award_id,)).fetchone()
        return self.row_to_dict(row)

    def get_award_by_selection(self, db, selection_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM awards WHERE award_selection_id = ? LIMIT 1",
            (selection_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def get_award_by_request(self, db, request_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM awards WHERE request_id = ? ORDER BY id DESC LIMIT 1",
            (request_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def count_awards_for_request(self, db, request_id: int) -> int:
        row = db.execute("SELECT COUNT(*) AS total FROM awards WHERE request_id = ?", (request_id,)).fetchone()
        return int(row["total"] or 0) if row else 0
