from __future__ import annotations

from typing import Any, Iterable

from eprocurement.infrastructure.repositories.base import BaseRepository


_REQUEST_COLUMNS = """
    r.id, r.request_number, r.creator_id, r.event_type, r.title, r.description, r.internal_budget,
    r.status, r.max_rounds, r.current_round, r.round_status, r.round_deadline, r.approved_by,
    r.approved_at, r.approval_comments, r.cancel_reason, r.created_at, r.updated_at
"""


def format_request_number(request_id: int) -> str:
    return f"SOL-{int(request_id):05d}"


class RequestRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        creator_id: int,
        title: str | None,
        description: str | None,
        event_type: str | None,
        internal_budget: float | None,
        max_rounds: int,
        round_deadline: str | None,
        status: str = "draft",
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO requests (
                creator_id, title, description, event_type, internal_budget, max_rounds,
                current_round, round_deadline, status
            )
            VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
            RETURNING id
            """,
            (creator_id, title, description, event_type, internal_budget, max_rounds, round_deadline, status),
        )
        request_id = self.inserted_id(cursor)
        db.execute(
            "UPDATE requests SET request_number = ? WHERE id = ?",
            (format_request_number(request_id), request_id),
        )
        return request_id

    def get_by_id(self, db, request_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {_REQUEST_COLUMNS}, p.full_name AS creator_name, p.email AS creator_email
            FROM requests r
            LEFT JOIN users_profile p ON p.id = r.creator_id
            WHERE r.id = ?
            LIMIT 1
            """,
            (request_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def update_fields(self, db, request_id: int, **fields: Any) -> None:
        if not fields:
            return
        assignments, params = self.assignments(fields)
        db.execute(
            f"""
            UPDATE requests
            SET {assignments}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (*params, request_id),
        )

    def list_by_creator(self, db, creator_id: int, *, limit: int = 200) -> list[dict]:
        rows = db.execute(
            f"""
            SELECT {_REQUEST_COLUMNS}
            FROM requests r
            WHERE r.creator_id = ?
            ORDER BY r.id DESC
            LIMIT ?
            """,
            (creator_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_statuses(self, db, statuses: Iterable[str], *, limit: int = 200) -> list[dict]:
        status_list = list(statuses)
        rows = db.execute(
            f"""
            SELECT {_REQUEST_COLUMNS}, p.full_name AS creator_name,
                   (
                       SELECT COUNT(*)
                       FROM proposals pr
                       WHERE pr.request_id = r.id
                         AND pr.round_number = r.current_round
                         AND pr.status <> 'draft'
                   ) AS proposals_count
            FROM requests r
            LEFT JOIN users_profile p ON p.id = r.creator_id
            WHERE r.status IN ({self.placeholders(status_list)})
            ORDER BY r.id DESC
            LIMIT ?
            """,
            (*status_list, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def count_by_status(self, db, *, creator_id: int | None = None) -> dict[str, int]:
        if creator_id is None:
            rows = db.execute("SELECT status, COUNT(*) AS total FROM requests GROUP BY status").fetchall()
        else:
            rows = db.execute(
                "SELECT status, COUNT(*) AS total FROM requests WHERE creator_id = ? GROUP BY status",
                (creator_id,),
            ).fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}

    def delete_cascade(self, db, request_id: int) -> None:
        proposal_scope = "SELECT id FROM proposals WHERE request_id = ?"
        db.execute("DELETE FROM awards WHERE request_id = ?", (request_id,))
        db.execute("DELETE FROM award_selections WHERE request_id = ?", (request_id,))
        db.execute(f"DELETE FROM round_item_feedback WHERE proposal_id IN ({proposal_scope})", (request_id,))
        db.execute(f"DELETE FROM proposal_attachments WHERE proposal_id IN ({proposal_scope})", (request_id,))
        db.execute(f"DELETE FROM proposal_items WHERE proposal_id IN ({proposal_scope})", (request_id,))
        db.execute("DELETE FROM proposals WHERE request_id = ?", (request_id,))
        db.execute("DELETE FROM round_suggestions WHERE request_id = ?", (request_id,))
        db.execute("DELETE FROM request_invitations WHERE request_id = ?", (request_id,))
        db.execute("DELETE FROM requests WHERE id = ?", (request_id,))
