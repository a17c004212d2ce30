from __future__ import annotations

from typing import Iterable

from eprocurement.infrastructure.repositories.base import BaseRepository


class FeedbackRepository(BaseRepository):
    def create_feedback(
        self,
        db,
        *,
        proposal_id: int,
        proposal_item_id: int,
        round_number: int,
        action: str,
        feedback_text: str,
        suggested_price: float | None,
        created_by: int,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO round_item_feedback (
                proposal_id, proposal_item_id, round_number, action, feedback_text, suggested_price, created_by
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (proposal_id, proposal_item_id, round_number, action, feedback_text, suggested_price, created_by),
        )
        return self.inserted_id(cursor)

    def create_suggestion(
        self,
        db,
        *,
        request_id: int,
        round_number: int,
        item_name: str,
        description: str,
        suggested_quantity: float,
        notes: str | None,
        created_by: int,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO round_suggestions (
                request_id, round_number, item_name, description, suggested_quantity, notes, created_by
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (request_id, round_number, item_name, description, suggested_quantity, notes, created_by),
        )
        return self.inserted_id(cursor)

    def list_feedback_for_proposals(self, db, proposal_ids: Iterable[int]) -> list[dict]:
        ids = list(proposal_ids)
        if not ids:
            return []
        rows = db.execute(
            f"""
            SELECT f.id, f.proposal_id, f.proposal_item_id, f.round_number, f.action, f.feedback_text,
                   f.suggested_price, f.created_by, f.created_at, i.item_name
            FROM round_item_feedback f
            LEFT JOIN proposal_items i ON i.id = f.proposal_item_id
            WHERE f.proposal_id IN ({self.placeholders(ids)})
            ORDER BY f.round_number, f.id
            """,
            tuple(ids),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_feedback_for_request(self, db, request_id: int, round_number: int | None = None) -> list[dict]:
        params: list = [request_id]
        round_clause = ""
        if round_number is not None:
            round_clause = "AND f.round_number = ?"
            params.append(round_number)
        rows = db.execute(
            f"""
            SELECT f.id, f.proposal_id, f.proposal_item_id, f.round_number, f.action, f.feedback_text,
                   f.suggested_price, f.created_by, f.created_at
            FROM round_item_feedback f
            JOIN proposals p ON p.id = f.proposal_id
            WHERE p.request_id = ? {round_clause}
            ORDER BY f.round_number, f.id
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_suggestions(self, db, request_id: int, round_number: int | None = None) -> list[dict]:
        if round_number is None:
            rows = db.execute(
                """
                SELECT id, request_id, round_number, item_name, description, suggested_quantity, notes, created_at
                FROM round_suggestions
                WHERE request_id = ?
                ORDER BY round_number, id
                """,
                (request_id,),
            ).fetchall()
        else:
            rows = db.execute(
                """
                SELECT id, request_id, round_number, item_name, description, suggested_quantity, notes, created_at
                FROM round_suggestions
                WHERE request_id = ? AND round_number = ?
                ORDER BY id
                """,
                (request_id, round_number),
            ).fetchall()
        return self.rows_to_dicts(rows)
