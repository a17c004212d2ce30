from __future__ import annotations

from typing import Iterable

from eprocurement.infrastructure.repositories.base import BaseRepository
from eprocurement.procurement.pricing import ProposalTotals


_PROPOSAL_COLUMNS = """
    p.id, p.request_id, p.supplier_id, p.round_number, p.subtotal, p.fee_amount, p.total_amount,
    p.contextual_info, p.status, p.submitted_at, p.created_at, p.updated_at,
    s.name AS supplier_name, s.contract_fee_percentage
"""


class ProposalRepository(BaseRepository):
    def get_by_id(self, db, proposal_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM proposals p
            JOIN suppliers s ON s.id = p.supplier_id
            WHERE p.id = ?
            LIMIT 1
            """,
            (proposal_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def get_by_key(self, db, request_id: int, supplier_id: int, round_number: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM proposals p
            JOIN suppliers s ON s.id = p.supplier_id
            WHERE p.request_id = ? AND p.supplier_id = ? AND p.round_number = ?
            LIMIT 1
            """,
            (request_id, supplier_id, round_number),
        ).fetchone()
        return self.row_to_dict(row)

    def create(
        self,
        db,
        *,
        request_id: int,
        supplier_id: int,
        round_number: int,
        totals: ProposalTotals,
        contextual_info: str | None,
        status: str,
        submitted_at: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO proposals (
                request_id, supplier_id, round_number, subtotal, fee_amount, total_amount,
                contextual_info, status, submitted_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                request_id,
                supplier_id,
                round_number,
                totals.subtotal,
                totals.fee_amount,
                totals.total_amount,
                contextual_info,
                status,
                submitted_at,
            ),
        )
        return self.inserted_id(cursor)

    def update_header(
        self,
        db,
        proposal_id: int,
        *,
        totals: ProposalTotals,
        contextual_info: str | None,
        status: str,
        submitted_at: str | None,
    ) -> None:
        db.execute(
            """
            UPDATE proposals
            SET subtotal = ?, fee_amount = ?, total_amount = ?, contextual_info = ?, status = ?,
                submitted_at = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (
                totals.subtotal,
                totals.fee_amount,
                totals.total_amount,
                contextual_info,
                status,
                submitted_at,
                proposal_id,
            ),
        )

    def replace_items(self, db, proposal_id: int, totals: ProposalTotals) -> None:
        db.execute("DELETE FROM proposal_items WHERE proposal_id = ?", (proposal_id,))
        for item in totals.items:
            db.execute(
                """
                INSERT INTO proposal_items (proposal_id, item_name, description, quantity, unit_price, total_price)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (proposal_id, item.item_name, item.description, item.quantity, item.unit_price, item.total_price),
            )

    def list_items(self, db, proposal_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, proposal_id, item_name, description, quantity, unit_price, total_price
            FROM proposal_items
            WHERE proposal_id = ?
            ORDER BY id
            """,
            (proposal_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_items_for_proposals(self, db, proposal_ids: Iterable[int]) -> list[dict]:
        ids = list(proposal_ids)
        if not ids:
            return []
        rows = db.execute(
            f"""
            SELECT id, proposal_id, item_name, description, quantity, unit_price, total_price
            FROM proposal_items
            WHERE proposal_id IN ({self.placeholders(ids)})
            ORDER BY proposal_id, id
            """,
            tuple(ids),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_request(
        self,
        db,
        request_id: int,
        *,
        round_number: int | None = None,
        include_drafts: bool = False,
    ) -> list[dict]:
        clauses = ["p.request_id = ?"]
        params: list = [request_id]
        if round_number is not None:
            clauses.append("p.round_number = ?")
            params.append(round_number)
        if not include_drafts:
            clauses.append("p.status <> 'draft'")
        rows = db.execute(
            f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM proposals p
            JOIN suppliers s ON s.id = p.supplier_id
            WHERE {" AND ".join(clauses)}
            ORDER BY p.round_number, p.total_amount ASC, p.id
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_submitted_for_round(self, db, request_id: int, round_number: int) -> list[dict]:
        rows = db.execute(
            f"""
            SELECT {_PROPOSAL_COLUMNS}
            FROM proposals p
            JOIN suppliers s ON s.id = p.supplier_id
            WHERE p.request_id = ? AND p.round_number = ? AND p.submitted_at IS NOT NULL
              AND p.status <> 'draft'
            ORDER BY p.total_amount ASC, p.id
            """,
            (request_id, round_number),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_for_supplier(self, db, supplier_id: int, *, request_id: int | None = None) -> list[dict]:
        if request_id is None:
            rows = db.execute(
                f"""
                SELECT {_PROPOSAL_COLUMNS}, r.request_number, r.title AS request_title
                FROM proposals p
                JOIN suppliers s ON s.id = p.supplier_id
                JOIN requests r ON r.id = p.request_id
                WHERE p.supplier_id = ?
                ORDER BY p.request_id DESC, p.round_number
                """,
                (supplier_id,),
            ).fetchall()
        else:
            rows = db.execute(
                f"""
                SELECT {_PROPOSAL_COLUMNS}, r.request_number, r.title AS request_title
                FROM proposals p
                JOIN suppliers s ON s.id = p.supplier_id
                JOIN requests r ON r.id = p.request_id
                WHERE p.supplier_id = ? AND p.request_id = ?
                ORDER BY p.round_number
                """,
                (supplier_id, request_id),
            ).fetchall()
        return self.rows_to_dicts(rows)

    def set_status(self, db, proposal_ids: Iterable[int], status: str) -> None:
        ids = list(proposal_ids)
        if not ids:
            return
        db.execute(
            f"""
            UPDATE proposals
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id IN ({self.placeholders(ids)})
            """,
            (status, *ids),
        )

    def count_for_supplier_by_status(self, db, supplier_id: int) -> dict[str, int]:
        rows = db.execute(
            "SELECT status, COUNT(*) AS total FROM proposals WHERE supplier_id = ? GROUP BY status",
            (supplier_id,),
        ).fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}

    def item_owner(self, db, proposal_item_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT i.id AS proposal_item_id, i.item_name, p.id AS proposal_id, p.request_id,
                   p.round_number, p.status, p.submitted_at, p.supplier_id
            FROM proposal_items i
            JOIN proposals p ON p.id = i.proposal_id
            WHERE i.id = ?
            LIMIT 1
            """,
            (proposal_item_id,),
        ).fetchone()
        return self.row_to_dict(row)
