from __future__ import annotations

from eprocurement.infrastructure.repositories.base import BaseRepository


class AttachmentRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        proposal_id: int,
        file_name: str,
        file_path: str,
        file_size: int,
        mime_type: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO proposal_attachments (proposal_id, file_name, file_path, file_size, mime_type)
            VALUES (?, ?, ?, ?, ?)
            RETURNING id
            """,
            (proposal_id, file_name, file_path, int(file_size), mime_type),
        )
        return self.inserted_id(cursor)

    def list_for_proposal(self, db, proposal_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, proposal_id, file_name, file_path, file_size, mime_type, created_at
            FROM proposal_attachments
            WHERE proposal_id = ?
            ORDER BY id
            """,
            (proposal_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def get_by_path(self, db, file_path: str) -> dict | None:
        row = db.execute(
            """
            SELECT a.id, a.proposal_id, a.file_name, a.file_path, a.file_size, a.mime_type,
                   p.request_id, p.supplier_id
            FROM proposal_attachments a
            JOIN proposals p ON p.id = a.proposal_id
            WHERE a.file_path = ?
            LIMIT 1
            """,
            (file_path,),
        ).fetchone()
        return self.row_to_dict(row)

    def paths_for_request(self, db, request_id: int) -> list[str]:
        rows = db.execute(
            """
            SELECT a.file_path
            FROM proposal_attachments a
            JOIN proposals p ON p.id = a.proposal_id
            WHERE p.request_id = ?
            ORDER BY a.id
            """,
            (request_id,),
        ).fetchall()
        return [str(row["file_path"]) for row in rows]
