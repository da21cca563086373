"""SQLite passage store for Si Asef.

SQLite database for storing:
- Documents submitted for ingestion
- Passages (chunks) with their embeddings, owned by a document
"""
import sqlite3
import json
from pathlib import Path
from typing import Optional, List, Sequence
from datetime import datetime, timezone
import structlog

from siasef import config
from siasef.models import Document, Passage

logger = structlog.get_logger()


class PassageStore:
    """Durable store for documents and their embedded passages."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store and create the schema if needed.

        Args:
            db_path: SQLite file path (default from config)
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection with row_factory set and foreign keys enforced."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_database(self) -> None:
        """Initialize the database schema.

        Creates tables if they don't exist:
        - documents: one row per ingested document
        - passages: text chunks with embeddings, cascade-deleted with their document
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    file_type TEXT NOT NULL,
                    page_count INTEGER NOT NULL DEFAULT 1,
                    chunk_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS passages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id INTEGER NOT NULL
                        REFERENCES documents(id) ON DELETE CASCADE,
                    sequence_index INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    page_number INTEGER NOT NULL,
                    start_offset INTEGER NOT NULL,
                    end_offset INTEGER NOT NULL,
                    embedding_json TEXT,
                    embedding_degraded INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    UNIQUE(document_id, sequence_index)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_passages_document_id
                ON passages(document_id)
            """)

            conn.commit()
            logger.info("database_initialized", db_path=str(self.db_path))

        except Exception as e:
            conn.rollback()
            logger.error("database_init_failed", error=str(e))
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(self, name: str, file_type: str, page_count: int = 1) -> int:
        """Record a new document and return its id."""
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO documents (name, file_type, page_count, created_at)
                VALUES (?, ?, ?, ?)
            """, (name, file_type, page_count, _now()))

            conn.commit()
            document_id = cursor.lastrowid
            logger.info("document_inserted", document_id=document_id, name=name)
            return document_id

        except Exception as e:
            conn.rollback()
            logger.error("document_insert_failed", error=str(e), name=name)
            raise
        finally:
            conn.close()

    def update_document_chunk_count(self, document_id: int, chunk_count: int) -> None:
        conn = self.get_connection()
        try:
            conn.execute(
                "UPDATE documents SET chunk_count = ? WHERE id = ?",
                (chunk_count, document_id),
            )
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("document_update_failed", error=str(e), document_id=document_id)
            raise
        finally:
            conn.close()

    def list_documents(self) -> List[Document]:
        """List all documents, most recent first."""
        conn = self.get_connection()
        try:
            rows = conn.execute("""
                SELECT id, name, file_type, page_count, chunk_count, created_at
                FROM documents
                ORDER BY id DESC
            """).fetchall()
            return [Document(**dict(row)) for row in rows]
        except Exception as e:
            logger.error("documents_list_failed", error=str(e))
            raise
        finally:
            conn.close()

    def delete_document(self, document_id: int) -> bool:
        """Delete a document; its passages go with it.

        Returns:
            True if deleted, False if not found
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("document_deleted", document_id=document_id)
            return deleted

        except Exception as e:
            conn.rollback()
            logger.error("document_delete_failed", error=str(e), document_id=document_id)
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Passages
    # ------------------------------------------------------------------

    def insert_passage(self, passage: Passage) -> int:
        """Insert a passage and return its id.

        Args:
            passage: Passage to persist (its ``id`` is ignored and assigned here)

        Returns:
            ID of the inserted passage row
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO passages (
                    document_id, sequence_index, content, page_number,
                    start_offset, end_offset, embedding_json,
                    embedding_degraded, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                passage.document_id,
                passage.sequence_index,
                passage.content,
                passage.page_number,
                passage.start_offset,
                passage.end_offset,
                json.dumps(passage.embedding) if passage.embedding else None,
                int(passage.embedding_degraded),
                _now(),
            ))

            conn.commit()
            passage.id = cursor.lastrowid
            return passage.id

        except Exception as e:
            conn.rollback()
            logger.error(
                "passage_insert_failed",
                error=str(e),
                document_id=passage.document_id,
                sequence_index=passage.sequence_index,
            )
            raise
        finally:
            conn.close()

    def get_all_passages(self) -> List[Passage]:
        """Return every passage with its embedding, in document order."""
        return self._select_passages("ORDER BY p.document_id, p.sequence_index", ())

    def get_passages_by_ids(self, passage_ids: Sequence[int]) -> List[Passage]:
        """Retrieve passages by id, in the order of ``passage_ids``."""
        if not passage_ids:
            return []

        placeholders = ",".join("?" * len(passage_ids))
        rows = self._select_passages(f"WHERE p.id IN ({placeholders})", tuple(passage_ids))
        by_id = {passage.id: passage for passage in rows}
        return [by_id[pid] for pid in passage_ids if pid in by_id]

    def delete_passages_for_document(self, document_id: int) -> int:
        """Delete all passages of a document.

        Returns:
            Number of passages deleted
        """
        conn = self.get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("DELETE FROM passages WHERE document_id = ?", (document_id,))
            conn.commit()
            logger.info("passages_deleted", document_id=document_id, count=cursor.rowcount)
            return cursor.rowcount

        except Exception as e:
            conn.rollback()
            logger.error("passages_delete_failed", error=str(e), document_id=document_id)
            raise
        finally:
            conn.close()

    def count_passages(self, document_id: Optional[int] = None) -> int:
        """Count passages overall, or of one document."""
        conn = self.get_connection()
        try:
            if document_id is None:
                return conn.execute("SELECT COUNT(*) FROM passages").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM passages WHERE document_id = ?", (document_id,)
            ).fetchone()[0]
        except Exception as e:
            logger.error("passage_count_failed", error=str(e))
            raise
        finally:
            conn.close()

    def _select_passages(self, clause: str, params: tuple) -> List[Passage]:
        conn = self.get_connection()

        try:
            rows = conn.execute(f"""
                SELECT
                    p.id, p.document_id, p.sequence_index, p.content,
                    p.page_number, p.start_offset, p.end_offset,
                    p.embedding_json, p.embedding_degraded, d.name AS document_name
                FROM passages p
                JOIN documents d ON d.id = p.document_id
                {clause}
            """, params).fetchall()

            return [_row_to_passage(row) for row in rows]

        except Exception as e:
            logger.error("passages_retrieval_failed", error=str(e))
            raise
        finally:
            conn.close()


def _row_to_passage(row: sqlite3.Row) -> Passage:
    embedding = json.loads(row["embedding_json"]) if row["embedding_json"] else None
    return Passage(
        id=row["id"],
        document_id=row["document_id"],
        sequence_index=row["sequence_index"],
        content=row["content"],
        page_number=row["page_number"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        embedding=embedding,
        embedding_degraded=bool(row["embedding_degraded"]),
        document_name=row["document_name"],
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
