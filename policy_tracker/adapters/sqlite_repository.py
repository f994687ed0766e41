"""SQLite repository adapter for policy documents.

Implements DocumentRepositoryPort with a SQLite backend.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import date
from pathlib import Path

from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import RepositoryError
from policy_tracker.domain.models import DocumentAnalysis, PolicyDocument
from policy_tracker.domain.task_queue import utc_now
from policy_tracker.ports.document_repository import DocumentRepositoryPort

logger = get_logger(__name__)


class SQLiteDocumentRepository(DocumentRepositoryPort):
    """SQLite-based document store."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize repository and ensure schema.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._create_schema()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_number TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    full_text TEXT NOT NULL DEFAULT '',
                    signing_date TEXT,
                    publication_date TEXT,
                    president TEXT,
                    url TEXT,
                    summary TEXT,
                    executive_brief TEXT,
                    comprehensive_analysis TEXT,
                    impact_level TEXT,
                    categories TEXT,
                    impact_areas TEXT,
                    analyzed_at TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_documents_impact_level
                ON documents(impact_level)
                """
            )
            conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to create schema: {e}") from e
        finally:
            conn.close()
        logger.debug("sqlite_schema_ready", db_path=self.db_path)

    def upsert_documents(self, documents: list[PolicyDocument]) -> int:
        """Insert or update documents keyed by document number.

        Analysis columns are left untouched on update.

        Raises:
            RepositoryError: On storage errors
        """
        if not documents:
            return 0

        conn = self._get_connection()
        try:
            for doc in documents:
                conn.execute(
                    """
                    INSERT INTO documents (
                        document_number, title, full_text, signing_date,
                        publication_date, president, url
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(document_number) DO UPDATE SET
                        title = excluded.title,
                        full_text = excluded.full_text,
                        signing_date = excluded.signing_date,
                        publication_date = excluded.publication_date,
                        president = excluded.president,
                        url = excluded.url
                    """,
                    (
                        doc.document_number,
                        doc.title,
                        doc.full_text,
                        _iso(doc.signing_date),
                        _iso(doc.publication_date),
                        doc.president,
                        doc.url,
                    ),
                )
            conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to upsert documents: {e}") from e
        finally:
            conn.close()

        logger.info("documents_upserted", count=len(documents))
        return len(documents)

    def get_document(self, document_id: int | str) -> PolicyDocument | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (int(document_id),)
            ).fetchone()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to load document {document_id}: {e}") from e
        finally:
            conn.close()
        return _row_to_document(row) if row else None

    def fetch_documents_needing_analysis(
        self, limit: int | None = None
    ) -> list[PolicyDocument]:
        """Return documents without an impact level, newest first."""

        query = """
            SELECT * FROM documents
            WHERE impact_level IS NULL OR impact_level = ''
            ORDER BY COALESCE(signing_date, publication_date) DESC, id DESC
        """
        params: tuple[int, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)

        conn = self._get_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to fetch documents: {e}") from e
        finally:
            conn.close()

        return [_row_to_document(row) for row in rows]

    def save_analysis(
        self, document_id: int | str, analysis: DocumentAnalysis
    ) -> None:
        """Store an analysis on its document row.

        Raises:
            RepositoryError: On storage errors or when the document is missing
        """
        conn = self._get_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE documents SET
                    summary = ?,
                    executive_brief = ?,
                    comprehensive_analysis = ?,
                    impact_level = ?,
                    categories = ?,
                    impact_areas = ?,
                    analyzed_at = ?
                WHERE id = ?
                """,
                (
                    analysis.summary,
                    analysis.executive_brief,
                    analysis.comprehensive_analysis,
                    analysis.impact_level.value,
                    json.dumps(analysis.categories),
                    json.dumps(analysis.institution_impact_areas),
                    utc_now().isoformat(),
                    int(document_id),
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to save analysis for {document_id}: {e}") from e
        finally:
            conn.close()

        if cursor.rowcount == 0:
            raise RepositoryError(f"Document not found: {document_id}")

        logger.info(
            "analysis_saved",
            document_id=document_id,
            impact_level=analysis.impact_level.value,
        )


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _row_to_document(row: sqlite3.Row) -> PolicyDocument:
    return PolicyDocument(
        id=row["id"],
        document_number=row["document_number"],
        title=row["title"],
        full_text=row["full_text"] or "",
        signing_date=row["signing_date"],
        publication_date=row["publication_date"],
        president=row["president"],
        url=row["url"],
        summary=row["summary"],
        impact_level=row["impact_level"] or None,
    )


__all__ = ["SQLiteDocumentRepository"]
