"""
SQLite Question Store
=====================
Persistent, deduplicated storage for previous-year questions.

Records are keyed by ``match_key`` (exam, year, normalized question prefix).
A re-discovered question is merged into the stored record instead of being
inserted twice, and records are never deleted.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import QuestionRecord, UpsertResult

logger = logging.getLogger(__name__)

# Default database path: working directory
_DEFAULT_DB_PATH = str(Path.cwd() / "pyq.sqlite")

# Seconds a writer waits for another writer's lock
BUSY_TIMEOUT = 30.0


def get_db_path() -> str:
    """Return the configured database path."""
    return os.environ.get("PYQ_DB_PATH", _DEFAULT_DB_PATH)


@contextmanager
def get_connection(db_path: str = None, immediate: bool = False):
    """
    Context manager for database connections.
    Ensures proper commit/rollback and connection cleanup.

    With ``immediate=True`` the write lock is taken up front
    (``BEGIN IMMEDIATE``), so a read-then-write sequence is atomic
    across threads and processes.
    """
    db_path = db_path or get_db_path()
    conn = sqlite3.connect(
        db_path,
        timeout=BUSY_TIMEOUT,
        isolation_level=None if immediate else "",
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    if immediate:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_path: str = None):
    """
    Initialize the database schema.
    Safe to call multiple times (IF NOT EXISTS).
    """
    db_path = db_path or get_db_path()
    parent = Path(db_path).parent
    if str(parent) not in ("", "."):
        parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Initializing database at: {db_path}")

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS questions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                match_key TEXT NOT NULL UNIQUE,
                exam TEXT NOT NULL,
                level TEXT,
                paper TEXT,
                year INTEGER,
                question TEXT NOT NULL,
                topic_tags TEXT DEFAULT '[]',
                theme TEXT,
                source_link TEXT DEFAULT '',
                verified INTEGER DEFAULT 0,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_questions_exam_year
                ON questions(exam, year);
            CREATE INDEX IF NOT EXISTS idx_questions_paper
                ON questions(paper);
        """)

    # ── Migrations for existing databases ────────────────────────────
    _migrate_add_columns(db_path)

    logger.info("Database schema initialized successfully")


def _migrate_add_columns(db_path: str = None):
    """Add columns that may be missing in older databases."""
    db_path = db_path or get_db_path()
    with get_connection(db_path) as conn:
        cols = {
            row["name"]
            for row in conn.execute("PRAGMA table_info(questions)").fetchall()
        }
        if "extraction_method" not in cols:
            conn.execute(
                "ALTER TABLE questions ADD COLUMN extraction_method TEXT DEFAULT NULL")
            logger.info("Migrated: added questions.extraction_method")
        if "updated_at" not in cols:
            conn.execute(
                "ALTER TABLE questions ADD COLUMN updated_at TEXT DEFAULT NULL")
            logger.info("Migrated: added questions.updated_at")


# ─── Upsert ───────────────────────────────────────────────────────────────────

# Fields a merge may fill in when the stored value is null or empty
_FILLABLE = ("level", "paper", "theme", "extraction_method")


def upsert_question(record: QuestionRecord, db_path: str = None) -> UpsertResult:
    """
    Insert ``record`` or merge it into the stored record with the same key.

    Merge rules:
        - level/paper/theme/extraction_method: fill only when stored is empty
        - verified: only ever upgraded; the verified source link is adopted
        - topic_tags: union, stored order first
    """
    row_values = _to_row(record)

    with get_connection(db_path, immediate=True) as conn:
        existing = conn.execute(
            "SELECT * FROM questions WHERE match_key = ?", (record.match_key,)
        ).fetchone()

        if existing is None:
            conn.execute(
                """INSERT INTO questions
                   (match_key, exam, level, paper, year, question, topic_tags,
                    theme, source_link, verified, extraction_method,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (row_values["match_key"], row_values["exam"], row_values["level"],
                 row_values["paper"], row_values["year"], row_values["question"],
                 row_values["topic_tags"], row_values["theme"],
                 row_values["source_link"], row_values["verified"],
                 row_values["extraction_method"], row_values["created_at"], None),
            )
            return UpsertResult.INSERTED

        updates: dict[str, object] = {}
        for name in _FILLABLE:
            if not existing[name] and row_values[name]:
                updates[name] = row_values[name]

        if record.verified and not existing["verified"]:
            updates["verified"] = 1
            if record.source_link:
                updates["source_link"] = record.source_link
        elif not existing["source_link"] and record.source_link:
            updates["source_link"] = record.source_link

        stored_tags = _load_tags(existing["topic_tags"])
        merged_tags = stored_tags + [t for t in record.topic_tags if t not in stored_tags]
        if merged_tags != stored_tags:
            updates["topic_tags"] = json.dumps(merged_tags, ensure_ascii=False)

        if updates:
            updates["updated_at"] = _now()
            set_clause = ", ".join(f"{k} = ?" for k in updates)
            conn.execute(
                f"UPDATE questions SET {set_clause} WHERE id = ?",
                list(updates.values()) + [existing["id"]],
            )
            logger.debug(f"Merged question id={existing['id']}: {sorted(updates)}")

        return UpsertResult.MERGED


# ─── Queries ──────────────────────────────────────────────────────────────────


def get_question(question_id: int, db_path: str = None) -> Optional[QuestionRecord]:
    """Fetch a single question by ID."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM questions WHERE id = ?", (question_id,)
        ).fetchone()
        return _hydrate(row) if row else None


def get_question_by_key(match_key: str, db_path: str = None) -> Optional[QuestionRecord]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM questions WHERE match_key = ?", (match_key,)
        ).fetchone()
        return _hydrate(row) if row else None


def list_questions(
    exam: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db_path: str = None,
) -> list[QuestionRecord]:
    """List questions, newest year first."""
    sql = "SELECT * FROM questions"
    params: list[object] = []
    if exam:
        sql += " WHERE exam = ?"
        params.append(exam.strip().upper())
    sql += " ORDER BY year IS NULL, year DESC, id LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    with get_connection(db_path) as conn:
        return [_hydrate(r) for r in conn.execute(sql, params).fetchall()]


def count_questions(exam: Optional[str] = None, db_path: str = None) -> int:
    with get_connection(db_path) as conn:
        if exam:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM questions WHERE exam = ?",
                (exam.strip().upper(),),
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) AS n FROM questions").fetchone()
        return row["n"]


def search_questions(
    query: str = "",
    exam: Optional[str] = None,
    year_from: Optional[int] = None,
    year_to: Optional[int] = None,
    paper: Optional[str] = None,
    limit: int = 50,
    db_path: str = None,
) -> list[QuestionRecord]:
    """
    Free-text search over question text, topic tags and theme.

    Every whitespace-separated term must match (case-insensitive substring).
    Results are ordered newest year first; undated questions come last.
    """
    clauses: list[str] = []
    params: list[object] = []

    for term in query.split():
        like = f"%{_escape_like(term)}%"
        clauses.append(
            "(question LIKE ? ESCAPE '\\' OR topic_tags LIKE ? ESCAPE '\\' "
            "OR theme LIKE ? ESCAPE '\\')"
        )
        params.extend([like, like, like])

    if exam:
        clauses.append("exam = ?")
        params.append(exam.strip().upper())
    if year_from is not None:
        clauses.append("year >= ?")
        params.append(year_from)
    if year_to is not None:
        clauses.append("year <= ?")
        params.append(year_to)
    if paper:
        clauses.append("paper = ? COLLATE NOCASE")
        params.append(paper)

    sql = "SELECT * FROM questions"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY year IS NULL, year DESC, id LIMIT ?"
    params.append(limit)

    with get_connection(db_path) as conn:
        return [_hydrate(r) for r in conn.execute(sql, params).fetchall()]


# ─── Helper ──────────────────────────────────────────────────────────────────


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _load_tags(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except ValueError:
        logger.warning(f"Unreadable topic_tags value: {raw!r}")
        return []
    return [str(t) for t in tags] if isinstance(tags, list) else []


def _to_row(record: QuestionRecord) -> dict:
    return {
        "match_key": record.match_key,
        "exam": record.exam,
        "level": record.level.value if record.level else None,
        "paper": record.paper,
        "year": record.year,
        "question": record.question,
        "topic_tags": json.dumps(record.topic_tags, ensure_ascii=False),
        "theme": record.theme,
        "source_link": record.source_link,
        "verified": 1 if record.verified else 0,
        "extraction_method": (
            record.extraction_method.value if record.extraction_method else None
        ),
        "created_at": record.created_at,
    }


def _hydrate(row: sqlite3.Row) -> QuestionRecord:
    """Turn a stored row back into a QuestionRecord."""
    data = dict(row)
    return QuestionRecord(
        id=data["id"],
        exam=data["exam"],
        level=data["level"] or None,
        paper=data["paper"],
        year=data["year"],
        question=data["question"],
        topic_tags=_load_tags(data["topic_tags"]),
        theme=data["theme"],
        source_link=data["source_link"] or "",
        verified=bool(data["verified"]),
        extraction_method=data.get("extraction_method") or None,
        created_at=data["created_at"],
        updated_at=data.get("updated_at"),
    )
