# storage/db.py
import os
import sqlite3
from pathlib import Path


_DEFAULT_DB_PATH = Path.home() / ".charla" / "charla.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id                 TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    status             TEXT NOT NULL DEFAULT 'pending',
    file_url           TEXT NOT NULL,
    context            TEXT,
    selected_templates TEXT NOT NULL DEFAULT '[]',
    error              TEXT,
    transcript_text    TEXT,
    summary            TEXT,
    summary_v2         TEXT,
    detected_language  TEXT,
    preferred_locale   TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL,
    completed_at       TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status);

CREATE TABLE IF NOT EXISTS analyses (
    id               TEXT PRIMARY KEY,
    transcription_id TEXT NOT NULL,
    user_id          TEXT NOT NULL,
    template_name    TEXT NOT NULL,
    content_json     TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    FOREIGN KEY (transcription_id) REFERENCES jobs(id)
);

CREATE TABLE IF NOT EXISTS translations (
    id               TEXT PRIMARY KEY,
    source_type      TEXT NOT NULL,
    source_id        TEXT NOT NULL,
    transcription_id TEXT NOT NULL,
    user_id          TEXT NOT NULL,
    locale_code      TEXT NOT NULL,
    locale_name      TEXT NOT NULL,
    content_json     TEXT NOT NULL,
    translated_at    TEXT NOT NULL,
    translated_by    TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    UNIQUE (transcription_id, source_type, source_id, locale_code, user_id)
);

CREATE TABLE IF NOT EXISTS quota_usage (
    model       TEXT    NOT NULL,
    date        TEXT    NOT NULL,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (model, date)
);
"""


def get_connection(db_path: str | None = None, env_var: str = "CHARLA_DB_PATH",
                   default_path: Path = _DEFAULT_DB_PATH) -> sqlite3.Connection:
    """
    Abre y configura la conexión a SQLite.
    Siempre devuelve rows como dicts (row_factory).
    check_same_thread=False: las llamadas llegan desde asyncio.to_thread,
    el caller serializa el acceso con un lock.
    """
    path = db_path or os.environ.get(env_var) or str(default_path)

    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def init_schema(conn: sqlite3.Connection, schema: str = _SCHEMA) -> None:
    """Crea las tablas si no existen. Idempotente."""
    with conn:
        conn.executescript(schema)
