"""Data storage management - SQLite catalogue, crawl state and CSV/Parquet output."""
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from . import config
from .datamodel import (PART_EXPORT_HEADERS, CrawlState, Diagram, Group, Part,
                        Subgroup)

logger = logging.getLogger(__name__)

PART_COLUMNS = [
    "id", "detail_page_id", "part_number", "pnc", "description", "ref_number",
    "quantity", "spec", "notes", "color", "model_date_range", "diagram_id",
    "group_id", "subgroup_id", "replacement_part_number", "replaces_id"
]

DIAGRAM_COLUMNS = [
    "id", "group_id", "subgroup_id", "name", "image_url", "image_path", "source_url"
]


class DataStore:
    """SQLite-backed parts catalogue plus the durable crawl state."""

    def __init__(self, sqlite_path: Path = None):
        self.sqlite_path = sqlite_path or config.SQLITE_PATH
        self.has_fts = False
        self._init_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """One transaction per block: commit on success, roll back on error."""
        conn = sqlite3.connect(self.sqlite_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    # --------------------------- DB INIT ---------------------------------

    def _init_database(self):
        """Create tables, bring old databases up to date, then index."""
        Path(self.sqlite_path).parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS groups (
                    id   TEXT PRIMARY KEY,
                    name TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS subgroups (
                    id       TEXT PRIMARY KEY,
                    name     TEXT NOT NULL,
                    group_id TEXT NOT NULL REFERENCES groups(id),
                    path     TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS diagrams (
                    id          TEXT PRIMARY KEY,
                    group_id    TEXT NOT NULL REFERENCES groups(id),
                    subgroup_id TEXT REFERENCES subgroups(id),
                    name        TEXT NOT NULL,
                    image_url   TEXT,
                    image_path  TEXT,
                    source_url  TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS parts (
                    id               INTEGER PRIMARY KEY AUTOINCREMENT,
                    detail_page_id   TEXT,
                    part_number      TEXT NOT NULL,
                    pnc              TEXT,
                    description      TEXT,
                    ref_number       TEXT,
                    quantity         INTEGER,
                    spec             TEXT,
                    notes            TEXT,
                    color            TEXT,
                    model_date_range TEXT,
                    diagram_id       TEXT NOT NULL REFERENCES diagrams(id),
                    group_id         TEXT REFERENCES groups(id),
                    subgroup_id      TEXT REFERENCES subgroups(id),
                    replacement_part_number TEXT,
                    replaces_id      INTEGER REFERENCES parts(id),
                    UNIQUE(part_number, diagram_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS crawl_state (
                    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
                    url        TEXT NOT NULL UNIQUE,
                    status     TEXT NOT NULL,   -- 'pending' | 'completed' | 'failed'
                    error      TEXT,
                    updated_at TEXT
                )
            """)

        # Migrations must run before indexes on columns they add
        self.run_migrations()

        with self._connect() as conn:
            for statement in (
                    "CREATE INDEX IF NOT EXISTS idx_parts_part_number ON parts(part_number)",
                    "CREATE INDEX IF NOT EXISTS idx_parts_diagram_id ON parts(diagram_id)",
                    "CREATE INDEX IF NOT EXISTS idx_parts_pnc ON parts(pnc)",
                    "CREATE INDEX IF NOT EXISTS idx_parts_detail_page_id ON parts(detail_page_id)",
                    "CREATE INDEX IF NOT EXISTS idx_parts_replaces_id ON parts(replaces_id)",
                    "CREATE INDEX IF NOT EXISTS idx_diagrams_subgroup_id ON diagrams(subgroup_id)",
                    "CREATE INDEX IF NOT EXISTS idx_subgroups_path ON subgroups(path)",
                    "CREATE INDEX IF NOT EXISTS idx_crawl_state_status ON crawl_state(status)",
            ):
                conn.execute(statement)

        self._init_search_index()

    def _init_search_index(self):
        """Full-text index over part number and description, kept in sync by triggers."""
        try:
            with self._connect() as conn:
                conn.execute("""
                    CREATE VIRTUAL TABLE IF NOT EXISTS parts_fts USING fts5(
                        part_number, description,
                        content='parts', content_rowid='id'
                    )
                """)
                conn.execute("""
                    CREATE TRIGGER IF NOT EXISTS parts_ai AFTER INSERT ON parts BEGIN
                        INSERT INTO parts_fts(rowid, part_number, description)
                        VALUES (new.id, new.part_number, new.description);
                    END
                """)
                conn.execute("""
                    CREATE TRIGGER IF NOT EXISTS parts_ad AFTER DELETE ON parts BEGIN
                        INSERT INTO parts_fts(parts_fts, rowid, part_number, description)
                        VALUES ('delete', old.id, old.part_number, old.description);
                    END
                """)
                conn.execute("""
                    CREATE TRIGGER IF NOT EXISTS parts_au AFTER UPDATE ON parts BEGIN
                        INSERT INTO parts_fts(parts_fts, rowid, part_number, description)
                        VALUES ('delete', old.id, old.part_number, old.description);
                        INSERT INTO parts_fts(rowid, part_number, description)
                        VALUES (new.id, new.part_number, new.description);
                    END
                """)
            self.has_fts = True
        except sqlite3.OperationalError as e:
            logger.warning(f"Full-text index unavailable ({e}); parts_fts not created")

    def rebuild_search_index(self):
        """Repopulate parts_fts from the parts table."""
        if not self.has_fts:
            return
        with self._connect() as conn:
            conn.execute("INSERT INTO parts_fts(parts_fts) VALUES ('rebuild')")
        logger.info("Full-text index rebuilt")

    def run_migrations(self) -> List[str]:
        """Bring an existing database up to the current schema; idempotent.

        Returns:
            Human-readable list of the changes applied (empty when current)
        """
        applied: List[str] = []

        def column_names(conn, table):
            cur = conn.execute(f"PRAGMA table_info({table})")
            return [r[1] for r in cur.fetchall()]

        with self._connect() as conn:
            parts_cols = set(column_names(conn, "parts"))
            add_map = {
                "detail_page_id": "ALTER TABLE parts ADD COLUMN detail_page_id TEXT",
                "pnc": "ALTER TABLE parts ADD COLUMN pnc TEXT",
                "spec": "ALTER TABLE parts ADD COLUMN spec TEXT",
                "color": "ALTER TABLE parts ADD COLUMN color TEXT",
                "model_date_range": "ALTER TABLE parts ADD COLUMN model_date_range TEXT",
                "group_id": "ALTER TABLE parts ADD COLUMN group_id TEXT REFERENCES groups(id)",
                "subgroup_id": "ALTER TABLE parts ADD COLUMN subgroup_id TEXT REFERENCES subgroups(id)",
                "replacement_part_number": "ALTER TABLE parts ADD COLUMN replacement_part_number TEXT",
                "replaces_id": "ALTER TABLE parts ADD COLUMN replaces_id INTEGER REFERENCES parts(id)",
            }
            for col, statement in add_map.items():
                if col not in parts_cols:
                    conn.execute(statement)
                    applied.append(f"added column parts.{col}")

            if "path" not in set(column_names(conn, "subgroups")):
                conn.execute("ALTER TABLE subgroups ADD COLUMN path TEXT")
                conn.execute("UPDATE subgroups SET path = id WHERE path IS NULL")
                applied.append("added column subgroups.path (backfilled from id)")

            cur = conn.execute("""
                UPDATE parts
                SET group_id = (SELECT group_id FROM diagrams WHERE diagrams.id = parts.diagram_id),
                    subgroup_id = (SELECT subgroup_id FROM diagrams WHERE diagrams.id = parts.diagram_id)
                WHERE group_id IS NULL
                  AND diagram_id IN (SELECT id FROM diagrams)
            """)
            if cur.rowcount > 0:
                applied.append(f"populated group_id/subgroup_id on {cur.rowcount} parts")

        for change in applied:
            logger.info(f"Migration: {change}")
        return applied

    # ----------------------- CRAWL STATE ---------------------------------

    def enqueue_url(self, url: str) -> bool:
        """Insert url as pending unless it is already known. Returns True if inserted."""
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO crawl_state (url, status, updated_at) VALUES (?, 'pending', ?)",
                (url, datetime.now().isoformat()),
            )
            return cur.rowcount > 0

    def url_state(self, url: str) -> Optional[CrawlState]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT url, status, error, updated_at FROM crawl_state WHERE url=?",
                (url,),
            ).fetchone()
            return CrawlState(**dict(row)) if row else None

    def next_pending_url(self) -> Optional[str]:
        """Oldest pending URL by discovery order."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT url FROM crawl_state WHERE status='pending' ORDER BY seq LIMIT 1"
            ).fetchone()
            return row["url"] if row else None

    def pending_urls(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT url FROM crawl_state WHERE status='pending' ORDER BY seq"
            ).fetchall()
            return [r["url"] for r in rows]

    def failed_urls(self) -> List[Tuple[str, Optional[str]]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT url, error FROM crawl_state WHERE status='failed' ORDER BY seq"
            ).fetchall()
            return [(r["url"], r["error"]) for r in rows]

    def mark_url_completed(self, url: str) -> bool:
        """pending -> completed. Returns False if url was not pending."""
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE crawl_state SET status='completed', error=NULL, updated_at=? "
                "WHERE url=? AND status='pending'",
                (datetime.now().isoformat(), url),
            )
            return cur.rowcount > 0

    def mark_url_failed(self, url: str, error: str) -> bool:
        """pending -> failed. Returns False if url was not pending."""
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE crawl_state SET status='failed', error=?, updated_at=? "
                "WHERE url=? AND status='pending'",
                (error, datetime.now().isoformat(), url),
            )
            return cur.rowcount > 0

    def reset_failed_urls(self) -> int:
        """failed -> pending for every failed URL."""
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE crawl_state SET status='pending', error=NULL, updated_at=? WHERE status='failed'",
                (datetime.now().isoformat(),),
            )
            return cur.rowcount

    # ----------------------- CATALOGUE WRITES ----------------------------

    def save_group(self, group: Group):
        """Groups are created once per slug and never mutated."""
        with self._connect() as conn:
            conn.execute("INSERT OR IGNORE INTO groups (id, name) VALUES (?, ?)",
                         (group.id, group.name))

    def save_subgroup(self, subgroup: Subgroup, overwrite: bool = True):
        """Upsert a subgroup; with overwrite=False an existing row is left alone."""
        on_conflict = ("DO UPDATE SET name=excluded.name, group_id=excluded.group_id, path=excluded.path"
                       if overwrite else "DO NOTHING")
        with self._connect() as conn:
            conn.execute(f"""
                INSERT INTO subgroups (id, name, group_id, path) VALUES (?, ?, ?, ?)
                ON CONFLICT(id) {on_conflict}
            """, (subgroup.id, subgroup.name, subgroup.group_id, subgroup.path))

    def save_diagram(self, diagram: Diagram, overwrite: bool = True):
        """Upsert a diagram; a known image_url or image_path is never cleared.

        With overwrite=False an existing row is left alone.
        """
        if not overwrite:
            with self._connect() as conn:
                conn.execute("""
                    INSERT OR IGNORE INTO diagrams
                        (id, group_id, subgroup_id, name, image_url, image_path, source_url)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (diagram.id, diagram.group_id, diagram.subgroup_id, diagram.name,
                      diagram.image_url, diagram.image_path, diagram.source_url))
            return

        with self._connect() as conn:
            conn.execute("""
                INSERT INTO diagrams (id, group_id, subgroup_id, name, image_url, image_path, source_url)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    group_id=excluded.group_id,
                    subgroup_id=COALESCE(excluded.subgroup_id, diagrams.subgroup_id),
                    name=excluded.name,
                    image_url=COALESCE(excluded.image_url, diagrams.image_url),
                    image_path=COALESCE(diagrams.image_path, excluded.image_path),
                    source_url=excluded.source_url
            """, (diagram.id, diagram.group_id, diagram.subgroup_id, diagram.name,
                  diagram.image_url, diagram.image_path, diagram.source_url))

    def insert_parts(self, parts: Sequence[Part],
                     replaces_previous: Sequence[bool] = ()) -> int:
        """INSERT OR IGNORE parts keyed by (part_number, diagram_id).

        ``replaces_previous[i]`` links part i to the row of part i-1 through
        ``replaces_id``. Returns the number of rows actually inserted.
        """
        inserted = 0
        previous_id: Optional[int] = None
        with self._connect() as conn:
            for i, part in enumerate(parts):
                replaces_id = part.replaces_id
                if i < len(replaces_previous) and replaces_previous[i] and previous_id is not None:
                    replaces_id = previous_id

                cur = conn.execute("""
                    INSERT OR IGNORE INTO parts (
                        id, detail_page_id, part_number, pnc, description, ref_number,
                        quantity, spec, notes, color, model_date_range, diagram_id,
                        group_id, subgroup_id, replacement_part_number, replaces_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (part.id, part.detail_page_id, part.part_number, part.pnc, part.description,
                      part.ref_number, part.quantity, part.spec, part.notes, part.color,
                      part.model_date_range, part.diagram_id, part.group_id,
                      part.subgroup_id, part.replacement_part_number, replaces_id))

                if cur.rowcount > 0:
                    inserted += 1
                    previous_id = cur.lastrowid
                else:
                    row = conn.execute(
                        "SELECT id FROM parts WHERE part_number=? AND diagram_id=?",
                        (part.part_number, part.diagram_id),
                    ).fetchone()
                    previous_id = row["id"] if row else None
        return inserted

    def update_diagram_image_path(self, diagram_id: str, image_path: str):
        with self._connect() as conn:
            conn.execute("UPDATE diagrams SET image_path=? WHERE id=?",
                         (image_path, diagram_id))

    # ----------------------- CATALOGUE READS -----------------------------

    def get_diagram(self, diagram_id: str) -> Optional[Diagram]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {', '.join(DIAGRAM_COLUMNS)} FROM diagrams WHERE id=?",
                (diagram_id,),
            ).fetchone()
            return Diagram(**dict(row)) if row else None

    def diagrams_without_images(self) -> List[Diagram]:
        with self._connect() as conn:
            rows = conn.execute(f"""
                SELECT {', '.join(DIAGRAM_COLUMNS)} FROM diagrams
                WHERE image_url IS NOT NULL AND image_path IS NULL
                ORDER BY id
            """).fetchall()
            return [Diagram(**dict(r)) for r in rows]

    def get_parts(self, diagram_id: Optional[str] = None) -> List[Part]:
        sql = f"SELECT {', '.join(PART_COLUMNS)} FROM parts"
        params: tuple = ()
        if diagram_id is not None:
            sql += " WHERE diagram_id=?"
            params = (diagram_id,)
        with self._connect() as conn:
            rows = conn.execute(sql + " ORDER BY id", params).fetchall()
            return [Part(**dict(r)) for r in rows]

    def parts_for_detail_page(self, detail_page_id: str) -> List[Part]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(PART_COLUMNS)} FROM parts WHERE detail_page_id=? ORDER BY id",
                (detail_page_id,),
            ).fetchall()
            return [Part(**dict(r)) for r in rows]

    def multi_diagram_paths(self) -> List[Tuple[str, str, int]]:
        """Listing paths backing more than one diagram: (path, group_id, diagram_count)."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT s.path, s.group_id, COUNT(DISTINCT d.id) AS diagram_count
                FROM subgroups s
                JOIN diagrams d ON d.subgroup_id = s.id AND d.id != s.path
                GROUP BY s.path
                HAVING diagram_count > 1
                ORDER BY s.path
            """).fetchall()
            return [(r["path"], r["group_id"], r["diagram_count"]) for r in rows]

    def diagrams_for_path(self, path: str) -> List[Diagram]:
        """Section diagrams minted from one listing page (ids of the form path/slug)."""
        with self._connect() as conn:
            rows = conn.execute(f"""
                SELECT {', '.join(['d.' + c for c in DIAGRAM_COLUMNS])}
                FROM diagrams d
                JOIN subgroups s ON d.subgroup_id = s.id
                WHERE s.path = ? AND d.id != ?
                ORDER BY d.id
            """, (path, path)).fetchall()
            return [Diagram(**dict(r)) for r in rows]

    # ----------------------- REPLACEMENTS --------------------------------

    def replacement_links(self) -> List[Tuple[int, int, str]]:
        """(replaced_id, replacement_id, replacement_part_number) for every live reference."""
        with self._connect() as conn:
            rows = conn.execute("""
                SELECT r.replaces_id AS replaced_id, r.id AS replacement_id, r.part_number
                FROM parts r
                JOIN parts p ON p.id = r.replaces_id
                ORDER BY r.id
            """).fetchall()
            return [(r["replaced_id"], r["replacement_id"], r["part_number"]) for r in rows]

    def apply_replacements(self, links: Sequence[Tuple[int, int, str]]) -> int:
        """Copy each replacement's number onto the replaced row, then delete the replacement.

        Update and delete run in one transaction. Returns rows deleted.
        """
        if not links:
            return 0
        with self._connect() as conn:
            conn.executemany(
                "UPDATE parts SET replacement_part_number=? WHERE id=?",
                [(part_number, replaced_id) for replaced_id, _, part_number in links],
            )
            cur = conn.executemany(
                "DELETE FROM parts WHERE id=?",
                [(replacement_id,) for _, replacement_id, _ in links],
            )
            return cur.rowcount

    # ----------------------- STATS / QUERY / EXPORT ----------------------

    def get_stats(self) -> dict:
        with self._connect() as conn:
            stats = {"pending_count": 0, "completed_count": 0, "failed_count": 0}
            for row in conn.execute("SELECT status, COUNT(*) FROM crawl_state GROUP BY status"):
                stats[f"{row[0]}_count"] = row[1]
            stats["total_urls"] = conn.execute("SELECT COUNT(*) FROM crawl_state").fetchone()[0]
            for table in ("groups", "subgroups", "diagrams", "parts"):
                stats[f"total_{table}"] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            stats["images_downloaded"] = conn.execute(
                "SELECT COUNT(*) FROM diagrams WHERE image_path IS NOT NULL").fetchone()[0]
            return stats

    def execute_query(self, sql: str) -> pd.DataFrame:
        """Run an ad-hoc read query."""
        with self._connect() as conn:
            return pd.read_sql_query(sql, conn)

    def _fetch_catalogue_df(self) -> pd.DataFrame:
        with self._connect() as conn:
            df = pd.read_sql_query("""
                SELECT p.group_id, g.name AS group_name, p.subgroup_id, s.name AS subgroup_name,
                       p.diagram_id, d.name AS diagram_name, p.detail_page_id, p.ref_number,
                       p.pnc, p.part_number, p.description, p.quantity, p.spec, p.notes,
                       p.color, p.model_date_range, p.replacement_part_number,
                       d.image_path, d.source_url
                FROM parts p
                LEFT JOIN groups g ON g.id = p.group_id
                LEFT JOIN subgroups s ON s.id = p.subgroup_id
                LEFT JOIN diagrams d ON d.id = p.diagram_id
                ORDER BY p.group_id, p.diagram_id, p.id
            """, conn)
        return df.reindex(columns=PART_EXPORT_HEADERS)

    def export_parts(self, csv_path: Path = None, parquet_path: Optional[Path] = None) -> int:
        """Write the joined parts catalogue to CSV (and Parquet if requested)."""
        df = self._fetch_catalogue_df()

        csv_path = Path(csv_path or config.CSV_OUTPUT)
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(csv_path, index=False)
        logger.info(f"Wrote {len(df)} parts to CSV: {csv_path}")

        if parquet_path:
            parquet_path = Path(parquet_path)
            parquet_path.parent.mkdir(parents=True, exist_ok=True)
            df.to_parquet(parquet_path, index=False)
            logger.info(f"Wrote {len(df)} parts to Parquet: {parquet_path}")

        return len(df)
