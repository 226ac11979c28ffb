# src/ransom_cti/core/db.py
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ransom_cti.core.config import DB_PATH
from ransom_cti.core.models import Incident, SourceSet, ThreatActor, name_key
from ransom_cti.core.utils import now_utc_iso

logger = logging.getLogger(__name__)


def get_connection(
    db_path: Union[Path, str] = DB_PATH,
    timeout: float = 30.0,
) -> sqlite3.Connection:
    """
    Get a database connection configured for concurrent access.

    Separate adapters may run as separate processes against the same file,
    so WAL mode and a generous busy timeout are enabled.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=30000")
        conn.execute("PRAGMA foreign_keys=ON")
    except sqlite3.Error as e:
        # e.g. read-only or network filesystems
        logger.warning(f"Could not enable WAL mode: {e}. Continuing with default journal mode.")

    return conn


@contextmanager
def db_transaction(conn: sqlite3.Connection, commit: bool = True):
    """
    Context manager for a single short write.

    Usage:
        with db_transaction(conn):
            conn.execute("INSERT INTO ...")
    """
    try:
        yield conn
        if commit:
            conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db(conn: sqlite3.Connection) -> None:
    """
    Create tables for actors, incidents, provenance and run statistics.

    Schema design:
    - threat_actors: one row per name_key (UNIQUE backstop for racing writers)
    - actor_aliases: alternate names resolving to a canonical actor
    - incidents: one row per (actor_id, victim_name, discovered_date)
    - incident_sources: provenance set of each incident, in arrival order
    - sync_log: per-run statistics
    """
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS threat_actors (
            id           TEXT PRIMARY KEY,
            name         TEXT NOT NULL,
            name_key     TEXT NOT NULL UNIQUE,
            actor_type   TEXT DEFAULT 'ransomware',
            status       TEXT DEFAULT 'active',
            source       TEXT,
            description  TEXT,
            last_seen    TEXT,
            metadata     TEXT DEFAULT '{}',
            created_at   TEXT,
            updated_at   TEXT
        );

        CREATE TABLE IF NOT EXISTS actor_aliases (
            alias_key    TEXT PRIMARY KEY,
            alias        TEXT NOT NULL,
            actor_id     TEXT NOT NULL,
            source       TEXT,
            created_at   TEXT,
            FOREIGN KEY (actor_id) REFERENCES threat_actors(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS incidents (
            id               TEXT PRIMARY KEY,
            actor_id         TEXT NOT NULL,
            victim_name      TEXT NOT NULL,
            victim_sector    TEXT,
            victim_country   TEXT,
            victim_website   TEXT,
            discovered_date  TEXT NOT NULL,   -- YYYY-MM-DD
            status           TEXT DEFAULT 'claimed',
            source_url       TEXT,
            raw_data         TEXT DEFAULT '{}',
            created_at       TEXT,
            updated_at       TEXT,
            UNIQUE (actor_id, victim_name, discovered_date),
            FOREIGN KEY (actor_id) REFERENCES threat_actors(id)
        );

        CREATE TABLE IF NOT EXISTS incident_sources (
            incident_id    TEXT NOT NULL,
            source         TEXT NOT NULL,
            first_seen_at  TEXT NOT NULL,
            PRIMARY KEY (incident_id, source),
            FOREIGN KEY (incident_id) REFERENCES incidents(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS sync_log (
            id                 INTEGER PRIMARY KEY AUTOINCREMENT,
            source             TEXT NOT NULL,
            status             TEXT NOT NULL,
            records_processed  INTEGER DEFAULT 0,
            records_added      INTEGER DEFAULT 0,
            records_updated    INTEGER DEFAULT 0,
            error_message      TEXT,
            metadata           TEXT DEFAULT '{}',
            completed_at       TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_incidents_actor ON incidents(actor_id);
        CREATE INDEX IF NOT EXISTS idx_incidents_date ON incidents(discovered_date);
        CREATE INDEX IF NOT EXISTS idx_incident_sources_source ON incident_sources(source);
        CREATE INDEX IF NOT EXISTS idx_actor_aliases_actor ON actor_aliases(actor_id);
        """
    )
    conn.commit()


def _now() -> str:
    return now_utc_iso()


def _parse_day(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


# ---- Threat actors ----


def _aliases_by_actor(conn: sqlite3.Connection) -> Dict[str, List[str]]:
    aliases: Dict[str, List[str]] = {}
    cur = conn.execute("SELECT alias, actor_id FROM actor_aliases ORDER BY rowid")
    for row in cur.fetchall():
        aliases.setdefault(row["actor_id"], []).append(row["alias"])
    return aliases


def _row_to_actor(row, aliases: Optional[List[str]] = None) -> ThreatActor:
    return ThreatActor(
        id=row["id"],
        name=row["name"],
        name_key=row["name_key"],
        aliases=list(aliases or []),
        actor_type=row["actor_type"] or "ransomware",
        status=row["status"] or "active",
        source=row["source"],
        description=row["description"],
        last_seen=_parse_day(row["last_seen"]),
        metadata=json.loads(row["metadata"] or "{}"),
    )


def load_actors(conn: sqlite3.Connection) -> List[ThreatActor]:
    """Bulk read of every actor (with aliases), used to seed the name cache."""
    aliases = _aliases_by_actor(conn)
    cur = conn.execute("SELECT * FROM threat_actors ORDER BY rowid")
    return [_row_to_actor(row, aliases.get(row["id"])) for row in cur.fetchall()]


def load_actor(conn: sqlite3.Connection, actor_id: str) -> Optional[ThreatActor]:
    cur = conn.execute("SELECT * FROM threat_actors WHERE id = ?", (actor_id,))
    row = cur.fetchone()
    if not row:
        return None
    alias_cur = conn.execute(
        "SELECT alias FROM actor_aliases WHERE actor_id = ? ORDER BY rowid", (actor_id,)
    )
    return _row_to_actor(row, [r["alias"] for r in alias_cur.fetchall()])


def insert_actor(conn: sqlite3.Connection, actor: ThreatActor) -> ThreatActor:
    """
    Insert a new actor.

    Raises sqlite3.IntegrityError when another writer already owns the
    name_key; callers recover with find_actor_by_name().
    """
    now = _now()
    with db_transaction(conn):
        conn.execute(
            """
            INSERT INTO threat_actors
            (id, name, name_key, actor_type, status, source, description,
             last_seen, metadata, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                actor.id,
                actor.name,
                actor.name_key,
                actor.actor_type,
                actor.status,
                actor.source,
                actor.description,
                actor.last_seen.isoformat() if actor.last_seen else None,
                json.dumps(actor.metadata or {}),
                now,
                now,
            ),
        )
    return actor


def find_actor_by_name(conn: sqlite3.Connection, name: str) -> Optional[ThreatActor]:
    """Case-insensitive lookup on the actor name, then on recorded aliases."""
    key = name_key(name)
    if not key:
        return None

    cur = conn.execute(
        "SELECT id FROM threat_actors WHERE name_key = ? OR LOWER(TRIM(name)) = ? LIMIT 1",
        (key, key),
    )
    row = cur.fetchone()
    if row is None:
        cur = conn.execute("SELECT actor_id AS id FROM actor_aliases WHERE alias_key = ?", (key,))
        row = cur.fetchone()
    if row is None:
        return None
    return load_actor(conn, row["id"])


def add_actor_alias(
    conn: sqlite3.Connection,
    actor_id: str,
    alias: str,
    source: Optional[str] = None,
) -> bool:
    """Record an alias for an actor. Returns False if the alias was already taken."""
    with db_transaction(conn):
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO actor_aliases (alias_key, alias, actor_id, source, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (name_key(alias), alias.strip(), actor_id, source, _now()),
        )
    return cur.rowcount > 0


def update_actor_last_seen(conn: sqlite3.Connection, actor_id: str, last_seen: date) -> None:
    with db_transaction(conn):
        conn.execute(
            "UPDATE threat_actors SET last_seen = ?, updated_at = ? WHERE id = ?",
            (last_seen.isoformat(), _now(), actor_id),
        )


def latest_incident_dates(
    conn: sqlite3.Connection,
    actor_ids: Iterable[str],
) -> Dict[str, date]:
    """Max discovered_date per actor, computed in one grouped query."""
    ids = list(dict.fromkeys(actor_ids))
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    cur = conn.execute(
        f"""
        SELECT actor_id, MAX(discovered_date) AS last_seen
        FROM incidents
        WHERE actor_id IN ({placeholders})
        GROUP BY actor_id
        """,
        ids,
    )
    return {
        row["actor_id"]: date.fromisoformat(row["last_seen"])
        for row in cur.fetchall()
        if row["last_seen"]
    }


def count_actors(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM threat_actors").fetchone()[0]


# ---- Incidents ----


def get_incident_sources(conn: sqlite3.Connection, incident_id: str) -> SourceSet:
    cur = conn.execute(
        "SELECT source FROM incident_sources WHERE incident_id = ? ORDER BY rowid",
        (incident_id,),
    )
    return SourceSet(row["source"] for row in cur.fetchall())


def _row_to_incident(conn: sqlite3.Connection, row) -> Incident:
    return Incident(
        id=row["id"],
        actor_id=row["actor_id"],
        victim_name=row["victim_name"],
        victim_sector=row["victim_sector"] or "Other",
        discovered_date=date.fromisoformat(row["discovered_date"]),
        source=get_incident_sources(conn, row["id"]),
        victim_country=row["victim_country"],
        victim_website=row["victim_website"],
        status=row["status"] or "claimed",
        source_url=row["source_url"],
        raw_data=json.loads(row["raw_data"] or "{}"),
    )


def find_incident_by_key(
    conn: sqlite3.Connection,
    actor_id: str,
    victim_name: str,
    discovered_date: date,
) -> Optional[Incident]:
    """Exact lookup on the dedup key (actor_id, victim_name, discovered_date)."""
    cur = conn.execute(
        """
        SELECT * FROM incidents
        WHERE actor_id = ? AND victim_name = ? AND discovered_date = ?
        """,
        (actor_id, victim_name, discovered_date.isoformat()),
    )
    row = cur.fetchone()
    return _row_to_incident(conn, row) if row else None


def load_incident_by_id(conn: sqlite3.Connection, incident_id: str) -> Optional[Incident]:
    cur = conn.execute("SELECT * FROM incidents WHERE id = ?", (incident_id,))
    row = cur.fetchone()
    return _row_to_incident(conn, row) if row else None


def insert_incident(conn: sqlite3.Connection, incident: Incident) -> str:
    """
    Insert a new incident together with its provenance rows.

    Raises sqlite3.IntegrityError if the dedup key already exists (a racing
    writer got there first).
    """
    now = _now()
    with db_transaction(conn):
        conn.execute(
            """
            INSERT INTO incidents
            (id, actor_id, victim_name, victim_sector, victim_country, victim_website,
             discovered_date, status, source_url, raw_data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                incident.id,
                incident.actor_id,
                incident.victim_name,
                incident.victim_sector,
                incident.victim_country,
                incident.victim_website,
                incident.discovered_date.isoformat(),
                incident.status,
                incident.source_url,
                json.dumps(incident.raw_data or {}),
                now,
                now,
            ),
        )
        for tag in incident.source:
            _add_incident_source(conn, incident.id, tag, now)
    return incident.id


def _add_incident_source(conn: sqlite3.Connection, incident_id: str, source: str, first_seen_at: str) -> None:
    conn.execute(
        """
        INSERT OR IGNORE INTO incident_sources (incident_id, source, first_seen_at)
        VALUES (?, ?, ?)
        """,
        (incident_id, source, first_seen_at),
    )


def update_incident(
    conn: sqlite3.Connection,
    incident_id: str,
    sources: SourceSet,
    raw_data: Dict[str, Any],
) -> None:
    """
    Corroboration write: extend the provenance set and replace raw_data.

    No other incident column is touched.
    """
    now = _now()
    with db_transaction(conn):
        for tag in sources:
            _add_incident_source(conn, incident_id, tag, now)
        conn.execute(
            "UPDATE incidents SET raw_data = ?, updated_at = ? WHERE id = ?",
            (json.dumps(raw_data or {}), now, incident_id),
        )


def update_incident_sector(conn: sqlite3.Connection, incident_id: str, sector: str) -> None:
    with db_transaction(conn):
        conn.execute(
            "UPDATE incidents SET victim_sector = ?, updated_at = ? WHERE id = ?",
            (sector, _now(), incident_id),
        )


def load_incidents_page(
    conn: sqlite3.Connection,
    offset: int,
    limit: int,
) -> List[Incident]:
    cur = conn.execute(
        "SELECT * FROM incidents ORDER BY rowid LIMIT ? OFFSET ?",
        (limit, offset),
    )
    return [_row_to_incident(conn, row) for row in cur.fetchall()]


def count_incidents(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM incidents").fetchone()[0]


# ---- Run statistics ----


def record_sync_run(
    conn: sqlite3.Connection,
    *,
    source: str,
    status: str,
    records_processed: int,
    records_added: int,
    records_updated: int,
    completed_at: str,
    error_message: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    with db_transaction(conn):
        conn.execute(
            """
            INSERT INTO sync_log
            (source, status, records_processed, records_added, records_updated,
             error_message, metadata, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source,
                status,
                records_processed,
                records_added,
                records_updated,
                error_message,
                json.dumps(metadata or {}),
                completed_at,
            ),
        )


def load_sync_runs(conn: sqlite3.Connection, source: Optional[str] = None) -> List[dict]:
    if source:
        cur = conn.execute("SELECT * FROM sync_log WHERE source = ? ORDER BY id", (source,))
    else:
        cur = conn.execute("SELECT * FROM sync_log ORDER BY id")
    runs = []
    for row in cur.fetchall():
        run = dict(row)
        run["metadata"] = json.loads(run["metadata"] or "{}")
        runs.append(run)
    return runs
