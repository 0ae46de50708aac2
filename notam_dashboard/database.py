"""Database module for the dashboard's local state."""
import json
import sqlite3
import time
import uuid
from typing import Any, Dict, List, Optional
from contextlib import contextmanager
import logging

from notam_dashboard.models.notam import NotamRecord, validate_codes

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1


class NotamStore:
    """
    Local persisted state: configured codes, named code sets, the record
    cache and the active-session claim.
    """

    def __init__(self, db_path: str):
        """Initialize database connection."""
        self.db_path = db_path
        self._init_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self):
        """Create database tables if they don't exist."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS configured_codes (
                    code TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    added_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS code_sets (
                    name TEXT PRIMARY KEY,
                    codes TEXT NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS record_cache (
                    code TEXT PRIMARY KEY,
                    records TEXT NOT NULL,
                    cached_at REAL NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS session (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    session_id TEXT NOT NULL,
                    claimed_at REAL NOT NULL
                )
            ''')

            logger.info(f"Database initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Configured codes
    # ------------------------------------------------------------------

    def get_codes(self) -> List[str]:
        """Configured airport codes in the order they were added."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT code FROM configured_codes ORDER BY position')
            return [row['code'] for row in cursor.fetchall()]

    def save_codes(self, codes: List[str]) -> List[str]:
        """
        Replace the configured codes.

        Raises:
            InvalidAirportCodeError: if any code is malformed (nothing is written)
        """
        codes = validate_codes(codes)
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM configured_codes')
            cursor.executemany(
                'INSERT INTO configured_codes (code, position) VALUES (?, ?)',
                [(code, position) for position, code in enumerate(codes)]
            )
        return codes

    def add_codes(self, codes: List[str]) -> List[str]:
        """Append codes not configured yet. Returns the codes added."""
        new_codes = validate_codes(codes)
        current = self.get_codes()
        added = [code for code in new_codes if code not in current]
        if added:
            self.save_codes(current + added)
        return added

    def remove_code(self, code: str) -> bool:
        """Remove one configured code and its cached records."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM configured_codes WHERE code = ?', (code,))
            removed = cursor.rowcount > 0
            cursor.execute('DELETE FROM record_cache WHERE code = ?', (code,))
            return removed

    # ------------------------------------------------------------------
    # Named sets
    # ------------------------------------------------------------------

    def get_sets(self) -> Dict[str, List[str]]:
        """All named code sets."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT name, codes FROM code_sets ORDER BY name')
            return {row['name']: json.loads(row['codes']) for row in cursor.fetchall()}

    def get_set(self, name: str) -> Optional[List[str]]:
        return self.get_sets().get(name)

    def add_set(self, name: str, codes: List[str]) -> List[str]:
        """
        Save a named set, overwriting one with the same name.

        Raises:
            ValueError: if the name is empty
            InvalidAirportCodeError: if any code is malformed
        """
        name = (name or '').strip()
        if not name:
            raise ValueError("Set name is required")
        codes = validate_codes(codes)
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO code_sets (name, codes) VALUES (?, ?)
                ON CONFLICT(name) DO UPDATE SET codes = excluded.codes, updated_at = CURRENT_TIMESTAMP
            ''', (name, json.dumps(codes)))
        logger.info(f"Saved set '{name}' with {len(codes)} code(s)")
        return codes

    def update_set(self, name: str, codes: List[str]) -> bool:
        """Replace the codes of an existing set. Returns False if it does not exist."""
        codes = validate_codes(codes)
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'UPDATE code_sets SET codes = ?, updated_at = CURRENT_TIMESTAMP WHERE name = ?',
                (json.dumps(codes), name)
            )
            return cursor.rowcount > 0

    def delete_set(self, name: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM code_sets WHERE name = ?', (name,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Record cache
    # ------------------------------------------------------------------

    def save_records(self, code: str, records: List[NotamRecord], cached_at: Optional[float] = None):
        """Store the latest successful record set for one code."""
        cached_at = time.time() if cached_at is None else cached_at
        payload = json.dumps([record.to_dict() for record in records])
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO record_cache (code, records, cached_at) VALUES (?, ?, ?)
                ON CONFLICT(code) DO UPDATE SET records = excluded.records, cached_at = excluded.cached_at
            ''', (code, payload, cached_at))

    def get_cached_records(self, max_age_seconds: float, now: Optional[float] = None) -> Dict[str, List[NotamRecord]]:
        """
        Cached record sets still within the freshness window.

        Stale entries are deleted.

        Returns:
            Dictionary of code -> records
        """
        now = time.time() if now is None else now
        cutoff = now - max_age_seconds
        result = {}
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM record_cache WHERE cached_at < ?', (cutoff,))
            if cursor.rowcount:
                logger.info(f"Discarded {cursor.rowcount} stale cache entr{'y' if cursor.rowcount == 1 else 'ies'}")
            cursor.execute('SELECT code, records FROM record_cache')
            for row in cursor.fetchall():
                try:
                    result[row['code']] = [NotamRecord.from_dict(d) for d in json.loads(row['records'])]
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"Ignoring unreadable cache entry for {row['code']}: {e}")
        return result

    def clear_cache(self) -> int:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM record_cache')
            return cursor.rowcount

    # ------------------------------------------------------------------
    # Active session
    # ------------------------------------------------------------------

    def claim_session(self, session_id: Optional[str] = None) -> str:
        """Make ``session_id`` the active session, replacing any other."""
        session_id = session_id or uuid.uuid4().hex
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO session (id, session_id, claimed_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET session_id = excluded.session_id, claimed_at = excluded.claimed_at
            ''', (session_id, time.time()))
        logger.info(f"Session {session_id[:8]} claimed")
        return session_id

    def active_session_id(self) -> Optional[str]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('SELECT session_id FROM session WHERE id = 1')
            row = cursor.fetchone()
            return row['session_id'] if row else None

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_data(self) -> Dict[str, Any]:
        """Configured codes and named sets as a JSON-friendly dictionary."""
        return {
            'version': EXPORT_VERSION,
            'codes': self.get_codes(),
            'sets': self.get_sets(),
        }

    def import_data(self, data: Dict[str, Any]) -> Dict[str, int]:
        """
        Merge exported data into the store.

        Codes are appended, sets with the same name are overwritten.

        Returns:
            Counts of imported codes and sets
        """
        if not isinstance(data, dict):
            raise ValueError("Import data must be a JSON object")
        added = self.add_codes(data.get('codes') or [])
        sets = data.get('sets') or {}
        for name, codes in sets.items():
            self.add_set(name, codes)
        logger.info(f"Imported {len(added)} code(s) and {len(sets)} set(s)")
        return {'codes': len(added), 'sets': len(sets)}
