import sqlite3
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .. import config
from ..exceptions import StoreError
from ..models import MovieCatalogEntry, MovieFileRecord, ThumbnailRecord

MOVIE_COLUMNS = [
    'movie_id', 'movie_seq', 'movie_date_id', 'site_id', 'release_date', 'expire_date',
    'production_status', 'duration_seconds', 'has_flash_image', 'updated',
]
MOVIE_FILE_COLUMNS = [f.name for f in fields(MovieFileRecord) if f.name != 'file_number']
THUMBNAIL_COLUMNS = [f.name for f in fields(ThumbnailRecord) if f.name != 'file_number']


def to_db_date(value: Optional[datetime]) -> Optional[str]:
    """Datetimes are stored as naive UTC strings so they compare as text."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(config.DATE_FORMAT)


def from_db_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value))
    except ValueError:
        logging.warning(f"Unparsable date in catalog: {value!r}")
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _movie_from_row(row: sqlite3.Row) -> MovieCatalogEntry:
    return MovieCatalogEntry(
        movie_id=row['movie_id'],
        movie_seq=row['movie_seq'],
        movie_date_id=row['movie_date_id'],
        site_id=row['site_id'],
        release_date=from_db_date(row['release_date']),
        expire_date=from_db_date(row['expire_date']),
        production_status=row['production_status'],
        duration_seconds=row['duration_seconds'],
        has_flash_image=bool(row['has_flash_image']),
        updated=from_db_date(row['updated']),
    )


def _movie_file_from_row(row: sqlite3.Row) -> MovieFileRecord:
    data = {c: row[c] for c in MOVIE_FILE_COLUMNS}
    data['fake_flag'] = bool(data['fake_flag'])
    return MovieFileRecord(file_number=row['file_number'], **data)


def _thumbnail_from_row(row: sqlite3.Row) -> ThumbnailRecord:
    return ThumbnailRecord(file_number=row['file_number'], **{c: row[c] for c in THUMBNAIL_COLUMNS})


class CatalogOperations:
    """
    Relational catalog store. All statements run under one re-entrant lock so a
    single connection can be shared between worker threads; transaction()
    holds the lock for its whole body.
    """
    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.RLock] = None):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self.lock = lock or threading.RLock()
        self._tx_depth = 0

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator["CatalogOperations"]:
        """
        BEGIN/COMMIT around the body, ROLLBACK on any exception. Nested calls
        join the outer transaction.
        """
        with self.lock:
            outer = self._tx_depth == 0
            if outer:
                self._execute("BEGIN")
            self._tx_depth += 1
            try:
                yield self
            except BaseException:
                self._tx_depth -= 1
                if outer:
                    self._rollback()
                raise
            self._tx_depth -= 1
            if outer:
                self._execute("COMMIT")

    def _rollback(self):
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logging.error(f"Rollback failed: {e}")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self.lock:
            try:
                return self.conn.execute(sql, params)
            except sqlite3.Error as e:
                raise StoreError(f"{e} (while running: {' '.join(sql.split())[:120]})") from e

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self.lock:
            return self._execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self.lock:
            return self._execute(sql, params).fetchone()

    # --- Movies ---

    def insert_movie(self, movie: MovieCatalogEntry):
        """Adds a movie row. The content catalog normally owns these."""
        data = asdict(movie)
        for key in ('release_date', 'expire_date', 'updated'):
            data[key] = to_db_date(data[key])
        data['has_flash_image'] = int(bool(data['has_flash_image']))
        cols = ', '.join(MOVIE_COLUMNS)
        marks = ', '.join('?' for _ in MOVIE_COLUMNS)
        self._execute(f"INSERT INTO movies ({cols}) VALUES ({marks})", [data[c] for c in MOVIE_COLUMNS])

    def fetch_movie(self, movie_id: int) -> Optional[MovieCatalogEntry]:
        row = self._fetchone(f"SELECT {', '.join(MOVIE_COLUMNS)} FROM movies WHERE movie_id = ?", (movie_id,))
        return _movie_from_row(row) if row else None

    def fetch_movies(self,
                     site_id: int,
                     updated_within_hours: Optional[float] = None,
                     released_days_ago: Optional[float] = None,
                     movie_id: Optional[int] = None,
                     limit: Optional[int] = None,
                     offset: Optional[int] = None,
                     now: Optional[datetime] = None) -> List[MovieCatalogEntry]:
        """
        Movies of a site to reconcile, newest movie_id first.

        Args:
            updated_within_hours: only movies updated in the last N hours, plus any
                                  movie whose release date is at most 2 hours ago.
                                  None or 0 selects all movies.
            released_days_ago: approved movies released in the last N days. Takes
                               precedence over updated_within_hours.
            movie_id: restrict to a single movie.
        """
        now = now or datetime.now(timezone.utc)
        where = ["site_id = ?"]
        params: List[Any] = [site_id]

        if released_days_ago and released_days_ago > 0:
            where.append("release_date >= ?")
            params.append(to_db_date(now - timedelta(days=released_days_ago)))
            where.append("production_status = ?")
            params.append(config.APPROVED)
        elif updated_within_hours and updated_within_hours > 0:
            where.append("(updated >= ? OR release_date >= ?)")
            params.append(to_db_date(now - timedelta(hours=updated_within_hours)))
            params.append(to_db_date(now - timedelta(hours=config.RELEASE_RECHECK_HOURS)))

        if movie_id and movie_id > 0:
            where.append("movie_id = ?")
            params.append(movie_id)

        sql = f"SELECT {', '.join(MOVIE_COLUMNS)} FROM movies WHERE {' AND '.join(where)} ORDER BY movie_id DESC"
        if limit and limit > 0:
            sql += " LIMIT ?"
            params.append(limit)
            if offset and offset > 0:
                sql += " OFFSET ?"
                params.append(offset)

        return [_movie_from_row(r) for r in self._fetchall(sql, params)]

    def update_movie_duration(self, movie_id: int, duration_seconds: int):
        self._execute("UPDATE movies SET duration_seconds = ? WHERE movie_id = ?", (duration_seconds, movie_id))

    def update_movie_has_flash_image(self, movie_id: int) -> bool:
        """Sets has_flash_image once. Returns True if the row changed."""
        cur = self._execute(
            "UPDATE movies SET has_flash_image = 1 WHERE movie_id = ? AND has_flash_image = 0",
            (movie_id,),
        )
        return cur.rowcount > 0

    # --- Path cache loading ---

    def load_movie_file_paths(self, movie_ids: Sequence[int]) -> List[Tuple[MovieFileRecord, int, str]]:
        """
        Real (non fake) movie file rows for the given movies, with the owning
        movie's (site_id, movie_date_id).
        """
        if not movie_ids:
            return []
        marks = ', '.join('?' for _ in movie_ids)
        cols = ', '.join(f"f.{c}" for c in ['file_number'] + MOVIE_FILE_COLUMNS)
        rows = self._fetchall(f"""
            SELECT {cols}, m.site_id AS m_site_id, m.movie_date_id AS m_movie_date_id
            FROM movie_files f
            JOIN movies m ON m.movie_id = f.movie_id
            WHERE f.movie_id IN ({marks}) AND f.fake_flag = 0
        """, list(movie_ids))
        return [(_movie_file_from_row(r), r['m_site_id'], r['m_movie_date_id']) for r in rows]

    def load_thumbnail_paths(self, movie_ids: Sequence[int]) -> List[Tuple[ThumbnailRecord, int, str]]:
        if not movie_ids:
            return []
        marks = ', '.join('?' for _ in movie_ids)
        cols = ', '.join(f"t.{c}" for c in ['file_number'] + THUMBNAIL_COLUMNS)
        rows = self._fetchall(f"""
            SELECT {cols}, m.site_id AS m_site_id, m.movie_date_id AS m_movie_date_id
            FROM thumbnails t
            JOIN movies m ON m.movie_id = t.movie_id
            WHERE t.movie_id IN ({marks})
        """, list(movie_ids))
        return [(_thumbnail_from_row(r), r['m_site_id'], r['m_movie_date_id']) for r in rows]

    # --- Movie files ---

    def get_movie_file(self, file_number: int) -> Optional[MovieFileRecord]:
        row = self._fetchone("SELECT * FROM movie_files WHERE file_number = ?", (file_number,))
        return _movie_file_from_row(row) if row else None

    def find_fake_movie_file(self, movie_id: int, path: str) -> Optional[MovieFileRecord]:
        row = self._fetchone(
            "SELECT * FROM movie_files WHERE movie_id = ? AND path = ? AND fake_flag = 1",
            (movie_id, path),
        )
        return _movie_file_from_row(row) if row else None

    def insert_movie_file(self, rec: MovieFileRecord) -> int:
        data = asdict(rec)
        data['fake_flag'] = int(bool(data['fake_flag']))
        cols = ', '.join(MOVIE_FILE_COLUMNS)
        marks = ', '.join('?' for _ in MOVIE_FILE_COLUMNS)
        cur = self._execute(
            f"INSERT INTO movie_files ({cols}) VALUES ({marks})",
            [data[c] for c in MOVIE_FILE_COLUMNS],
        )
        if cur.lastrowid is None:
            raise StoreError("Database INSERT failed to return a row ID.")
        return cur.lastrowid

    def update_movie_file(self, file_number: int, rec: MovieFileRecord):
        data = asdict(rec)
        data['fake_flag'] = int(bool(data['fake_flag']))
        assignments = ', '.join(f"{c} = ?" for c in MOVIE_FILE_COLUMNS)
        self._execute(
            f"UPDATE movie_files SET {assignments} WHERE file_number = ?",
            [data[c] for c in MOVIE_FILE_COLUMNS] + [file_number],
        )

    def set_movie_file_status(self, file_number: int, status: int):
        self._execute("UPDATE movie_files SET status = ? WHERE file_number = ?", (status, file_number))

    # --- Thumbnails ---

    def get_thumbnail(self, file_number: int) -> Optional[ThumbnailRecord]:
        row = self._fetchone("SELECT * FROM thumbnails WHERE file_number = ?", (file_number,))
        return _thumbnail_from_row(row) if row else None

    def thumbnails_for_movie(self, movie_id: int) -> List[ThumbnailRecord]:
        rows = self._fetchall("SELECT * FROM thumbnails WHERE movie_id = ? ORDER BY file_number", (movie_id,))
        return [_thumbnail_from_row(r) for r in rows]

    def insert_thumbnail(self, rec: ThumbnailRecord) -> int:
        data = asdict(rec)
        cols = ', '.join(THUMBNAIL_COLUMNS)
        marks = ', '.join('?' for _ in THUMBNAIL_COLUMNS)
        cur = self._execute(
            f"INSERT INTO thumbnails ({cols}) VALUES ({marks})",
            [data[c] for c in THUMBNAIL_COLUMNS],
        )
        if cur.lastrowid is None:
            raise StoreError("Database INSERT failed to return a row ID.")
        return cur.lastrowid

    def update_thumbnail(self, file_number: int, rec: ThumbnailRecord):
        """
        Rewrites the probed columns. flashimage_flag is owned by the flash
        priority pass and left alone here.
        """
        data = asdict(rec)
        cols = [c for c in THUMBNAIL_COLUMNS if c != 'flashimage_flag']
        assignments = ', '.join(f"{c} = ?" for c in cols)
        self._execute(
            f"UPDATE thumbnails SET {assignments} WHERE file_number = ?",
            [data[c] for c in cols] + [file_number],
        )

    def set_thumbnail_flash_flag(self, file_number: int, flag: int):
        self._execute("UPDATE thumbnails SET flashimage_flag = ? WHERE file_number = ?", (flag, file_number))

    def set_thumbnail_status(self, file_number: int, status: int):
        self._execute("UPDATE thumbnails SET status = ? WHERE file_number = ?", (status, file_number))

    # --- Maintenance ---

    def propagate_legacy_movie_seq(self):
        """
        Copies legacy.legacy_movie_seq into file rows whose movie_seq is unset.
        """
        with self.transaction():
            for table in ('movie_files', 'thumbnails'):
                self._execute(f"""
                    UPDATE {table}
                    SET movie_seq = (SELECT l.legacy_movie_seq FROM legacy l WHERE l.movie_id = {table}.movie_id)
                    WHERE (movie_seq IS NULL OR movie_seq = 0)
                      AND movie_id IN (SELECT movie_id FROM legacy)
                """)

    def count_rows(self, table: str) -> int:
        """Row count for reporting and tests."""
        if table not in ('movies', 'movie_files', 'thumbnails', 'legacy'):
            raise ValueError(f"Unknown table: {table}")
        return self._fetchone(f"SELECT COUNT(*) FROM {table}")[0]
