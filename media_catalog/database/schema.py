"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the catalog schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        # Initialize version if missing
        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Movies (owned by the content catalog, read mostly)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS movies (
            movie_id          INTEGER PRIMARY KEY,
            movie_seq         INTEGER,
            movie_date_id     TEXT NOT NULL,
            site_id           INTEGER NOT NULL,
            release_date      TEXT,                 -- UTC, 'YYYY-MM-DD HH:MM:SS'
            expire_date       TEXT,
            production_status TEXT,
            duration_seconds  INTEGER,
            has_flash_image   INTEGER NOT NULL DEFAULT 0,
            updated           TEXT
        );
        """)

        # 3. Movie files: member movies, samples and their fake path aliases
        conn.execute("""
        CREATE TABLE IF NOT EXISTS movie_files (
            file_number     INTEGER PRIMARY KEY AUTOINCREMENT,
            movie_id        INTEGER NOT NULL,
            movie_seq       INTEGER,
            server_name     TEXT,
            path            TEXT NOT NULL,          -- site relative URI
            file_type       TEXT,
            sample_flag     INTEGER NOT NULL DEFAULT 0,
            codec           TEXT,
            width           INTEGER,
            height          INTEGER,
            bitrate         INTEGER,
            file_size       INTEGER,
            create_date     TEXT,                   -- from the filesystem, not wall clock
            update_date     TEXT,
            frame_rate      REAL,
            status          INTEGER NOT NULL DEFAULT 0,
            fake_flag       INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(movie_id) REFERENCES movies(movie_id)
        );
        """)

        # 4. Thumbnails
        conn.execute("""
        CREATE TABLE IF NOT EXISTS thumbnails (
            file_number        INTEGER PRIMARY KEY AUTOINCREMENT,
            movie_id           INTEGER NOT NULL,
            movie_seq          INTEGER,
            server_name        TEXT,
            path               TEXT NOT NULL,
            width              INTEGER,
            height             INTEGER,
            file_size          INTEGER,
            create_date        TEXT,
            update_date        TEXT,
            md5                TEXT,
            primary_flag       INTEGER NOT NULL DEFAULT 0,
            flashimage_flag    INTEGER NOT NULL DEFAULT 0,
            imagerotation_flag INTEGER NOT NULL DEFAULT 0,
            status             INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY(movie_id) REFERENCES movies(movie_id)
        );
        """)

        # 5. Legacy sequence numbers, copied into new file rows
        conn.execute("""
        CREATE TABLE IF NOT EXISTS legacy (
            movie_id          INTEGER PRIMARY KEY,
            legacy_movie_seq  INTEGER NOT NULL
        );
        """)

        # 6. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movies_site ON movies(site_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_movie_files_movie ON movie_files(movie_id, path, fake_flag);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_thumbnails_movie ON thumbnails(movie_id, path);")

    logging.debug("Database schema initialized.")
