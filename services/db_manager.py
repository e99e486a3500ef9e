import sqlite3
import logging
from contextlib import contextmanager

import psycopg2
import psycopg2.pool

logger = logging.getLogger("DBManager")

SQLITE_FALLBACK = "sweepbot.db"


class DBManager:
    def __init__(self, database_url=None):
        # Postgres connection string, or a SQLite file path
        self.database_url = database_url
        self.db_type = "postgres"
        self._pool = None

        # Check if DATABASE_URL is set and looks valid (not the placeholder)
        if not self.database_url or "postgres.xxx" in self.database_url:
            logger.warning(f"DATABASE_URL not found or is placeholder. Using local SQLite database ({SQLITE_FALLBACK}).")
            self.db_type = "sqlite"
            self.database_url = SQLITE_FALLBACK
        elif not self.database_url.startswith(("postgres://", "postgresql://")):
            self.db_type = "sqlite"
        else:
            self._init_pool()

        self._initialize_tables()

    def _init_pool(self):
        try:
            # Min 1, Max 10 connections in pool
            self._pool = psycopg2.pool.ThreadedConnectionPool(1, 10, self.database_url)
            logger.info("PostgreSQL connection pool initialized (Max 10).")
        except psycopg2.Error as e:
            logger.error(f"Failed to initialize pool: {e}. Falling back to SQLite ({SQLITE_FALLBACK}).")
            self.db_type = "sqlite"
            self.database_url = SQLITE_FALLBACK

    @property
    def p(self):
        return "?" if self.db_type == "sqlite" else "%s"

    def get_connection(self):
        if self.db_type == "postgres" and self._pool:
            return self._pool.getconn()

        # Increase timeout to 30s to prevent "database is locked"
        conn = sqlite3.connect(self.database_url, check_same_thread=False, timeout=30.0)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    def _release(self, conn):
        if self.db_type == "postgres" and self._pool:
            self._pool.putconn(conn)
        else:
            conn.close()

    def _initialize_tables(self):
        with self.session() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS sweep_users (
                        user_id TEXT PRIMARY KEY,
                        encrypted_secret TEXT,
                        destination_address TEXT,
                        created_at REAL,
                        last_active REAL
                    )
                """)
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_sweep_users_active ON sweep_users(last_active)")
            finally:
                cursor.close()
        logger.info(f"Database tables initialized ({self.db_type}).")

    # --- Generic Helpers ---
    @contextmanager
    def session(self):
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._release(conn)

    def fetchone(self, query, params=()):
        with self.session() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(query, params)
                return cursor.fetchone()
            finally:
                cursor.close()

    def fetchall(self, query, params=()):
        with self.session() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(query, params)
                return cursor.fetchall()
            finally:
                cursor.close()

    def execute(self, query, params=()):
        """Run a write statement; returns the affected row count."""
        with self.session() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(query, params)
                return cursor.rowcount
            finally:
                cursor.close()

    def close(self):
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
