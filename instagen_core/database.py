"""Async SQLite data layer for InstaGen Core."""

from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

import aiosqlite

from .constants import DEFAULT_CACHE_TTL_SECONDS
from .logger import get_logger
from .posts import CachedPost, normalize_posts, rank_by_engagement

logger = get_logger()


class PostStorage(Protocol):
    """What the cache warmer needs from persistent storage."""

    async def get_user(self, user_id: str) -> Optional[Any]: ...

    async def get_cached_competitor_posts(self, user_id: str) -> list[CachedPost]: ...

    async def set_cached_competitor_posts(self, user_id: str, posts: Iterable[Any]) -> None: ...


class Database:
    """Async database handler using SQLite."""

    def __init__(
        self,
        db_path: str | Path = "instagen.db",
        connect_timeout: float | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self.target_schema_version = 2
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock

        if connect_timeout is None:
            connect_timeout = float(os.getenv("DB_CONNECT_TIMEOUT", "5.0"))
        self.connect_timeout = connect_timeout

    async def connect(self, max_retries: int = 5) -> None:
        """Connect to the database with timeout protection and retry logic."""
        if self._connection is not None:
            return

        for attempt in range(max_retries + 1):
            try:
                self._connection = await asyncio.wait_for(
                    aiosqlite.connect(str(self.db_path)),
                    timeout=self.connect_timeout,
                )

                try:
                    self._connection.row_factory = aiosqlite.Row
                    await self._connection.execute("PRAGMA foreign_keys = ON;")
                    await self._connection.commit()
                    await self._initialize_schema()
                except Exception as init_error:
                    if self._connection:
                        await self._connection.close()
                    self._connection = None
                    logger.error(
                        f"Failed to initialize database after connection: {init_error}. "
                        f"Database path: {self.db_path}"
                    )
                    raise

                return

            except asyncio.TimeoutError:
                self._connection = None
                timeout_msg = (
                    f"Database connection timed out after {self.connect_timeout}s "
                    f"(attempt {attempt + 1}/{max_retries + 1}). Database path: {self.db_path}"
                )
                if attempt < max_retries:
                    wait_seconds = 2 ** attempt
                    logger.warning(f"{timeout_msg}. Waiting {wait_seconds}s before retry...")
                    await asyncio.sleep(wait_seconds)
                else:
                    logger.error(f"{timeout_msg}. Max retries exhausted.")
                    raise TimeoutError(timeout_msg) from None

            except RuntimeError:
                # Schema initialization failures are not retried
                raise

            except Exception as conn_error:
                self._connection = None
                error_msg = (
                    f"Failed to connect to database (attempt {attempt + 1}/{max_retries + 1}): {conn_error}. "
                    f"Database path: {self.db_path}"
                )
                if attempt < max_retries:
                    wait_seconds = 2 ** attempt
                    logger.warning(f"{error_msg}. Waiting {wait_seconds}s before retry...")
                    await asyncio.sleep(wait_seconds)
                else:
                    logger.error(f"{error_msg}. Max retries exhausted.")
                    raise RuntimeError(error_msg) from conn_error

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection not initialized.")
        return self._connection

    async def _initialize_schema(self) -> None:
        """Initialize the database schema with versioning support."""
        connection = self._require_connection()

        await connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        await connection.commit()

        current_version = await self._get_current_schema_version()
        logger.debug(f"Current database schema version: {current_version}")

        await self._apply_pending_migrations(current_version)

    async def _get_current_schema_version(self) -> int:
        connection = self._require_connection()
        cursor = await connection.execute("SELECT MAX(version) as version FROM schema_migrations")
        row = await cursor.fetchone()
        return row["version"] if row and row["version"] else 0

    async def _apply_pending_migrations(self, current_version: int) -> None:
        """Apply all pending migrations after the current version."""
        migrations = {
            1: ("users_table", self._migration_v1),
            2: ("competitor_post_cache_table", self._migration_v2),
        }

        for version in sorted(migrations.keys()):
            if version <= current_version:
                continue
            name, migration_fn = migrations[version]
            logger.info(f"Applying migration v{version}: {name}")
            try:
                await migration_fn()
                await self._record_migration(version, name)
            except Exception as e:
                logger.exception(f"Failed to apply migration v{version} ({name}): {e}")
                raise RuntimeError(f"Migration v{version} ({name}) failed: {e}") from e

    async def _record_migration(self, version: int, name: str) -> None:
        connection = self._require_connection()
        await connection.execute(
            "INSERT INTO schema_migrations (version, name) VALUES (?, ?)",
            (version, name),
        )
        await connection.commit()

    async def _migration_v1(self) -> None:
        """Migration v1: users with niche and competitor settings."""
        await self._require_connection().executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT,
                niche TEXT,
                niche_last_changed TIMESTAMP,
                competitors TEXT,
                competitors_last_changed TIMESTAMP,
                plan_type TEXT NOT NULL DEFAULT 'free',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        await self._require_connection().commit()

    async def _migration_v2(self) -> None:
        """Migration v2: per-user competitor post cache with expiry."""
        await self._require_connection().executescript(
            """
            CREATE TABLE IF NOT EXISTS competitor_post_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                post_id TEXT NOT NULL,
                username TEXT NOT NULL,
                caption TEXT,
                hashtags TEXT NOT NULL DEFAULT '[]',
                likes INTEGER NOT NULL DEFAULT 0,
                comments INTEGER NOT NULL DEFAULT 0,
                engagement INTEGER NOT NULL DEFAULT 0,
                image_url TEXT,
                post_url TEXT,
                profile_url TEXT,
                timestamp TEXT,
                location TEXT,
                cached_at REAL NOT NULL,
                expires_at REAL NOT NULL,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_competitor_post_cache_user
                ON competitor_post_cache(user_id, expires_at);
            """
        )
        await self._require_connection().commit()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def upsert_user(
        self, user_id: str, *, email: str | None = None, plan_type: str = "free"
    ) -> aiosqlite.Row:
        connection = self._require_connection()
        await connection.execute(
            """
            INSERT INTO users (id, email, plan_type) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = COALESCE(excluded.email, users.email),
                plan_type = excluded.plan_type,
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, email, plan_type),
        )
        await connection.commit()

        user = await self.get_user(user_id)
        if user is None:
            raise RuntimeError(f"Failed to upsert user {user_id}")
        return user

    async def get_user(self, user_id: str) -> Optional[aiosqlite.Row]:
        connection = self._require_connection()
        cursor = await connection.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        return await cursor.fetchone()

    async def update_user_niche(
        self,
        user_id: str,
        niche: str,
        competitors: Sequence[str] | str | None = None,
    ) -> aiosqlite.Row:
        """Set a user's niche and, optionally, their competitor list."""
        connection = self._require_connection()

        if competitors is None:
            await connection.execute(
                """
                UPDATE users
                SET niche = ?, niche_last_changed = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (niche, user_id),
            )
        else:
            stored = competitors if isinstance(competitors, str) else json.dumps(list(competitors))
            await connection.execute(
                """
                UPDATE users
                SET niche = ?, competitors = ?,
                    niche_last_changed = CURRENT_TIMESTAMP,
                    competitors_last_changed = CURRENT_TIMESTAMP,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (niche, stored, user_id),
            )
        await connection.commit()

        user = await self.get_user(user_id)
        if user is None:
            raise KeyError(f"User {user_id} not found")
        return user

    # ------------------------------------------------------------------
    # Competitor post cache
    # ------------------------------------------------------------------

    async def get_cached_competitor_posts(self, user_id: str) -> list[CachedPost]:
        """Return the unexpired cached competitor posts for a user, most engaging first."""
        connection = self._require_connection()
        cursor = await connection.execute(
            """
            SELECT * FROM competitor_post_cache
            WHERE user_id = ? AND expires_at > ?
            ORDER BY engagement DESC, id ASC
            """,
            (user_id, self._clock()),
        )
        rows = await cursor.fetchall()
        return [self._row_to_post(row) for row in rows]

    async def set_cached_competitor_posts(self, user_id: str, posts: Iterable[Any]) -> None:
        """Replace a user's cached competitor posts."""
        connection = self._require_connection()
        normalized = rank_by_engagement(normalize_posts(posts))
        now = self._clock()
        expires_at = now + self.cache_ttl_seconds

        try:
            await connection.execute("DELETE FROM competitor_post_cache WHERE user_id = ?", (user_id,))
            await connection.executemany(
                """
                INSERT INTO competitor_post_cache (
                    user_id, post_id, username, caption, hashtags, likes, comments, engagement,
                    image_url, post_url, profile_url, timestamp, location, cached_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        user_id,
                        post.post_id,
                        post.username,
                        post.caption,
                        json.dumps(post.hashtags),
                        post.likes,
                        post.comments,
                        post.engagement,
                        post.image_url,
                        post.post_url,
                        post.profile_url,
                        post.timestamp,
                        post.location,
                        now,
                        expires_at,
                    )
                    for post in normalized
                ],
            )
        except Exception:
            await connection.rollback()
            raise
        await connection.commit()

        logger.info(f"Cached {len(normalized)} competitor posts for user {user_id}")

    async def clear_expired_competitor_posts(self) -> int:
        connection = self._require_connection()
        cursor = await connection.execute(
            "DELETE FROM competitor_post_cache WHERE expires_at <= ?",
            (self._clock(),),
        )
        await connection.commit()
        removed = cursor.rowcount or 0
        if removed:
            logger.info(f"Cleared {removed} expired competitor post cache rows")
        return removed

    @staticmethod
    def _row_to_post(row: aiosqlite.Row) -> CachedPost:
        try:
            hashtags = json.loads(row["hashtags"] or "[]")
        except json.JSONDecodeError:
            hashtags = []
        return CachedPost(
            post_id=row["post_id"],
            username=row["username"],
            caption=row["caption"] or "",
            hashtags=hashtags if isinstance(hashtags, list) else [],
            likes=row["likes"],
            comments=row["comments"],
            post_url=row["post_url"],
            image_url=row["image_url"],
            profile_url=row["profile_url"],
            timestamp=row["timestamp"],
            location=row["location"],
        )
