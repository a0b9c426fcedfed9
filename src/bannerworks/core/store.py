"""SQLite persistence for users, templates, brand themes and generated images.

The store is the only component that touches the database.  Every public
method opens its own short-lived connection, so a single :class:`ImageStore`
can be shared between threads; the async pipeline calls it through
``asyncio.to_thread``.

Credit accounting
-----------------
Credits are changed by conditional updates only::

    UPDATE users SET credits = credits - 1 WHERE id = ? AND credits > 0

and the affected-row count says whether the charge happened.  SQLite
evaluates the predicate under its write lock, so two concurrent batches for
the same user can never take the balance below zero or both bill the last
credit.  :meth:`ImageStore.charge_and_create_image` performs the charge and
the record insert in one transaction.

Timestamps are stored as UTC epoch seconds and returned as aware datetimes.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from bannerworks.core.errors import AlreadySavedError, NotFoundError, ValidationError
from bannerworks.core.models import BrandTheme, GeneratedImageRecord, ImageTemplate

logger = logging.getLogger(__name__)

_IMAGE_COLUMNS = (
    "id, user_id, template_id, url, user_prompt, seed, resolution, post_topic, saved, created_at"
)


def _to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _row_to_image(row: sqlite3.Row) -> GeneratedImageRecord:
    return GeneratedImageRecord(
        id=row["id"],
        user_id=row["user_id"],
        template_id=row["template_id"],
        url=row["url"],
        user_prompt=row["user_prompt"],
        seed=row["seed"],
        resolution=row["resolution"],
        post_topic=row["post_topic"],
        saved=bool(row["saved"]),
        created_at=_from_epoch(row["created_at"]),
    )


def _row_to_template(row: sqlite3.Row) -> ImageTemplate:
    return ImageTemplate(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        example_image_prompt=row["example_image_prompt"],
        example_image_url=row["example_image_url"],
        lora_url=row["lora_url"],
        lora_trigger_word=row["lora_trigger_word"],
    )


def load_template_catalog(path: Path) -> list[ImageTemplate]:
    """Load the bundled template catalogue from ``templates.json``.

    Args:
        path: Path to a JSON file holding ``{"templates": [...]}``.

    Returns:
        Templates in file order.  A missing file yields an empty list.
    """
    if not path.exists():
        logger.warning(f"Template catalogue not found at {path}")
        return []

    with open(path, encoding="utf-8") as handle:
        raw = json.load(handle)

    return [
        ImageTemplate(
            id=entry["id"],
            name=entry["name"],
            description=entry.get("description"),
            example_image_prompt=entry["example_image_prompt"],
            example_image_url=entry.get("example_image_url"),
            lora_url=entry.get("lora_url"),
            lora_trigger_word=entry.get("lora_trigger_word"),
        )
        for entry in raw.get("templates", [])
    ]


class ImageStore:
    """Manage the Bannerworks database using SQLite."""

    def __init__(self, db_path: str | Path, timeout: float = 30.0):
        """Initialize the store and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait for a competing writer's lock
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized image store at {self.db_path}")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection whose block commits on success and rolls back on error."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
                    created_at REAL NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS image_templates (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    example_image_prompt TEXT NOT NULL,
                    example_image_url TEXT,
                    lora_url TEXT,
                    lora_trigger_word TEXT
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS generated_images (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    template_id TEXT,
                    url TEXT NOT NULL,
                    user_prompt TEXT NOT NULL,
                    seed INTEGER,
                    resolution TEXT NOT NULL,
                    post_topic TEXT,
                    saved INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL
                )
                """)
            # Serves both the sweeper query and the per-user recent listing
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_generated_images_saved_created
                ON generated_images(saved, created_at)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_generated_images_user
                ON generated_images(user_id, created_at DESC)
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS brand_themes (
                    user_id TEXT PRIMARY KEY,
                    color_scheme TEXT NOT NULL DEFAULT '[]',
                    preferred_styles TEXT NOT NULL DEFAULT '[]',
                    mood TEXT NOT NULL DEFAULT '[]',
                    lighting TEXT NOT NULL DEFAULT '[]'
                )
                """)

    # ------------------------------------------------------------------
    # Users and credits
    # ------------------------------------------------------------------

    def create_user(self, user_id: str, credits: int = 0) -> bool:
        """Create a user with an initial balance.

        Returns:
            True if the user was created, False if it already existed
        """
        if credits < 0:
            raise ValidationError("Initial credits cannot be negative")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO users (id, credits, created_at) VALUES (?, ?, ?)",
                (user_id, credits, time.time()),
            )
            created = cursor.rowcount > 0
        if created:
            logger.info(f"Created user {user_id} with {credits} credits")
        return created

    def get_credits(self, user_id: str) -> int:
        """Return the user's current credit balance.

        Raises:
            NotFoundError: If the user does not exist
        """
        with self._connect() as conn:
            row = conn.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise NotFoundError("User", user_id)
        return int(row["credits"])

    def add_credits(self, user_id: str, amount: int) -> int:
        """Top up a user's balance and return the new balance.

        Raises:
            ValidationError: If amount is not positive
            NotFoundError: If the user does not exist
        """
        if amount <= 0:
            raise ValidationError(f"Credit top-up must be positive, got {amount}")
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET credits = credits + ? WHERE id = ?", (amount, user_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User", user_id)
            row = conn.execute("SELECT credits FROM users WHERE id = ?", (user_id,)).fetchone()
        logger.info(f"Added {amount} credits to user {user_id}")
        return int(row["credits"])

    def decrement_credit_if_positive(self, user_id: str) -> bool:
        """Take one credit from the user if the balance is above zero.

        Returns:
            True if a credit was taken, False if the balance was already zero
            (or the user does not exist)
        """
        with self._connect() as conn:
            return self._decrement(conn, user_id)

    @staticmethod
    def _decrement(conn: sqlite3.Connection, user_id: str) -> bool:
        cursor = conn.execute(
            "UPDATE users SET credits = credits - 1 WHERE id = ? AND credits > 0",
            (user_id,),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Generated images
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_image(conn: sqlite3.Connection, record: GeneratedImageRecord) -> None:
        conn.execute(
            f"INSERT INTO generated_images ({_IMAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.user_id,
                record.template_id,
                record.url,
                record.user_prompt,
                record.seed,
                record.resolution,
                record.post_topic,
                int(record.saved),
                _to_epoch(record.created_at),
            ),
        )

    def create_image_record(self, record: GeneratedImageRecord) -> GeneratedImageRecord:
        """Persist a generated image record without touching credits."""
        with self._connect() as conn:
            self._insert_image(conn, record)
        logger.debug(f"Stored image record {record.id} for user {record.user_id}")
        return record

    def charge_and_create_image(self, record: GeneratedImageRecord) -> bool:
        """Bill one credit and persist ``record`` in a single transaction.

        Returns:
            True if the credit was taken and the record stored, False if the
            balance was zero (nothing is written in that case)
        """
        with self._connect() as conn:
            if not self._decrement(conn, record.user_id):
                return False
            self._insert_image(conn, record)
        logger.debug(f"Charged user {record.user_id} and stored image {record.id}")
        return True

    def get_image_record(self, image_id: str, user_id: str | None = None) -> GeneratedImageRecord:
        """Return one image, optionally scoped to its owner.

        Raises:
            NotFoundError: If no matching record exists
        """
        query = f"SELECT {_IMAGE_COLUMNS} FROM generated_images WHERE id = ?"
        params: tuple = (image_id,)
        if user_id is not None:
            query += " AND user_id = ?"
            params = (image_id, user_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            raise NotFoundError("GeneratedImage", image_id)
        return _row_to_image(row)

    def list_recent_images(
        self, user_id: str, *, saved_only: bool = False, limit: int = 50
    ) -> list[GeneratedImageRecord]:
        """Return the user's images, newest first."""
        query = f"SELECT {_IMAGE_COLUMNS} FROM generated_images WHERE user_id = ?"
        if saved_only:
            query += " AND saved = 1"
        query += " ORDER BY created_at DESC LIMIT ?"
        with self._connect() as conn:
            rows = conn.execute(query, (user_id, limit)).fetchall()
        return [_row_to_image(row) for row in rows]

    def mark_image_saved(
        self, image_id: str, user_id: str, url: str | None = None
    ) -> GeneratedImageRecord:
        """Add an image to the user's library.

        The flag only ever moves from unsaved to saved.  ``url`` replaces the
        ephemeral backend URL when the caller has copied the file to
        permanent storage.

        Raises:
            NotFoundError: If the image does not exist for this user
            AlreadySavedError: If the image was saved before
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE generated_images
                SET saved = 1, url = COALESCE(?, url)
                WHERE id = ? AND user_id = ? AND saved = 0
                """,
                (url, image_id, user_id),
            )
            updated = cursor.rowcount > 0
        if not updated:
            # Distinguish a missing record from a repeated save
            existing = self.get_image_record(image_id, user_id)
            raise AlreadySavedError(
                f"Image {existing.id} is already saved", details={"image_id": existing.id}
            )
        logger.info(f"Saved image {image_id} to library of user {user_id}")
        return self.get_image_record(image_id, user_id)

    def find_stale_unsaved_images(self, threshold: datetime) -> list[GeneratedImageRecord]:
        """Return unsaved images created strictly before ``threshold``."""
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_IMAGE_COLUMNS} FROM generated_images
                WHERE saved = 0 AND created_at < ?
                ORDER BY created_at
                """,
                (_to_epoch(threshold),),
            ).fetchall()
        return [_row_to_image(row) for row in rows]

    def delete_image_record(
        self, image_id: str, user_id: str | None = None, *, unsaved_only: bool = False
    ) -> bool:
        """Delete an image record.

        Args:
            image_id: Record to delete
            user_id: Restrict the delete to this owner
            unsaved_only: Leave the record alone if it has been saved

        Returns:
            True if a record was deleted, False if none matched
        """
        query = "DELETE FROM generated_images WHERE id = ?"
        params: tuple = (image_id,)
        if user_id is not None:
            query += " AND user_id = ?"
            params += (user_id,)
        if unsaved_only:
            query += " AND saved = 0"
        with self._connect() as conn:
            deleted = conn.execute(query, params).rowcount > 0
        if deleted:
            logger.info(f"Deleted generated image {image_id}")
        else:
            logger.debug(f"No generated image {image_id} to delete")
        return deleted

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def seed_templates(self, templates: list[ImageTemplate]) -> int:
        """Insert or refresh the template catalogue.

        Returns:
            Number of templates written
        """
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO image_templates
                (id, name, description, example_image_prompt, example_image_url,
                 lora_url, lora_trigger_word)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        t.id,
                        t.name,
                        t.description,
                        t.example_image_prompt,
                        t.example_image_url,
                        t.lora_url,
                        t.lora_trigger_word,
                    )
                    for t in templates
                ],
            )
        logger.info(f"Seeded {len(templates)} image templates")
        return len(templates)

    def get_template(self, template_id: str) -> ImageTemplate | None:
        """Return a template by id, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM image_templates WHERE id = ?", (template_id,)
            ).fetchone()
        return _row_to_template(row) if row else None

    def list_templates(self) -> list[ImageTemplate]:
        """Return all templates ordered by name."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM image_templates ORDER BY name").fetchall()
        return [_row_to_template(row) for row in rows]

    # ------------------------------------------------------------------
    # Brand themes
    # ------------------------------------------------------------------

    def get_brand_theme(self, user_id: str) -> BrandTheme | None:
        """Return the user's brand theme, or None if they have not created one."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM brand_themes WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return BrandTheme(
            user_id=row["user_id"],
            color_scheme=json.loads(row["color_scheme"]),
            preferred_styles=json.loads(row["preferred_styles"]),
            mood=json.loads(row["mood"]),
            lighting=json.loads(row["lighting"]),
        )

    def upsert_brand_theme(self, theme: BrandTheme) -> BrandTheme:
        """Create the user's theme on first save and replace it thereafter."""
        theme.validate()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO brand_themes (user_id, color_scheme, preferred_styles, mood, lighting)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    color_scheme = excluded.color_scheme,
                    preferred_styles = excluded.preferred_styles,
                    mood = excluded.mood,
                    lighting = excluded.lighting
                """,
                (
                    theme.user_id,
                    json.dumps(theme.color_scheme),
                    json.dumps(theme.preferred_styles),
                    json.dumps(theme.mood),
                    json.dumps(theme.lighting),
                ),
            )
        logger.info(f"Saved brand theme for user {theme.user_id}")
        return theme


def new_image_id() -> str:
    """Return a fresh image record id."""
    return str(uuid.uuid4())
