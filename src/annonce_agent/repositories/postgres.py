from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.extensions

from annonce_agent.errors import PersistenceError
from annonce_agent.models import ListingRecord


logger = logging.getLogger(__name__)

WATERMARK_KEY = "last_watermark"

COLUMNS: Tuple[str, ...] = (
    "external_id",
    "location",
    "nature",
    "property_type",
    "title",
    "detail_link",
    "price",
    "date_modified",
    "has_photo",
    "is_professional",
    "raw_detail_html",
    "phone_numbers",
    "image_urls",
    "phone_count",
    "image_count",
    "scraped_at",
    "saved_at",
)
# Columns that read queries may filter or group on
QUERYABLE_FIELDS = frozenset(
    {"location", "nature", "property_type", "date_modified", "has_photo", "is_professional"}
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS listing_details (
  external_id TEXT PRIMARY KEY,
  location TEXT NOT NULL DEFAULT '',
  nature TEXT NOT NULL DEFAULT '',
  property_type TEXT NOT NULL DEFAULT '',
  title TEXT NOT NULL DEFAULT '',
  detail_link TEXT NOT NULL DEFAULT '',
  price TEXT NOT NULL DEFAULT '',
  date_modified TEXT NOT NULL DEFAULT '',
  has_photo BOOLEAN NOT NULL DEFAULT FALSE,
  is_professional BOOLEAN NOT NULL DEFAULT FALSE,
  raw_detail_html TEXT,
  phone_numbers JSONB NOT NULL DEFAULT '[]'::jsonb,
  image_urls JSONB NOT NULL DEFAULT '[]'::jsonb,
  phone_count INTEGER NOT NULL DEFAULT 0,
  image_count INTEGER NOT NULL DEFAULT 0,
  scraped_at TIMESTAMPTZ NOT NULL,
  saved_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS listing_details_saved_idx ON listing_details(saved_at);
CREATE INDEX IF NOT EXISTS listing_details_nature_idx ON listing_details(nature);
CREATE INDEX IF NOT EXISTS listing_details_location_idx ON listing_details(location);
CREATE TABLE IF NOT EXISTS scrape_metadata (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TIMESTAMPTZ NOT NULL
);
"""

UPSERT_SQL = (
    "INSERT INTO listing_details ("
    + ", ".join(COLUMNS)
    + ") VALUES ("
    + ", ".join(["%s"] * len(COLUMNS))
    + ") ON CONFLICT (external_id) DO UPDATE SET "
    + ", ".join(f"{c} = EXCLUDED.{c}" for c in COLUMNS if c != "external_id")
)


def db_url() -> str:
    return os.environ.get("DB_URL", "postgresql://annonce:annonce@db:5432/annonce")


@contextmanager
def connect() -> Iterator[psycopg2.extensions.connection]:
    try:
        conn = psycopg2.connect(db_url())
    except psycopg2.Error as exc:
        raise PersistenceError(f"cannot connect to database: {str(exc).strip()}") from exc
    try:
        yield conn
    finally:
        conn.close()


def _check_field(field: str) -> str:
    if field not in QUERYABLE_FIELDS:
        raise ValueError(f"Unsupported listing field: {field!r}")
    return field


class ListingStore:
    """Listing documents and the scrape watermark, kept in PostgreSQL.

    The store wraps a single connection that is reused for every read and
    write of a run. Each write commits on its own so a failed upsert only
    loses that one listing; failures are rolled back and re-raised as
    ``PersistenceError``.
    """

    def __init__(self, conn: psycopg2.extensions.connection) -> None:
        self.conn = conn

    def _execute(
        self, sql: str, params: Optional[Sequence[Any]] = None, fetch: Optional[str] = None
    ) -> Any:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, params or None)
                if fetch == "one":
                    result = cur.fetchone()
                elif fetch == "all":
                    result = cur.fetchall()
                else:
                    result = None
            self.conn.commit()
            return result
        except psycopg2.Error as exc:
            try:
                self.conn.rollback()
            except psycopg2.Error:
                logger.warning("Rollback failed after storage error", exc_info=True)
            raise PersistenceError(str(exc).strip()) from exc

    def init_schema(self) -> None:
        self._execute(SCHEMA_SQL)

    # Writes

    def upsert(self, record: ListingRecord) -> ListingRecord:
        """Insert or replace a listing by ``external_id`` and return the saved copy."""
        saved = record.model_copy(update={"saved_at": datetime.now(timezone.utc)})
        row = (
            saved.external_id,
            saved.location,
            saved.nature,
            saved.property_type,
            saved.title,
            saved.detail_link,
            saved.price,
            saved.date_modified,
            saved.has_photo,
            saved.is_professional,
            saved.raw_detail_html,
            json.dumps(sorted(saved.phone_numbers)),
            json.dumps(saved.image_urls),
            saved.phone_count,
            saved.image_count,
            saved.scraped_at,
            saved.saved_at,
        )
        self._execute(UPSERT_SQL, row)
        return saved

    def load_watermark(self) -> Optional[str]:
        row = self._execute(
            "SELECT value FROM scrape_metadata WHERE key = %s", (WATERMARK_KEY,), fetch="one"
        )
        return row[0] if row else None

    def save_watermark(self, external_id: str) -> None:
        self._execute(
            """
            INSERT INTO scrape_metadata (key, value, updated_at)
            VALUES (%s, %s, %s)
            ON CONFLICT (key) DO UPDATE SET
              value = EXCLUDED.value,
              updated_at = EXCLUDED.updated_at
            """,
            (WATERMARK_KEY, external_id, datetime.now(timezone.utc)),
        )

    # Reads

    def exists(self, external_id: str) -> bool:
        row = self._execute(
            "SELECT 1 FROM listing_details WHERE external_id = %s LIMIT 1",
            (external_id,),
            fetch="one",
        )
        return row is not None

    def get(self, external_id: str) -> Optional[ListingRecord]:
        row = self._execute(
            f"SELECT {', '.join(COLUMNS)} FROM listing_details WHERE external_id = %s",
            (external_id,),
            fetch="one",
        )
        return _row_to_record(row) if row else None

    def count(self, **filters: Any) -> int:
        where: List[str] = []
        params: List[Any] = []
        for field, value in filters.items():
            where.append(f"{_check_field(field)} = %s")
            params.append(value)
        where_sql = (" WHERE " + " AND ".join(where)) if where else ""
        row = self._execute(
            "SELECT COUNT(*) FROM listing_details" + where_sql, params, fetch="one"
        )
        return int(row[0])

    def distinct(self, field: str) -> List[Any]:
        col = _check_field(field)
        rows = self._execute(
            f"SELECT DISTINCT {col} FROM listing_details ORDER BY {col}", fetch="all"
        )
        return [r[0] for r in rows]

    def count_by(self, field: str, limit: Optional[int] = None) -> List[Tuple[Any, int]]:
        """Listing counts grouped by ``field``, largest group first."""
        col = _check_field(field)
        sql = (
            f"SELECT {col}, COUNT(*) AS n FROM listing_details "
            f"GROUP BY {col} ORDER BY n DESC, {col}"
        )
        params: List[Any] = []
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        return [(value, int(n)) for value, n in self._execute(sql, params, fetch="all")]

    def recent(self, limit: int = 5, oldest_first: bool = False) -> List[ListingRecord]:
        order = "ASC" if oldest_first else "DESC"
        rows = self._execute(
            f"SELECT {', '.join(COLUMNS)} FROM listing_details "
            f"ORDER BY saved_at {order} LIMIT %s",
            (limit,),
            fetch="all",
        )
        return [_row_to_record(r) for r in rows]

    def summary(self) -> Dict[str, int]:
        row = self._execute(
            """
            SELECT COUNT(*),
                   COALESCE(SUM(phone_count), 0),
                   COALESCE(SUM(image_count), 0),
                   COUNT(*) FILTER (WHERE is_professional),
                   COUNT(*) FILTER (WHERE has_photo)
            FROM listing_details
            """,
            fetch="one",
        )
        keys = ("total_listings", "total_phones", "total_images", "professional_count", "with_photo_count")
        return {k: int(v or 0) for k, v in zip(keys, row)}


def _row_to_record(row: Sequence[Any]) -> ListingRecord:
    data = dict(zip(COLUMNS, row))
    data.pop("phone_count", None)
    data.pop("image_count", None)
    for key in ("phone_numbers", "image_urls"):
        # JSONB arrives decoded, JSON text does not
        if isinstance(data[key], str):
            data[key] = json.loads(data[key])
        data[key] = data[key] or []
    return ListingRecord(**data)


@contextmanager
def open_store() -> Iterator[ListingStore]:
    with connect() as conn:
        yield ListingStore(conn)
