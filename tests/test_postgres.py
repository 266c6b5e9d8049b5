from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
import pytest

from annonce_agent.errors import PersistenceError
from annonce_agent.models import ListingRecord
from annonce_agent.repositories.postgres import COLUMNS, ListingStore


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self._rows: List[Tuple[Any, ...]] = []

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: object) -> bool:
        return False

    def execute(self, sql: str, params: Optional[Tuple[Any, ...]] = None) -> None:
        self.conn.executed.append((sql, params))
        if self.conn.fail:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")
        if "INSERT INTO scrape_metadata" in sql:
            self.conn.metadata[params[0]] = params[1]
        elif "SELECT value FROM scrape_metadata" in sql:
            value = self.conn.metadata.get(params[0])
            self._rows = [(value,)] if value is not None else []
        elif "INSERT INTO listing_details" in sql:
            self.conn.listings[params[0]] = tuple(params)
        elif "SELECT 1 FROM listing_details" in sql:
            self._rows = [(1,)] if params[0] in self.conn.listings else []
        elif "FROM listing_details WHERE external_id" in sql:
            row = self.conn.listings.get(params[0])
            self._rows = [row] if row else []

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        return self._rows[0] if self._rows else None

    def fetchall(self) -> List[Tuple[Any, ...]]:
        return list(self._rows)


class FakeConnection:
    def __init__(self) -> None:
        self.executed: List[Tuple[str, Any]] = []
        self.metadata: Dict[str, str] = {}
        self.listings: Dict[str, Tuple[Any, ...]] = {}
        self.fail = False
        self.commits = 0
        self.rollbacks = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


def make_record(external_id: str = "3123456", **kw: Any) -> ListingRecord:
    data: Dict[str, Any] = dict(
        external_id=external_id,
        location="Sousse",
        nature="Vente",
        property_type="Villa",
        title="Villa avec piscine",
        detail_link=f"Details_Annonces_Immobilier.asp?cod_ann={external_id}",
        price="650000",
        phone_numbers={"98765432", "22111333"},
        image_urls=["http://www.tunisie-annonce.com/upload2/a/photos/1.jpg"],
    )
    data.update(kw)
    return ListingRecord(**data)


def test_watermark_round_trip() -> None:
    store = ListingStore(FakeConnection())  # type: ignore[arg-type]

    assert store.load_watermark() is None
    store.save_watermark("3123456")
    assert store.load_watermark() == "3123456"
    store.save_watermark("3123999")
    assert store.load_watermark() == "3123999"


def test_upsert_replaces_by_external_id() -> None:
    conn = FakeConnection()
    store = ListingStore(conn)  # type: ignore[arg-type]

    store.upsert(make_record(price="650000"))
    saved = store.upsert(make_record(price="640000"))

    assert list(conn.listings) == ["3123456"]
    assert saved.saved_at is not None
    sql, params = conn.executed[-1]
    assert "ON CONFLICT (external_id) DO UPDATE" in sql
    assert len(params) == len(COLUMNS)
    assert json.loads(params[COLUMNS.index("phone_numbers")]) == ["22111333", "98765432"]
    assert params[COLUMNS.index("phone_count")] == 2
    assert params[COLUMNS.index("image_count")] == 1
    assert conn.commits == 2


def test_get_and_exists_read_back_record() -> None:
    store = ListingStore(FakeConnection())  # type: ignore[arg-type]
    store.upsert(make_record(price="640000"))

    assert store.exists("3123456")
    assert not store.exists("1")
    record = store.get("3123456")
    assert record is not None
    assert record.price == "640000"
    assert record.phone_numbers == {"98765432", "22111333"}
    assert record.image_urls == ["http://www.tunisie-annonce.com/upload2/a/photos/1.jpg"]
    assert store.get("1") is None


def test_storage_error_rolls_back_and_raises() -> None:
    conn = FakeConnection()
    conn.fail = True
    store = ListingStore(conn)  # type: ignore[arg-type]

    with pytest.raises(PersistenceError):
        store.upsert(make_record())
    with pytest.raises(PersistenceError):
        store.load_watermark()
    assert conn.rollbacks == 2
    assert conn.commits == 0


def test_read_queries_only_accept_known_fields() -> None:
    store = ListingStore(FakeConnection())  # type: ignore[arg-type]

    with pytest.raises(ValueError):
        store.distinct("raw_detail_html; DROP TABLE listing_details")
    with pytest.raises(ValueError):
        store.count(title="x")
