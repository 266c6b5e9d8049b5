from __future__ import annotations

import psycopg2
import pytest

import annonce_agent.cli.scrape as scrape
from annonce_agent.errors import PersistenceError
from annonce_agent.repositories.postgres import connect


def refuse_connection(*args: object, **kwargs: object) -> None:
    raise psycopg2.OperationalError("could not connect to server: Connection refused")


def test_connect_wraps_driver_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(psycopg2, "connect", refuse_connection)

    with pytest.raises(PersistenceError) as info:
        with connect():
            pass
    assert "Connection refused" in str(info.value)


def test_scrape_exits_cleanly_when_database_is_down(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setattr(psycopg2, "connect", refuse_connection)
    monkeypatch.setattr(scrape, "setup_logging", lambda level: None)
    monkeypatch.setattr("sys.argv", ["annonce-scrape"])

    with pytest.raises(SystemExit) as info:
        scrape.main()

    assert info.value.code == 1
    assert any("Scrape failed" in r.getMessage() for r in caplog.records)


def test_scrape_rejects_non_positive_page_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(psycopg2, "connect", refuse_connection)
    monkeypatch.setattr(scrape, "setup_logging", lambda level: None)
    monkeypatch.setattr("sys.argv", ["annonce-scrape", "--max-pages", "0"])

    with pytest.raises(SystemExit) as info:
        scrape.main()

    assert info.value.code == 2
