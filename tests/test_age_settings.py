from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pytest

from clinic_insights.analytics.age_bins import AgeBinScope, load_age_bins
from clinic_insights.config import SettingsConfig
from clinic_insights.errors import InvalidBinConfigurationError
from clinic_insights.io import age_settings as settings_module
from clinic_insights.io.age_settings import (
    InMemoryAgeSettingsStore,
    JsonFileAgeSettingsStore,
    PostgresAgeSettingsStore,
    build_settings_store,
    coerce_settings,
)

ALL_BINS = [{"id": "bin-1", "start": "<", "end": "40"}, {"id": "bin-2", "start": "40", "end": ">"}]
DOCTOR_BINS = [{"id": "bin-1", "start": "<", "end": ">"}]


class _FakeSQLText(str):
    def format(self, *args: object, **kwargs: object) -> "_FakeSQLText":
        text = str(self)
        for key, value in kwargs.items():
            text = text.replace("{" + key + "}", str(value))
        return _FakeSQLText(text)


class _FakeSQLModule:
    @staticmethod
    def SQL(text: str) -> _FakeSQLText:
        return _FakeSQLText(text)

    @staticmethod
    def Identifier(name: str) -> str:
        return f'"{name}"'


class _FakeCursor:
    def __init__(self, rows: list[tuple[Any, ...] | None]) -> None:
        self.executed: list[tuple[str, object | None]] = []
        self._rows = list(rows)

    def execute(self, query: object, params: object | None = None) -> None:
        self.executed.append((str(query), params))

    def fetchone(self) -> tuple[Any, ...] | None:
        if not self._rows:
            return None
        return self._rows.pop(0)

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


class _FakeConnection:
    def __init__(self, cursor: _FakeCursor) -> None:
        self._cursor = cursor
        self.commit_count = 0

    def cursor(self) -> _FakeCursor:
        return self._cursor

    def commit(self) -> None:
        self.commit_count += 1

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


class _FakeDriverError(Exception):
    pass


class _FakePsycopg:
    Error = _FakeDriverError

    def __init__(self, connection: _FakeConnection) -> None:
        self._connection = connection
        self.connect_calls: list[str] = []

    def connect(self, db_url: str) -> _FakeConnection:
        self.connect_calls.append(db_url)
        return self._connection


def _fake_postgres(
    monkeypatch: pytest.MonkeyPatch,
    rows: list[tuple[Any, ...] | None],
) -> tuple[_FakePsycopg, _FakeConnection, _FakeCursor]:
    cursor = _FakeCursor(rows)
    conn = _FakeConnection(cursor)
    psycopg = _FakePsycopg(conn)
    monkeypatch.setattr(settings_module, "_load_psycopg", lambda: (psycopg, _FakeSQLModule()))
    return psycopg, conn, cursor


def test_coerce_settings_accepts_json_text_and_rejects_other_shapes() -> None:
    assert coerce_settings(None) == {}
    assert coerce_settings(json.dumps({"all": ALL_BINS})) == {"all": ALL_BINS}
    with pytest.raises(InvalidBinConfigurationError):
        coerce_settings("{not json")
    with pytest.raises(InvalidBinConfigurationError):
        coerce_settings([1, 2])


def test_in_memory_store_returns_copies() -> None:
    store = InMemoryAgeSettingsStore({"h1": {"all": ALL_BINS}})

    settings = store.read_settings("h1")
    settings["all"].append({"id": "bin-9"})

    assert store.read_settings("h1") == {"all": ALL_BINS}
    assert store.read_settings("missing") == {}


def test_json_file_store_merges_scope_and_keeps_other_hospitals(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "age_settings.json"
    store = JsonFileAgeSettingsStore(path)

    store.merge_scope("h1", "all", ALL_BINS)
    store.merge_scope("h2", "all", DOCTOR_BINS)
    merged = store.merge_scope("h1", "doc-1", DOCTOR_BINS)

    assert merged == {"all": ALL_BINS, "doc-1": DOCTOR_BINS}
    document = json.loads(path.read_text(encoding="utf-8"))
    assert set(document) == {"h1", "h2"}
    assert document["h1"]["all"] == ALL_BINS
    assert list(path.parent.glob(".age_settings.json.*")) == []


def test_json_file_store_missing_file_reads_empty(tmp_path: Path) -> None:
    assert JsonFileAgeSettingsStore(tmp_path / "absent.json").read_settings("h1") == {}


def test_json_file_store_invalid_file_is_typed_error(tmp_path: Path) -> None:
    path = tmp_path / "age_settings.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(InvalidBinConfigurationError, match="not valid JSON"):
        JsonFileAgeSettingsStore(path).read_settings("h1")


def test_concurrent_merges_do_not_lose_scopes(tmp_path: Path) -> None:
    store = JsonFileAgeSettingsStore(tmp_path / "age_settings.json")
    threads = [
        threading.Thread(target=store.merge_scope, args=("h1", f"doc-{index}", DOCTOR_BINS))
        for index in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(store.read_settings("h1")) == {f"doc-{index}" for index in range(8)}


def test_postgres_store_reads_age_settings_column(monkeypatch: pytest.MonkeyPatch) -> None:
    psycopg, _conn, cursor = _fake_postgres(monkeypatch, rows=[(json.dumps({"all": ALL_BINS}),)])
    store = PostgresAgeSettingsStore("postgresql://localhost/clinic")

    settings = store.read_settings("h1")

    assert settings == {"all": ALL_BINS}
    assert psycopg.connect_calls == ["postgresql://localhost/clinic"]
    query, params = cursor.executed[0]
    assert 'FROM "hospitals" WHERE hospital_id = %s' in query
    assert params == ("h1",)


def test_postgres_store_missing_hospital_reads_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_postgres(monkeypatch, rows=[None])

    assert PostgresAgeSettingsStore("postgresql://localhost/clinic").read_settings("h9") == {}


def test_postgres_store_merges_under_row_lock(monkeypatch: pytest.MonkeyPatch) -> None:
    _psycopg, conn, cursor = _fake_postgres(monkeypatch, rows=[({"all": ALL_BINS},)])
    store = PostgresAgeSettingsStore("postgresql://localhost/clinic", table_name="clinics")

    merged = store.merge_scope("h1", "doc-1", DOCTOR_BINS)

    assert merged == {"all": ALL_BINS, "doc-1": DOCTOR_BINS}
    select_query, _ = cursor.executed[0]
    update_query, update_params = cursor.executed[1]
    assert select_query.endswith("FOR UPDATE")
    assert 'UPDATE "clinics" SET age_settings = %s::jsonb' in update_query
    assert json.loads(update_params[0]) == merged
    assert update_params[1] == "h1"
    assert conn.commit_count == 1


def test_postgres_store_merge_unknown_hospital_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    _psycopg, conn, _cursor = _fake_postgres(monkeypatch, rows=[None])

    with pytest.raises(InvalidBinConfigurationError, match="unknown hospital"):
        PostgresAgeSettingsStore("postgresql://localhost/clinic").merge_scope("h9", "all", ALL_BINS)
    assert conn.commit_count == 0


def test_build_settings_store_selects_backend(tmp_path: Path) -> None:
    file_store = build_settings_store(SettingsConfig(path=str(tmp_path / "s.json")))
    pg_store = build_settings_store(SettingsConfig(backend="postgres", db_url="postgresql://x/y"))

    assert isinstance(file_store, JsonFileAgeSettingsStore)
    assert isinstance(pg_store, PostgresAgeSettingsStore)
    with pytest.raises(ValueError, match="settings.db_url"):
        build_settings_store(SettingsConfig(backend="postgres"))


def test_json_file_store_unreadable_path_is_typed_error(tmp_path: Path) -> None:
    path = tmp_path / "age_settings.json"
    path.mkdir()

    with pytest.raises(InvalidBinConfigurationError, match="could not be read"):
        JsonFileAgeSettingsStore(path).read_settings("h1")


def test_unreadable_settings_fall_back_to_default_bins(tmp_path: Path) -> None:
    path = tmp_path / "age_settings.json"
    path.mkdir()

    loaded = load_age_bins(JsonFileAgeSettingsStore(path), AgeBinScope(hospital_id="h1", doctor_id="d1"))

    assert loaded.source == "default"
    assert loaded.warnings
    assert "could not be read" in loaded.warnings[0]


def test_postgres_store_driver_failure_is_typed_error(monkeypatch: pytest.MonkeyPatch) -> None:
    psycopg, _conn, _cursor = _fake_postgres(monkeypatch, rows=[])

    def _refuse(db_url: str) -> _FakeConnection:
        raise _FakeDriverError("connection refused")

    monkeypatch.setattr(psycopg, "connect", _refuse)
    store = PostgresAgeSettingsStore("postgresql://localhost/clinic")

    with pytest.raises(InvalidBinConfigurationError, match="connection refused"):
        store.read_settings("h1")
    assert load_age_bins(store, AgeBinScope(hospital_id="h1")).source == "default"


def test_postgres_store_without_driver_is_typed_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing_driver() -> tuple[object, object]:
        raise RuntimeError("psycopg is required for PostgreSQL age settings.")

    monkeypatch.setattr(settings_module, "_load_psycopg", _missing_driver)

    with pytest.raises(InvalidBinConfigurationError, match="psycopg is required"):
        PostgresAgeSettingsStore("postgresql://localhost/clinic").read_settings("h1")


def test_separate_file_stores_do_not_lose_scopes(tmp_path: Path) -> None:
    path = tmp_path / "age_settings.json"
    # One store per writer, as with separate CLI processes sharing the file.
    threads = [
        threading.Thread(
            target=JsonFileAgeSettingsStore(path).merge_scope,
            args=("h1", f"doc-{index}", DOCTOR_BINS),
        )
        for index in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(JsonFileAgeSettingsStore(path).read_settings("h1")) == {
        f"doc-{index}" for index in range(8)
    }
    assert not (tmp_path / ".age_settings.json.lock").exists()


def test_merge_waits_for_lock_held_by_another_writer(tmp_path: Path) -> None:
    path = tmp_path / "age_settings.json"
    store = JsonFileAgeSettingsStore(path)
    store.lock_path.write_text("4242", encoding="utf-8")

    writer = threading.Thread(target=store.merge_scope, args=("h1", "all", ALL_BINS))
    writer.start()
    writer.join(timeout=0.3)

    assert writer.is_alive()
    assert not path.exists()

    store.lock_path.unlink()
    writer.join(timeout=5)

    assert not writer.is_alive()
    assert store.read_settings("h1") == {"all": ALL_BINS}


def test_merge_times_out_on_stuck_lock(tmp_path: Path) -> None:
    path = tmp_path / "age_settings.json"
    store = JsonFileAgeSettingsStore(path, lock_timeout=0.1)
    store.lock_path.write_text("4242", encoding="utf-8")

    with pytest.raises(InvalidBinConfigurationError, match="timed out"):
        store.merge_scope("h1", "all", ALL_BINS)
    assert not path.exists()
    assert store.lock_path.exists()
