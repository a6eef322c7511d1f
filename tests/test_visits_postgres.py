from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from clinic_insights.config import ColumnsConfig
from clinic_insights.io import visits_postgres as visits_module
from clinic_insights.io.schema import CANONICAL_COLUMNS
from clinic_insights.io.visits_postgres import load_visit_records_from_postgres


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
    def __init__(self, rows: list[tuple[Any, ...]]) -> None:
        self.executed: list[tuple[str, object | None]] = []
        self._rows = rows

    def execute(self, query: object, params: object | None = None) -> None:
        self.executed.append((str(query), params))

    def fetchall(self) -> list[tuple[Any, ...]]:
        return list(self._rows)

    def __enter__(self) -> "_FakeCursor":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


class _FakeConnection:
    def __init__(self, cursor: _FakeCursor) -> None:
        self._cursor = cursor

    def cursor(self) -> _FakeCursor:
        return self._cursor

    def __enter__(self) -> "_FakeConnection":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False


class _FakePsycopg:
    def __init__(self, connection: _FakeConnection) -> None:
        self._connection = connection
        self.connect_calls: list[str] = []

    def connect(self, db_url: str) -> _FakeConnection:
        self.connect_calls.append(db_url)
        return self._connection


def _install(monkeypatch: pytest.MonkeyPatch, rows: list[tuple[Any, ...]]) -> tuple[_FakePsycopg, _FakeCursor]:
    cursor = _FakeCursor(rows)
    psycopg = _FakePsycopg(_FakeConnection(cursor))
    monkeypatch.setattr(visits_module, "_load_psycopg", lambda: (psycopg, _FakeSQLModule()))
    return psycopg, cursor


def _row(visit_id: str) -> tuple[Any, ...]:
    values: dict[str, Any] = {name: None for name in CANONICAL_COLUMNS}
    values.update(
        visit_id=visit_id,
        occurred_at=datetime(2024, 3, 4, 9, 10),
        doctor_id="d1",
        patient_id="p1",
        gender="Male",
    )
    return tuple(values[name] for name in CANONICAL_COLUMNS)


def test_load_visits_from_postgres_aliases_source_columns(monkeypatch: pytest.MonkeyPatch) -> None:
    psycopg, cursor = _install(monkeypatch, rows=[_row("a1"), _row("a2")])

    frame = load_visit_records_from_postgres(
        db_url="postgresql://localhost/clinic",
        columns=ColumnsConfig(),
        view_name="clinic_visits",
    )

    assert psycopg.connect_calls == ["postgresql://localhost/clinic"]
    assert list(frame.columns) == CANONICAL_COLUMNS
    assert frame["visit_id"].tolist() == ["a1", "a2"]
    query, params = cursor.executed[0]
    assert '"appointment_id" AS "visit_id"' in query
    assert '"how_did_you_get_to_know_us" AS "discovery_channel"' in query
    assert 'FROM "clinic_visits" ORDER BY "appointment_time"' in query
    assert params == []


def test_load_visits_from_postgres_scopes_to_hospital(monkeypatch: pytest.MonkeyPatch) -> None:
    _psycopg, cursor = _install(monkeypatch, rows=[])

    frame = load_visit_records_from_postgres(
        db_url="postgresql://localhost/clinic",
        columns=ColumnsConfig(),
        hospital_id="h1",
    )

    assert frame.empty
    assert list(frame.columns) == CANONICAL_COLUMNS
    query, params = cursor.executed[0]
    assert 'FROM "appointment_visits" WHERE hospital_id = %s' in query
    assert params == ["h1"]
