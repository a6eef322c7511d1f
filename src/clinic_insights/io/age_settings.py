from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from copy import deepcopy
from pathlib import Path
from typing import Any, Iterator, Mapping

from clinic_insights.errors import InvalidBinConfigurationError

DEFAULT_SETTINGS_TABLE = "hospitals"
DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
LOCK_POLL_SECONDS = 0.05

SettingsMap = dict[str, list[dict[str, Any]]]


def _load_psycopg():
    try:
        import psycopg
        from psycopg import sql
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError(
            "psycopg is required for PostgreSQL age settings. "
            "Install with: pip install 'psycopg[binary]'"
        ) from exc
    return psycopg, sql


@contextmanager
def _lock_file(lock_path: Path, timeout: float) -> Iterator[None]:
    """Exclusive ``O_EXCL`` lock file, visible to every process on the host."""
    deadline = time.monotonic() + timeout
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    while True:
        try:
            handle = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            break
        except FileExistsError:
            if time.monotonic() >= deadline:
                raise InvalidBinConfigurationError(
                    f"timed out waiting for age settings lock: {lock_path}"
                ) from None
            time.sleep(LOCK_POLL_SECONDS)
    try:
        os.write(handle, str(os.getpid()).encode("ascii"))
        yield
    finally:
        os.close(handle)
        lock_path.unlink(missing_ok=True)


def coerce_settings(raw: Any) -> SettingsMap:
    """Accept the persisted age-settings value (object or JSON text) as a scope map."""
    if raw is None:
        return {}
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InvalidBinConfigurationError("age settings are not valid JSON") from exc
    if not isinstance(raw, Mapping):
        raise InvalidBinConfigurationError("age settings must be an object keyed by scope")
    return {str(key): value for key, value in raw.items()}


class AgeSettingsStore:
    """Per-hospital map of scope key ("all" or a doctor id) to bin descriptors."""

    def read_settings(self, hospital_id: str) -> SettingsMap:
        raise NotImplementedError

    def merge_scope(
        self,
        hospital_id: str,
        scope_key: str,
        descriptors: list[dict[str, Any]],
    ) -> SettingsMap:
        """Atomically replace one scope's bins, keeping every other scope."""
        raise NotImplementedError


class InMemoryAgeSettingsStore(AgeSettingsStore):
    def __init__(self, initial: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._lock = threading.Lock()
        self._settings: dict[str, SettingsMap] = {
            str(hospital_id): coerce_settings(settings)
            for hospital_id, settings in (initial or {}).items()
        }

    def read_settings(self, hospital_id: str) -> SettingsMap:
        with self._lock:
            return deepcopy(self._settings.get(str(hospital_id), {}))

    def merge_scope(
        self,
        hospital_id: str,
        scope_key: str,
        descriptors: list[dict[str, Any]],
    ) -> SettingsMap:
        with self._lock:
            current = dict(self._settings.get(str(hospital_id), {}))
            current[scope_key] = deepcopy(descriptors)
            self._settings[str(hospital_id)] = current
            return deepcopy(current)


class JsonFileAgeSettingsStore(AgeSettingsStore):
    """JSON document ``{hospital_id: {scope_key: [descriptors]}}`` rewritten atomically.

    Merges hold a thread lock plus a sibling ``.<name>.lock`` file that
    other processes writing the same document also wait on.
    """

    def __init__(self, path: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(f".{self.path.name}.lock")
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise InvalidBinConfigurationError(
                f"age settings file could not be read: {self.path}: {exc}"
            ) from exc
        try:
            payload = json.loads(text or "{}")
        except json.JSONDecodeError as exc:
            raise InvalidBinConfigurationError(
                f"age settings file is not valid JSON: {self.path}"
            ) from exc
        if not isinstance(payload, dict):
            raise InvalidBinConfigurationError(
                f"age settings file must contain an object: {self.path}"
            )
        return payload

    def _write_document(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            dir=str(self.path.parent),
        )
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as temp_file:
                json.dump(document, temp_file, indent=2, sort_keys=True)
            os.replace(temp_name, self.path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def read_settings(self, hospital_id: str) -> SettingsMap:
        with self._lock:
            document = self._read_document()
        return coerce_settings(document.get(str(hospital_id)))

    def merge_scope(
        self,
        hospital_id: str,
        scope_key: str,
        descriptors: list[dict[str, Any]],
    ) -> SettingsMap:
        with self._lock, _lock_file(self.lock_path, self.lock_timeout):
            document = self._read_document()
            current = coerce_settings(document.get(str(hospital_id)))
            current[scope_key] = deepcopy(descriptors)
            document[str(hospital_id)] = current
            self._write_document(document)
            return deepcopy(current)


class PostgresAgeSettingsStore(AgeSettingsStore):
    """``age_settings`` JSON column on the hospitals table, merged under a row lock."""

    def __init__(
        self,
        db_url: str,
        table_name: str = DEFAULT_SETTINGS_TABLE,
        connect=None,
    ) -> None:
        self.db_url = db_url
        self.table_name = table_name
        self._connect = connect

    def _connection(self):
        if self._connect is not None:
            return self._connect(self.db_url)
        psycopg, _sql = _load_psycopg()
        return psycopg.connect(self.db_url)

    def read_settings(self, hospital_id: str) -> SettingsMap:
        try:
            psycopg, sql = _load_psycopg()
        except RuntimeError as exc:
            raise InvalidBinConfigurationError(str(exc)) from exc
        query = sql.SQL("SELECT age_settings FROM {table_name} WHERE hospital_id = %s").format(
            table_name=sql.Identifier(self.table_name)
        )
        try:
            with self._connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute(query, (hospital_id,))
                    row = cursor.fetchone()
        except psycopg.Error as exc:
            raise InvalidBinConfigurationError(
                f"age settings could not be read from {self.table_name}: {exc}"
            ) from exc
        if row is None:
            return {}
        return coerce_settings(row[0])

    def merge_scope(
        self,
        hospital_id: str,
        scope_key: str,
        descriptors: list[dict[str, Any]],
    ) -> SettingsMap:
        _psycopg, sql = _load_psycopg()
        select_query = sql.SQL(
            "SELECT age_settings FROM {table_name} WHERE hospital_id = %s FOR UPDATE"
        ).format(table_name=sql.Identifier(self.table_name))
        update_query = sql.SQL(
            "UPDATE {table_name} SET age_settings = %s::jsonb WHERE hospital_id = %s"
        ).format(table_name=sql.Identifier(self.table_name))

        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(select_query, (hospital_id,))
                row = cursor.fetchone()
                if row is None:
                    raise InvalidBinConfigurationError(f"unknown hospital: {hospital_id}")
                current = coerce_settings(row[0])
                current[scope_key] = deepcopy(descriptors)
                cursor.execute(update_query, (json.dumps(current), hospital_id))
            conn.commit()
        return current


def build_settings_store(settings_config) -> AgeSettingsStore:
    if settings_config.backend == "postgres":
        if not settings_config.db_url:
            raise ValueError("settings.db_url must be set when settings.backend is 'postgres'")
        return PostgresAgeSettingsStore(
            db_url=settings_config.db_url,
            table_name=settings_config.table_name,
        )
    return JsonFileAgeSettingsStore(Path(settings_config.path))
