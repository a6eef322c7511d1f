from __future__ import annotations

import logging

import pandas as pd

from clinic_insights.config import ColumnsConfig
from clinic_insights.io.schema import CANONICAL_COLUMNS

LOGGER = logging.getLogger(__name__)


def _load_psycopg():
    try:
        import psycopg
        from psycopg import sql
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError(
            "psycopg is required for PostgreSQL operations. "
            "Install with: pip install 'psycopg[binary]'"
        ) from exc
    return psycopg, sql


def load_visit_records_from_postgres(
    db_url: str,
    columns: ColumnsConfig,
    view_name: str = "appointment_visits",
    hospital_id: str | None = None,
) -> pd.DataFrame:
    """Fetch visits with their source columns aliased to canonical names."""
    psycopg, sql = _load_psycopg()
    select_list = sql.SQL(", ").join(
        sql.SQL("{source} AS {canonical}").format(
            source=sql.Identifier(getattr(columns, canonical)),
            canonical=sql.Identifier(canonical),
        )
        for canonical in CANONICAL_COLUMNS
    )
    with psycopg.connect(db_url) as conn:
        with conn.cursor() as cursor:
            where_sql = sql.SQL("")
            params: list[object] = []
            if hospital_id:
                where_sql = sql.SQL(" WHERE hospital_id = %s")
                params.append(hospital_id)

            query = sql.SQL("SELECT {select_list} FROM {view_name}{where_sql} ORDER BY {order}").format(
                select_list=select_list,
                view_name=sql.Identifier(view_name),
                where_sql=where_sql,
                order=sql.Identifier(columns.occurred_at),
            )
            cursor.execute(query, params)
            rows = cursor.fetchall()

    LOGGER.info("Loaded %d visits from %s", len(rows), view_name)
    if not rows:
        return pd.DataFrame(columns=CANONICAL_COLUMNS)
    return pd.DataFrame(rows, columns=CANONICAL_COLUMNS)
