import os
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor, execute_values


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_RESULT_COLUMNS = """
    r.res_id, r.fincode, r.meet_id, r.event_numb, r.res_time_decimal, r.result_status,
    a.firstname, a.lastname
"""

_RELAY_COLUMNS = """
    relay_result_id, meet_id, event_numb, relay_name, result_status,
    leg1_fincode, leg1_entry_time, leg1_res_time,
    leg2_fincode, leg2_entry_time, leg2_res_time,
    leg3_fincode, leg3_entry_time, leg3_res_time,
    leg4_fincode, leg4_entry_time, leg4_res_time
"""


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """psycopg2.connect options from the environment.

    connect_timeout defaults to 10s (DB_CONNECT_TIMEOUT). TCP keepalives are
    on unless DB_KEEPALIVES is "0"/"false"; the IDLE/INTERVAL/COUNT tunables
    are passed through only when set.
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    keepalives = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if str(keepalives).lower() in ("0", "false") else 1
    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the shared connection pool from DATABASE_URL (first call wins)."""
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _ping(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False
    return True


def _checkout():
    """Take a live connection from the pool, replacing one stale connection."""
    for _ in range(2):
        conn = _POOL.getconn()
        if _ping(conn):
            return conn
        _POOL.putconn(conn, close=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a pooled connection, or a direct one when no pool exists.

    A failing block rolls the connection back before the error propagates.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    pooled = _POOL is not None
    conn = _checkout() if pooled else psycopg2.connect(url, **_connect_kwargs())
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        if pooled:
            # status 0 = idle; anything else still holds a transaction
            if not getattr(conn, "closed", 0) and getattr(conn, "status", 0) != 0:
                conn.rollback()
            _POOL.putconn(conn)
        else:
            conn.close()


def _fetchall(sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, tuple(params))
        return [dict(row) for row in cur.fetchall()]


def _fetchone(sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
    rows = _fetchall(sql, params)
    return rows[0] if rows else None


# Individual results


def list_event_results(meet_id: int, event_numb: int) -> List[Dict[str, Any]]:
    """Results of one event in creation order, joined with athlete names."""
    return _fetchall(
        f"""
        SELECT {_RESULT_COLUMNS}
        FROM results r
        LEFT JOIN athletes a ON a.fincode = r.fincode
        WHERE r.meet_id = %s AND r.event_numb = %s
        ORDER BY r.created_at, r.res_id
        """,
        (meet_id, event_numb),
    )


def get_result(res_id: int) -> Optional[Dict[str, Any]]:
    return _fetchone(
        f"""
        SELECT {_RESULT_COLUMNS}
        FROM results r
        LEFT JOIN athletes a ON a.fincode = r.fincode
        WHERE r.res_id = %s
        """,
        (res_id,),
    )


def update_result(res_id: int, time_ms: int, status: str) -> None:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE results
            SET res_time_decimal = %s, result_status = %s, updated_at = now()
            WHERE res_id = %s
            """,
            (time_ms, status, res_id),
        )
        conn.commit()


def list_athlete_results(fincode: int, race_id: Optional[int] = None, course: Optional[int] = None) -> List[Dict[str, Any]]:
    """Every individual result of an athlete with its race, course and meet date."""
    clauses = ["r.fincode = %s"]
    params: List[Any] = [fincode]
    if race_id is not None:
        clauses.append("e.ms_race_id = %s")
        params.append(race_id)
    if course is not None:
        clauses.append("m.meet_course = %s")
        params.append(course)
    return _fetchall(
        f"""
        SELECT {_RESULT_COLUMNS},
               e.ms_race_id AS race_id, m.meet_course AS course,
               m.meet_name, m.min_date AS meet_date
        FROM results r
        JOIN meets m ON m.meet_id = r.meet_id
        JOIN events e ON e.meet_id = r.meet_id AND e.event_numb = r.event_numb
        LEFT JOIN athletes a ON a.fincode = r.fincode
        WHERE {' AND '.join(clauses)}
        ORDER BY m.min_date, r.res_id
        """,
        params,
    )


# Splits


def list_splits(res_id: int) -> List[Dict[str, Any]]:
    return _fetchall(
        """
        SELECT splits_id, splits_res_id, distance, split_time
        FROM splits WHERE splits_res_id = %s ORDER BY distance
        """,
        (res_id,),
    )


def replace_splits(res_id: int, splits: Iterable[Tuple[int, int]]) -> None:
    """Replace all splits of a result with (distance, split_time) pairs."""
    rows = [(res_id, int(distance), int(split_time)) for distance, split_time in splits]
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("DELETE FROM splits WHERE splits_res_id = %s", (res_id,))
        if rows:
            execute_values(
                cur,
                "INSERT INTO splits (splits_res_id, distance, split_time) VALUES %s",
                rows,
            )
        conn.commit()


# Relays


def list_relay_results(meet_id: int, event_numb: int) -> List[Dict[str, Any]]:
    return _fetchall(
        f"""
        SELECT {_RELAY_COLUMNS}
        FROM relay_results
        WHERE meet_id = %s AND event_numb = %s
        ORDER BY created_at, relay_result_id
        """,
        (meet_id, event_numb),
    )


def get_relay_result(relay_result_id: int) -> Optional[Dict[str, Any]]:
    return _fetchone(
        f"SELECT {_RELAY_COLUMNS} FROM relay_results WHERE relay_result_id = %s",
        (relay_result_id,),
    )


def update_relay_result(relay_result_id: int, leg_times: Sequence[int], status: str) -> None:
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE relay_results
            SET leg1_res_time = %s, leg2_res_time = %s, leg3_res_time = %s, leg4_res_time = %s,
                result_status = %s, updated_at = now()
            WHERE relay_result_id = %s
            """,
            (*leg_times, status, relay_result_id),
        )
        conn.commit()


def insert_relay_result(row: Dict[str, Any]) -> int:
    columns = sorted(row)
    with _get_conn() as conn, conn.cursor() as cur:
        execute_values(
            cur,
            f"INSERT INTO relay_results ({', '.join(columns)}) VALUES %s RETURNING relay_result_id",
            [tuple(row[c] for c in columns)],
        )
        new_id = cur.fetchone()[0]
        conn.commit()
    return int(new_id)


# Reference data


def get_event_race(meet_id: int, event_numb: int) -> Optional[Dict[str, Any]]:
    """The race swum in an event plus the meet's course and the event gender."""
    return _fetchone(
        """
        SELECT ra.race_id, ra.distance, ra.relay_count, ra.stroke_long_en,
               m.meet_course AS course, e.gender
        FROM events e
        JOIN _races ra ON ra.race_id = e.ms_race_id
        JOIN meets m ON m.meet_id = e.meet_id
        WHERE e.meet_id = %s AND e.event_numb = %s
        """,
        (meet_id, event_numb),
    )


def get_result_race(res_id: int) -> Optional[Dict[str, Any]]:
    return _fetchone(
        """
        SELECT ra.race_id, ra.distance, ra.relay_count, ra.stroke_long_en
        FROM results r
        JOIN events e ON e.meet_id = r.meet_id AND e.event_numb = r.event_numb
        JOIN _races ra ON ra.race_id = e.ms_race_id
        WHERE r.res_id = %s
        """,
        (res_id,),
    )


def list_races() -> List[Dict[str, Any]]:
    return _fetchall(
        "SELECT race_id, distance, relay_count, stroke_long_en FROM _races ORDER BY race_id"
    )
