"""
Postgres-backed tracking repository.

Security:
- Use an application login DSN so Row Level Security stays active; the
  caller's id is exposed to policies via `app.current_sub`.

Design:
- Minimal psycopg3 usage; each call opens a short-lived connection.
- Timestamps are fetched as UTC ISO text via `to_char` so parsing is identical
  to the in-memory adapter.
- Driver connection failures are re-raised as `StoreUnavailableError`.
- Ids are validated as UUIDs before any connection is opened
  (`ValueError("invalid_<field>")`); foreign key violations surface as
  `LookupError("<parent>_not_found")`.
"""
from __future__ import annotations

from contextlib import contextmanager
import logging
import os
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID

try:
    import psycopg
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

from .domain import (
    Batch,
    Department,
    OrgTree,
    Principal,
    Routine,
    Section,
    Submission,
    Task,
    batch_from_row,
    department_from_row,
    principal_from_row,
    routine_from_row,
    section_from_row,
    submission_from_row,
    task_from_row,
)
from .ports import StoreUnavailableError, TaskQuery, _UNSET

logger = logging.getLogger("unitrack.tracking.repo_db")


def _default_dsn() -> str:
    host = os.getenv("TEST_DB_HOST", "127.0.0.1")
    port = os.getenv("TEST_DB_PORT", "54322")
    user = os.getenv("APP_DB_USER", "unitrack_app")
    password = os.getenv("APP_DB_PASSWORD", "CHANGE_ME_DEV")
    return f"postgresql://{user}:{password}@{host}:{port}/postgres"


def resolve_dsn() -> str:
    """Resolve the DSN: TRACKING_DATABASE_URL, then DATABASE_URL, then local default."""
    for dsn in (os.getenv("TRACKING_DATABASE_URL"), os.getenv("DATABASE_URL")):
        if dsn:
            return dsn
    return _default_dsn()


def _ts(column: str) -> str:
    return f"""to_char({column} at time zone 'utc', 'YYYY-MM-DD"T"HH24:MI:SS"+00:00"')"""


_USER_COLUMNS = (
    "id", "email", "name", "role", "section_id", "batch_id", "department_id",
    "student_id", "is_active", "last_login_at", "created_at",
)
_USER_SELECT = f"""
    id::text, email, name, role, section_id::text, batch_id::text, department_id::text,
    student_id, is_active, {_ts('last_login_at')}, {_ts('created_at')}
"""

_TASK_COLUMNS = (
    "id", "title", "description", "category", "priority", "due_date", "section_id",
    "created_by", "is_published", "published_at", "created_at", "updated_at",
)
_TASK_SELECT = f"""
    t.id::text, t.title, t.description, t.category, t.priority, {_ts('t.due_date')},
    t.section_id::text, t.created_by::text, t.is_published, {_ts('t.published_at')},
    {_ts('t.created_at')}, {_ts('t.updated_at')}
"""

_SUBMISSION_COLUMNS = (
    "id", "task_id", "user_id", "status", "submission_text", "submitted_at", "grade",
    "feedback", "reviewed_by", "reviewed_at", "section_id", "created_at", "updated_at",
)
_SUBMISSION_SELECT = f"""
    s.id::text, s.task_id::text, s.user_id::text, s.status, s.submission_text,
    {_ts('s.submitted_at')}, s.grade, s.feedback, s.reviewed_by::text, {_ts('s.reviewed_at')},
    t.section_id::text, {_ts('s.created_at')}, {_ts('s.updated_at')}
"""

_ROUTINE_COLUMNS = (
    "id", "title", "description", "section_id", "day_of_week", "start_time", "end_time",
    "room", "subject", "instructor_name", "is_active", "created_by",
)
_ROUTINE_SELECT = """
    id::text, title, description, section_id::text, day_of_week,
    to_char(start_time, 'HH24:MI'), to_char(end_time, 'HH24:MI'),
    room, subject, instructor_name, is_active, created_by::text
"""

_TASK_WRITABLE = {"title", "description", "category", "priority", "due_at", "is_published", "published_at"}
_SUBMISSION_WRITABLE = {"status", "grade", "feedback", "reviewed_by", "reviewed_at"}
_ROUTINE_WRITABLE = {
    "title", "description", "day_of_week", "start_time", "end_time", "room", "subject",
    "instructor_name", "is_active",
}


def _to_row(columns: Sequence[str], values: Tuple) -> Dict[str, Any]:
    return dict(zip(columns, values))


def _db_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _uuid(value: Any, field: str) -> str:
    """Normalize an id for a `uuid` column or raise `ValueError("invalid_<field>")`."""
    try:
        return str(UUID(str(value)))
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid_{field}") from exc


def _opt_uuid(value: Any, field: str) -> Any:
    # None and _UNSET pass through untouched (nullable column or no change).
    if value is None or value is _UNSET:
        return value
    return _uuid(value, field)


# Default constraint names are "<table>_<column>_fkey".
_FK_NOT_FOUND = (
    ("task_id", "task_not_found"),
    ("section_id", "section_not_found"),
    ("batch_id", "batch_not_found"),
    ("department_id", "department_not_found"),
    ("user_id", "user_not_found"),
    ("created_by", "user_not_found"),
    ("reviewed_by", "user_not_found"),
)


def _fk_error(constraint: Optional[str]) -> str:
    for column, code in _FK_NOT_FOUND:
        if constraint and constraint.endswith(f"_{column}_fkey"):
            return code
    return "reference_not_found"


class DBTrackingRepo:
    def __init__(self, dsn: Optional[str] = None, *, actor_id: Optional[str] = None) -> None:
        """Initialize a Postgres-backed repository.

        Parameters:
            dsn: Optional explicit DSN; resolved from env when omitted.
            actor_id: When set, exported as `app.current_sub` on every call so
                RLS policies can scope rows to the caller.

        Connections are opened per call, never eagerly.
        """
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBTrackingRepo")
        self._dsn = dsn or resolve_dsn()
        self._actor_id = actor_id

    def for_actor(self, actor_id: str) -> "DBTrackingRepo":
        return DBTrackingRepo(self._dsn, actor_id=actor_id)

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.cursor() as cur:
                    if self._actor_id:
                        cur.execute("select set_config('app.current_sub', %s, true)", (self._actor_id,))
                    yield cur
        except psycopg.errors.ForeignKeyViolation as exc:
            code = _fk_error(getattr(exc.diag, "constraint_name", None))
            logger.info("tracking write rejected: %s", code)
            raise LookupError(code) from exc
        except psycopg.OperationalError as exc:
            logger.warning("tracking store unavailable: %s", exc.__class__.__name__)
            raise StoreUnavailableError("store_unavailable") from exc

    # --- principals --------------------------------------------------------------
    def get_principal(self, user_id: str) -> Optional[Principal]:
        user_id = _uuid(user_id, "user_id")
        with self._cursor() as cur:
            cur.execute(f"select {_USER_SELECT} from public.users where id = %s", (user_id,))
            row = cur.fetchone()
        return principal_from_row(_to_row(_USER_COLUMNS, row)) if row else None

    def list_principals(self, *, section_id: Optional[str] = None) -> List[Principal]:
        sql = f"select {_USER_SELECT} from public.users"
        params: Tuple = ()
        if section_id is not None:
            sql += " where section_id = %s"
            params = (_uuid(section_id, "section_id"),)
        sql += " order by name asc"
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [principal_from_row(_to_row(_USER_COLUMNS, r)) for r in rows]

    def update_principal(self, user_id, *, role=_UNSET, is_active=_UNSET, section_id=_UNSET, batch_id=_UNSET):
        user_id = _uuid(user_id, "user_id")
        section_id = _opt_uuid(section_id, "section_id")
        batch_id = _opt_uuid(batch_id, "batch_id")
        sets: List[str] = []
        params: List[Any] = []
        for column, value in (("role", role), ("is_active", is_active), ("section_id", section_id), ("batch_id", batch_id)):
            if value is not _UNSET:
                sets.append(f"{column} = %s")
                params.append(_db_value(value))
        if not sets:
            return self.get_principal(user_id)
        sets.append("updated_at = now()")
        with self._cursor() as cur:
            cur.execute(
                f"update public.users set {', '.join(sets)} where id = %s returning {_USER_SELECT}",
                (*params, user_id),
            )
            row = cur.fetchone()
        return principal_from_row(_to_row(_USER_COLUMNS, row)) if row else None

    def delete_principal(self, user_id: str) -> bool:
        user_id = _uuid(user_id, "user_id")
        with self._cursor() as cur:
            cur.execute("delete from public.users where id = %s", (user_id,))
            return cur.rowcount > 0

    # --- tasks -------------------------------------------------------------------
    def list_tasks(self, query: TaskQuery) -> List[Task]:
        clauses: List[str] = []
        params: List[Any] = []
        if query.section_id is not None:
            clauses.append("t.section_id = %s")
            params.append(_uuid(query.section_id, "section_id"))
        if query.is_published is not None:
            clauses.append("t.is_published = %s")
            params.append(query.is_published)
        if query.category is not None:
            clauses.append("t.category = %s")
            params.append(_db_value(query.category))
        if query.created_by is not None:
            clauses.append("t.created_by = %s")
            params.append(_uuid(query.created_by, "created_by"))
        if query.due_from is not None:
            clauses.append("t.due_date >= %s")
            params.append(query.due_from)
        if query.due_to is not None:
            clauses.append("t.due_date <= %s")
            params.append(query.due_to)
        where = f" where {' and '.join(clauses)}" if clauses else ""
        with self._cursor() as cur:
            cur.execute(f"select {_TASK_SELECT} from public.tasks t{where} order by t.created_at desc", tuple(params))
            rows = cur.fetchall()
        return [task_from_row(_to_row(_TASK_COLUMNS, r)) for r in rows]

    def get_task(self, task_id: str) -> Optional[Task]:
        task_id = _uuid(task_id, "task_id")
        with self._cursor() as cur:
            cur.execute(f"select {_TASK_SELECT} from public.tasks t where t.id = %s", (task_id,))
            row = cur.fetchone()
        return task_from_row(_to_row(_TASK_COLUMNS, row)) if row else None

    def create_task(self, *, section_id, created_by, title, description, category, priority, due_at, is_published):
        section_id = _uuid(section_id, "section_id")
        created_by = _opt_uuid(created_by, "created_by")
        with self._cursor() as cur:
            cur.execute(
                f"""
                insert into public.tasks as t
                       (title, description, category, priority, due_date, section_id, created_by,
                        is_published, published_at)
                values (%s, %s, %s, %s, %s, %s, %s, %s, case when %s then now() else null end)
                returning {_TASK_SELECT}
                """,
                (
                    title,
                    description,
                    _db_value(category),
                    _db_value(priority),
                    due_at,
                    section_id,
                    created_by,
                    bool(is_published),
                    bool(is_published),
                ),
            )
            row = cur.fetchone()
        return task_from_row(_to_row(_TASK_COLUMNS, row))

    def update_task(self, task_id: str, **fields: Any) -> Optional[Task]:
        task_id = _uuid(task_id, "task_id")
        unknown = set(fields) - _TASK_WRITABLE
        if unknown:
            raise ValueError("invalid_fields")
        sets = [f"{'due_date' if k == 'due_at' else k} = %s" for k in fields]
        params = [_db_value(v) for v in fields.values()]
        sets.append("updated_at = now()")
        with self._cursor() as cur:
            cur.execute(
                f"update public.tasks as t set {', '.join(sets)} where t.id = %s returning {_TASK_SELECT}",
                (*params, task_id),
            )
            row = cur.fetchone()
        return task_from_row(_to_row(_TASK_COLUMNS, row)) if row else None

    def delete_task(self, task_id: str) -> bool:
        task_id = _uuid(task_id, "task_id")
        with self._cursor() as cur:
            cur.execute("delete from public.tasks where id = %s", (task_id,))
            return cur.rowcount > 0

    # --- submissions -------------------------------------------------------------
    def list_submissions(
        self,
        *,
        task_ids: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        section_id: Optional[str] = None,
    ) -> List[Submission]:
        clauses: List[str] = []
        params: List[Any] = []
        if task_ids is not None:
            if not task_ids:
                return []
            clauses.append("s.task_id = any(%s::uuid[])")
            params.append([_uuid(t, "task_id") for t in task_ids])
        if user_id is not None:
            clauses.append("s.user_id = %s")
            params.append(_uuid(user_id, "user_id"))
        if section_id is not None:
            clauses.append("t.section_id = %s")
            params.append(_uuid(section_id, "section_id"))
        where = f" where {' and '.join(clauses)}" if clauses else ""
        with self._cursor() as cur:
            cur.execute(
                f"select {_SUBMISSION_SELECT} from public.task_submissions s "
                f"join public.tasks t on t.id = s.task_id{where}",
                tuple(params),
            )
            rows = cur.fetchall()
        return [submission_from_row(_to_row(_SUBMISSION_COLUMNS, r)) for r in rows]

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        submission_id = _uuid(submission_id, "submission_id")
        with self._cursor() as cur:
            cur.execute(
                f"select {_SUBMISSION_SELECT} from public.task_submissions s "
                "join public.tasks t on t.id = s.task_id where s.id = %s",
                (submission_id,),
            )
            row = cur.fetchone()
        return submission_from_row(_to_row(_SUBMISSION_COLUMNS, row)) if row else None

    def upsert_submission(self, task_id, user_id, *, body, status, submitted_at):
        """Insert or update the single submission for (task, user).

        Two concurrent first saves resolve through the unique key: the later
        statement updates the row the earlier one inserted.
        """
        task_id = _uuid(task_id, "task_id")
        user_id = _uuid(user_id, "user_id")
        with self._cursor() as cur:
            cur.execute(
                """
                insert into public.task_submissions (task_id, user_id, status, submission_text, submitted_at)
                values (%s, %s, %s, %s, %s)
                on conflict (task_id, user_id) do update
                   set status = excluded.status,
                       submission_text = excluded.submission_text,
                       submitted_at = excluded.submitted_at,
                       updated_at = now()
                returning id::text
                """,
                (task_id, user_id, _db_value(status), body, submitted_at),
            )
            sid = cur.fetchone()[0]
            cur.execute(
                f"select {_SUBMISSION_SELECT} from public.task_submissions s "
                "join public.tasks t on t.id = s.task_id where s.id = %s",
                (sid,),
            )
            row = cur.fetchone()
        return submission_from_row(_to_row(_SUBMISSION_COLUMNS, row))

    def update_submission(self, submission_id: str, **fields: Any) -> Optional[Submission]:
        submission_id = _uuid(submission_id, "submission_id")
        unknown = set(fields) - _SUBMISSION_WRITABLE
        if unknown:
            raise ValueError("invalid_fields")
        sets = [f"{k} = %s" for k in fields]
        params = [_db_value(v) for v in fields.values()]
        sets.append("updated_at = now()")
        with self._cursor() as cur:
            cur.execute(
                f"update public.task_submissions set {', '.join(sets)} where id = %s returning id::text",
                (*params, submission_id),
            )
            if cur.fetchone() is None:
                return None
        return self.get_submission(submission_id)

    # --- routines ----------------------------------------------------------------
    def list_routines(self, *, section_id: Optional[str] = None, include_inactive: bool = False) -> List[Routine]:
        clauses: List[str] = []
        params: List[Any] = []
        if section_id is not None:
            clauses.append("section_id = %s")
            params.append(_uuid(section_id, "section_id"))
        if not include_inactive:
            clauses.append("is_active = true")
        where = f" where {' and '.join(clauses)}" if clauses else ""
        with self._cursor() as cur:
            cur.execute(
                f"select {_ROUTINE_SELECT} from public.routines{where} order by day_of_week asc, start_time asc",
                tuple(params),
            )
            rows = cur.fetchall()
        return [routine_from_row(_to_row(_ROUTINE_COLUMNS, r)) for r in rows]

    def get_routine(self, routine_id: str) -> Optional[Routine]:
        routine_id = _uuid(routine_id, "routine_id")
        with self._cursor() as cur:
            cur.execute(f"select {_ROUTINE_SELECT} from public.routines where id = %s", (routine_id,))
            row = cur.fetchone()
        return routine_from_row(_to_row(_ROUTINE_COLUMNS, row)) if row else None

    def create_routine(self, **fields: Any) -> Routine:
        for key in ("section_id", "created_by"):
            if key in fields:
                fields[key] = _opt_uuid(fields[key], key)
        columns = list(fields)
        placeholders = ", ".join(["%s"] * len(columns))
        with self._cursor() as cur:
            cur.execute(
                f"insert into public.routines ({', '.join(columns)}) values ({placeholders}) "
                f"returning {_ROUTINE_SELECT}",
                tuple(_db_value(v) for v in fields.values()),
            )
            row = cur.fetchone()
        return routine_from_row(_to_row(_ROUTINE_COLUMNS, row))

    def update_routine(self, routine_id: str, **fields: Any) -> Optional[Routine]:
        routine_id = _uuid(routine_id, "routine_id")
        unknown = set(fields) - _ROUTINE_WRITABLE
        if unknown:
            raise ValueError("invalid_fields")
        sets = [f"{k} = %s" for k in fields]
        params = [_db_value(v) for v in fields.values()]
        with self._cursor() as cur:
            cur.execute(
                f"update public.routines set {', '.join(sets)} where id = %s returning {_ROUTINE_SELECT}",
                (*params, routine_id),
            )
            row = cur.fetchone()
        return routine_from_row(_to_row(_ROUTINE_COLUMNS, row)) if row else None

    # --- org units ---------------------------------------------------------------
    def load_org_tree(self) -> OrgTree:
        with self._cursor() as cur:
            cur.execute("select id::text, name, code, description from public.departments")
            departments = cur.fetchall()
            cur.execute("select id::text, name, department_id::text from public.batches")
            batches = cur.fetchall()
            cur.execute("select id::text, name, batch_id::text from public.sections")
            sections = cur.fetchall()
        tree = OrgTree()
        for r in departments:
            dep = department_from_row(_to_row(("id", "name", "code", "description"), r))
            tree.departments[dep.id] = dep
        for r in batches:
            batch = batch_from_row(_to_row(("id", "name", "department_id"), r))
            tree.batches[batch.id] = batch
        for r in sections:
            section = section_from_row(_to_row(("id", "name", "batch_id"), r))
            tree.sections[section.id] = section
        return tree

    def create_department(self, *, name: str, code: str, description: Optional[str] = None) -> Department:
        with self._cursor() as cur:
            cur.execute(
                "insert into public.departments (name, code, description) values (%s, %s, %s) "
                "returning id::text, name, code, description",
                (name, code, description),
            )
            row = cur.fetchone()
        return department_from_row(_to_row(("id", "name", "code", "description"), row))

    def create_batch(self, *, name: str, department_id: str) -> Batch:
        department_id = _uuid(department_id, "department_id")
        with self._cursor() as cur:
            cur.execute(
                "insert into public.batches (name, department_id) values (%s, %s) "
                "returning id::text, name, department_id::text",
                (name, department_id),
            )
            row = cur.fetchone()
        return batch_from_row(_to_row(("id", "name", "department_id"), row))

    def create_section(self, *, name: str, batch_id: str) -> Section:
        batch_id = _uuid(batch_id, "batch_id")
        with self._cursor() as cur:
            cur.execute(
                "insert into public.sections (name, batch_id) values (%s, %s) "
                "returning id::text, name, batch_id::text",
                (name, batch_id),
            )
            row = cur.fetchone()
        return section_from_row(_to_row(("id", "name", "batch_id"), row))


__all__ = ["DBTrackingRepo", "resolve_dsn"]
