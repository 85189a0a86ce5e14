"""Seed a demo department, section, members, tasks and routines.

Why:
    Local dashboards are only interesting with data: a section with a few
    students, published tasks across categories and due dates (past, soon,
    later), some submissions, and a weekly routine.

Usage:
    python -m backend.tools.seed_demo                       # in-memory dry run
    python -m backend.tools.seed_demo --db-dsn postgresql://... --apply-schema

Notes:
    - Without `--db-dsn` the data is built in an in-memory store and only the
      resulting counts are printed; useful as a smoke check of the use cases.
    - With `--apply-schema`, `backend/tracking/schema.sql` is executed first
      (idempotent).
    - Demo users are identified by email; re-running against a database that
      already holds them fails on the unique constraint instead of duplicating.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from pathlib import Path
import sys
from typing import Any, Callable, Dict, Optional

import click

_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from identity_access.domain import Role  # noqa: E402
from tracking.domain import Principal, Priority, SubmissionStatus, TaskCategory  # noqa: E402
from tracking.ports import TrackingRepoProtocol  # noqa: E402
from tracking.repo_memory import InMemoryTrackingRepo  # noqa: E402

try:  # pragma: no cover - optional for in-memory runs
    import psycopg  # type: ignore
except Exception:  # pragma: no cover
    psycopg = None  # type: ignore

logger = logging.getLogger("unitrack.tools.seed_demo")

SCHEMA_PATH = _BACKEND_DIR / "tracking" / "schema.sql"

AddUser = Callable[..., Principal]

_STUDENTS = [
    ("Ayesha Rahman", "ayesha@example.edu", "2201001"),
    ("Bilal Karim", "bilal@example.edu", "2201002"),
    ("Chandni Das", "chandni@example.edu", "2201003"),
    ("Dev Malhotra", "dev@example.edu", "2201004"),
]

# (title, category, priority, due offset in hours, published)
_TASKS = [
    ("Linked list lab report", TaskCategory.LAB_REPORT, Priority.HIGH, -26, True),
    ("Graph algorithms assignment", TaskCategory.ASSIGNMENT, Priority.MEDIUM, 5, True),
    ("Quiz 3: sorting", TaskCategory.QUIZ, Priority.LOW, 30, True),
    ("Term project proposal", TaskCategory.PROJECT, Priority.HIGH, 24 * 9, True),
    ("Midterm preparation notes", TaskCategory.MIDTERM, Priority.MEDIUM, None, False),
]

# (title, day, start, end, room)
_ROUTINES = [
    ("Data Structures", 0, "09:00", "10:30", "CSE-301"),
    ("Data Structures Lab", 2, "11:00", "13:00", "Lab-2"),
    ("Discrete Mathematics", 3, "14:00", "15:30", "CSE-204"),
]


def seed(repo: TrackingRepoProtocol, add_user: AddUser, now: Optional[datetime] = None) -> Dict[str, int]:
    """Create the demo data through the repository port; returns counts."""
    now = now or datetime.now(timezone.utc)
    dep = repo.create_department(name="Computer Science and Engineering", code="CSE", description="Demo department")
    batch = repo.create_batch(name="CSE 2022", department_id=dep.id)
    section = repo.create_section(name="Section A", batch_id=batch.id)
    placement: Dict[str, Any] = {"department_id": dep.id, "batch_id": batch.id, "section_id": section.id}

    add_user(email="admin@example.edu", name="Super Admin", role=Role.SUPER_ADMIN.value)
    lead = add_user(email="lead@example.edu", name="Section Lead", role=Role.SECTION_ADMIN.value, **placement)
    students = [
        add_user(email=email, name=name, role=Role.MEMBER.value, student_id=sid, **placement)
        for name, email, sid in _STUDENTS
    ]

    tasks = []
    for title, category, priority, due_hours, published in _TASKS:
        due_at = now + timedelta(hours=due_hours) if due_hours is not None else None
        tasks.append(
            repo.create_task(
                section_id=section.id,
                created_by=lead.id,
                title=title,
                description=None,
                category=category,
                priority=priority,
                due_at=due_at,
                is_published=published,
            )
        )

    submissions = 0
    # First two students submitted the first two tasks; the third saved a draft.
    for student in students[:2]:
        for task in tasks[:2]:
            repo.upsert_submission(
                task.id,
                student.id,
                body=f"{task.title} by {student.name}",
                status=SubmissionStatus.SUBMITTED,
                submitted_at=now - timedelta(hours=2),
            )
            submissions += 1
    repo.upsert_submission(tasks[1].id, students[2].id, body="draft", status=SubmissionStatus.PENDING, submitted_at=None)
    submissions += 1

    for title, day, start, end, room in _ROUTINES:
        repo.create_routine(
            title=title,
            section_id=section.id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            room=room,
            subject=title,
            instructor_name="Section Lead",
            description=None,
            created_by=lead.id,
            is_active=True,
        )

    return {
        "departments": 1,
        "sections": 1,
        "users": 2 + len(students),
        "tasks": len(tasks),
        "submissions": submissions,
        "routines": len(_ROUTINES),
    }


def _db_user_adder(dsn: str) -> AddUser:
    from tracking.domain import principal_from_row

    def _add(**fields: Any) -> Principal:
        columns = list(fields)
        with psycopg.connect(dsn, autocommit=True) as conn:  # type: ignore[union-attr]
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into public.users ({', '.join(columns)}) values ({', '.join(['%s'] * len(columns))}) "
                    "returning id::text",
                    tuple(fields.values()),
                )
                row = cur.fetchone()
        return principal_from_row({**fields, "id": row[0]})

    return _add


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--db-dsn", required=False, help="Service-role DSN; omit for an in-memory dry run.")
@click.option("--apply-schema", is_flag=True, help="Execute backend/tracking/schema.sql before seeding.")
@click.option("--verbose", "-v", is_flag=True, help="Log each repository write.")
def cli(db_dsn: Optional[str], apply_schema: bool, verbose: bool) -> None:
    """Seed demo tracking data."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    if db_dsn is None:
        if apply_schema:
            raise click.ClickException("--apply-schema requires --db-dsn")
        repo = InMemoryTrackingRepo()
        counts = seed(repo, repo.add_principal)
    else:
        if psycopg is None:  # pragma: no cover
            raise click.ClickException("psycopg is required for --db-dsn")
        from tracking.repo_db import DBTrackingRepo

        if apply_schema:
            with psycopg.connect(db_dsn, autocommit=True) as conn:
                conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
            logger.info("schema applied from %s", SCHEMA_PATH.name)
        counts = seed(DBTrackingRepo(db_dsn), _db_user_adder(db_dsn))
    click.echo(", ".join(f"{k}={v}" for k, v in counts.items()))


if __name__ == "__main__":  # pragma: no cover - manual entry
    cli()
