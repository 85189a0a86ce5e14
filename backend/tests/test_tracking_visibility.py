"""
Visibility scoping per role.

Scenarios:
- Section-admin of X cannot read a submission of section Y.
- A pending section-admin (inactive) is rejected on every scoped write until
  a super-admin activates the record.
"""
from __future__ import annotations

from dataclasses import replace

import pytest

from identity_access.domain import Role
from tracking.domain import Principal, Routine, Submission, SubmissionStatus, Task
from tracking.visibility import Access, ResourceKind, authorize, can, scope, visible


def _p(pid: str, role: Role, section: str | None = "X", active: bool = True) -> Principal:
    return Principal(id=pid, email=f"{pid}@example.edu", name=pid, role=role, section_id=section, is_active=active)


MEMBER = _p("m1", Role.MEMBER)
ADMIN_X = _p("ax", Role.SECTION_ADMIN)
ADMIN_Y = _p("ay", Role.SECTION_ADMIN, section="Y")
PENDING_ADMIN = _p("px", Role.SECTION_ADMIN, active=False)
ROOT = _p("root", Role.SUPER_ADMIN, section=None)


def _task(tid: str, section: str = "X", *, published: bool = True, created_by: str = "ax") -> Task:
    return Task(id=tid, title=tid, section_id=section, created_by=created_by, is_published=published)


def _sub(user_id: str, section: str) -> Submission:
    return Submission(
        id=f"sub-{user_id}", task_id="t1", user_id=user_id, status=SubmissionStatus.SUBMITTED, section_id=section
    )


def test_section_admin_cannot_read_submission_of_other_section():
    foreign = _sub("sy", "Y")
    assert can(ADMIN_X, ResourceKind.SUBMISSION, foreign) is False
    with pytest.raises(PermissionError) as exc:
        authorize(ADMIN_X, ResourceKind.SUBMISSION, foreign)
    assert str(exc.value) == "forbidden"
    assert can(ADMIN_Y, ResourceKind.SUBMISSION, foreign) is True


def test_pending_section_admin_is_rejected_until_activated():
    task = _task("t1")
    for kind, resource in (
        (ResourceKind.TASK, task),
        (ResourceKind.SUBMISSION, _sub("m1", "X")),
        (ResourceKind.PRINCIPAL, MEMBER),
    ):
        with pytest.raises(PermissionError):
            authorize(PENDING_ADMIN, kind, resource, Access.WRITE)

    activated = replace(PENDING_ADMIN, is_active=True)
    authorize(activated, ResourceKind.TASK, task, Access.WRITE)
    authorize(activated, ResourceKind.PRINCIPAL, MEMBER, Access.WRITE)


def test_inactive_principal_reads_only_its_own_record():
    assert can(PENDING_ADMIN, ResourceKind.PRINCIPAL, PENDING_ADMIN) is True
    assert can(PENDING_ADMIN, ResourceKind.PRINCIPAL, MEMBER) is False
    assert can(PENDING_ADMIN, ResourceKind.TASK, _task("t1")) is False
    assert can(PENDING_ADMIN, ResourceKind.PRINCIPAL, PENDING_ADMIN, Access.WRITE) is False


def test_member_sees_only_published_tasks_of_own_section():
    tasks = [_task("pub"), _task("draft", published=False), _task("other", section="Y")]
    assert [t.id for t in visible(MEMBER, ResourceKind.TASK, tasks)] == ["pub"]
    assert can(MEMBER, ResourceKind.TASK, tasks[0], Access.WRITE) is False


def test_member_without_section_sees_no_tasks():
    loose = _p("loose", Role.MEMBER, section=None)
    assert visible(loose, ResourceKind.TASK, [_task("pub")]) == []


def test_member_reads_and_writes_only_own_submissions():
    own = _sub("m1", "X")
    other = _sub("m2", "X")
    assert visible(MEMBER, ResourceKind.SUBMISSION, [own, other]) == [own]
    assert can(MEMBER, ResourceKind.SUBMISSION, own, Access.WRITE) is True
    assert can(MEMBER, ResourceKind.SUBMISSION, replace(own, section_id="Y"), Access.WRITE) is False


def test_draft_visible_only_to_its_creator_among_section_admins():
    draft = _task("draft", published=False, created_by="ax")
    other_admin_x = _p("ax2", Role.SECTION_ADMIN)
    assert can(ADMIN_X, ResourceKind.TASK, draft) is True
    assert can(other_admin_x, ResourceKind.TASK, draft) is False
    assert can(other_admin_x, ResourceKind.TASK, _task("pub")) is True


def test_routines_inactive_hidden_from_members_but_not_admins():
    active = Routine(id="r1", title="Math", section_id="X", day_of_week=1, start_time="09:00", end_time="10:00", created_by="ax")
    retired = replace(active, id="r2", is_active=False)
    assert visible(MEMBER, ResourceKind.ROUTINE, [active, retired]) == [active]
    assert visible(ADMIN_X, ResourceKind.ROUTINE, [active, retired]) == [active, retired]
    assert can(MEMBER, ResourceKind.ROUTINE, active, Access.WRITE) is False


def test_section_admin_manages_members_of_own_section_only():
    assert can(ADMIN_X, ResourceKind.PRINCIPAL, MEMBER, Access.WRITE) is True
    assert can(ADMIN_X, ResourceKind.PRINCIPAL, ADMIN_X, Access.WRITE) is False
    assert can(ADMIN_X, ResourceKind.PRINCIPAL, _p("my", Role.MEMBER, section="Y"), Access.WRITE) is False
    assert can(ADMIN_X, ResourceKind.PRINCIPAL, _p("rx", Role.SUPER_ADMIN), Access.WRITE) is False


def test_super_admin_reads_everything_but_writes_only_principals_and_org_units():
    task = _task("t", section="Y", published=False, created_by="ay")
    assert can(ROOT, ResourceKind.TASK, task) is True
    assert can(ROOT, ResourceKind.SUBMISSION, _sub("sy", "Y")) is True
    assert can(ROOT, ResourceKind.TASK, task, Access.WRITE) is False
    assert can(ROOT, ResourceKind.SUBMISSION, _sub("sy", "Y"), Access.WRITE) is False
    assert can(ROOT, ResourceKind.PRINCIPAL, MEMBER, Access.WRITE) is True
    assert can(ROOT, ResourceKind.ORG_UNIT, object(), Access.WRITE) is True


@pytest.mark.parametrize("principal", [MEMBER, ADMIN_X])
def test_org_units_are_read_only_below_super_admin(principal: Principal):
    assert can(principal, ResourceKind.ORG_UNIT, object()) is True
    assert can(principal, ResourceKind.ORG_UNIT, object(), Access.WRITE) is False


def test_scope_returns_reusable_predicate():
    allowed = scope(ADMIN_X, ResourceKind.SUBMISSION)
    assert allowed(_sub("a", "X")) is True
    assert allowed(_sub("b", "Y")) is False
