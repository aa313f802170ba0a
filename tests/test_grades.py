from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlmodel import Session, select

from educonnect.errors import DeadlinePassed
from educonnect.models import GradeAuditLog, GradeReportingPeriod, GradeType, StudentGrade, User
from educonnect.services import grading
from tests.conftest import auth


def _entry(grade_period, classroom, subject, student, value=7.5, **extra) -> dict:
    return {
        "grade_period_id": grade_period.id, "student_id": student.id, "subject_id": subject.id,
        "class_id": classroom.id, "grade_value": value, **extra,
    }


def test_deadline_windows(grade_period: GradeReportingPeriod):
    now = grade_period.start_date + timedelta(hours=1)
    assert grading.can_import(grade_period, now)
    assert grading.can_edit(grade_period, now)

    after_import = grade_period.import_deadline + timedelta(seconds=1)
    assert not grading.can_import(grade_period, after_import)
    assert grading.can_edit(grade_period, after_import)

    after_edit = grade_period.edit_deadline + timedelta(seconds=1)
    assert not grading.can_edit(grade_period, after_edit)

    before_start = grade_period.start_date - timedelta(seconds=1)
    assert not grading.can_import(grade_period, before_start)


def test_inactive_period_blocks_everything(grade_period: GradeReportingPeriod):
    grade_period.is_active = False
    now = grade_period.start_date + timedelta(hours=1)
    assert not grading.can_import(grade_period, now)
    assert not grading.can_edit(grade_period, now)


def test_deadline_message(session: Session, grade_period: GradeReportingPeriod):
    late = grade_period.import_deadline + timedelta(days=1)
    with pytest.raises(DeadlinePassed) as exc:
        grading.check_period_permissions(session, grade_period.id, "import", late)
    assert exc.value.message == (
        f"Đã hết hạn nhập điểm. Hạn chót: {grade_period.import_deadline.strftime('%d/%m/%Y %H:%M')}"
    )


@pytest.mark.asyncio
async def test_create_period_rejects_overlap(client: AsyncClient, admin: User, grade_period: GradeReportingPeriod):
    start = grade_period.start_date + timedelta(days=2)
    response = await client.post("/grade-periods", headers=auth(admin), json={
        "name": "Chồng lấn", "academic_year_id": grade_period.academic_year_id,
        "semester_id": grade_period.semester_id,
        "start_date": start.isoformat(), "end_date": (start + timedelta(days=10)).isoformat(),
        "import_deadline": (start + timedelta(days=3)).isoformat(),
        "edit_deadline": (start + timedelta(days=5)).isoformat(),
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_create_period_validates_deadlines(client: AsyncClient, admin: User, year, semester):
    start = datetime(2026, 3, 1, 8, 0)
    response = await client.post("/grade-periods", headers=auth(admin), json={
        "name": "Sai hạn", "academic_year_id": year.id, "semester_id": semester.id,
        "start_date": start.isoformat(), "end_date": (start + timedelta(days=10)).isoformat(),
        "import_deadline": (start + timedelta(days=6)).isoformat(),
        "edit_deadline": (start + timedelta(days=5)).isoformat(),
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_check_operation_endpoint(client: AsyncClient, session: Session, teacher: User,
                                        grade_period: GradeReportingPeriod):
    response = await client.get(f"/grade-periods/{grade_period.id}/check/import", headers=auth(teacher))
    assert response.status_code == 200
    assert response.json()["data"]["can_import"] is True

    grade_period.import_deadline = datetime.utcnow() - timedelta(minutes=1)
    session.add(grade_period)
    session.commit()
    closed = await client.get(f"/grade-periods/{grade_period.id}/check/import", headers=auth(teacher))
    assert closed.status_code == 403
    assert closed.json()["error"].startswith("Đã hết hạn nhập điểm")


@pytest.mark.asyncio
async def test_enter_grade_and_conflict(client: AsyncClient, teacher: User, grade_period, classroom, subject,
                                        enrolled, student):
    payload = _entry(grade_period, classroom, subject, student)
    response = await client.post("/grades", headers=auth(teacher), json=payload)
    assert response.status_code == 201
    assert response.json()["data"]["grade_value"] == 7.5

    again = await client.post("/grades", headers=auth(teacher), json=payload)
    assert again.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [10.5, -1, 7.25])
async def test_grade_value_validation(client: AsyncClient, teacher: User, grade_period, classroom, subject,
                                      enrolled, student, value):
    response = await client.post("/grades", headers=auth(teacher),
                                 json=_entry(grade_period, classroom, subject, student, value))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_grade_requires_enrolment(client: AsyncClient, teacher: User, grade_period, classroom, subject,
                                        parent: User):
    response = await client.post("/grades", headers=auth(teacher),
                                 json=_entry(grade_period, classroom, subject, parent))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_writes_audit_row(client: AsyncClient, session: Session, teacher: User, grade_period,
                                       classroom, subject, enrolled, student):
    created = await client.post("/grades", headers=auth(teacher),
                                json=_entry(grade_period, classroom, subject, student))
    grade_id = created.json()["data"]["id"]

    short = await client.put(f"/grades/{grade_id}", headers=auth(teacher),
                             json={"grade_value": 8, "change_reason": "  ngắn  "})
    assert short.status_code == 422

    response = await client.put(f"/grades/{grade_id}", headers=auth(teacher),
                                json={"grade_value": 8.5, "change_reason": "Chấm phúc khảo bài thi"})
    assert response.status_code == 200
    audit = session.exec(select(GradeAuditLog).where(GradeAuditLog.grade_id == grade_id)).all()
    assert [(a.old_value, a.new_value) for a in audit] == [(7.5, 8.5)]

    same = await client.put(f"/grades/{grade_id}", headers=auth(teacher),
                            json={"grade_value": 8.5, "notes": "ok", "change_reason": "Chỉ cập nhật ghi chú"})
    assert same.status_code == 200
    trail = await client.get(f"/grades/{grade_id}/audit", headers=auth(teacher))
    assert len(trail.json()["data"]) == 1


@pytest.mark.asyncio
async def test_edit_after_deadline_is_refused(client: AsyncClient, session: Session, teacher: User,
                                              grade_period, classroom, subject, enrolled, student):
    created = await client.post("/grades", headers=auth(teacher),
                                json=_entry(grade_period, classroom, subject, student))
    grade_period.edit_deadline = datetime.utcnow() - timedelta(seconds=1)
    grade_period.import_deadline = grade_period.edit_deadline - timedelta(days=1)
    session.add(grade_period)
    session.commit()

    response = await client.put(f"/grades/{created.json()['data']['id']}", headers=auth(teacher),
                                json={"grade_value": 9, "change_reason": "Sửa sau hạn chót"})
    assert response.status_code == 403
    assert response.json()["error"].startswith("Đã hết hạn sửa điểm")


@pytest.mark.asyncio
async def test_locked_grades_cannot_change(client: AsyncClient, admin: User, teacher: User, grade_period,
                                           classroom, subject, enrolled, student):
    created = await client.post("/grades", headers=auth(teacher),
                                json=_entry(grade_period, classroom, subject, student))
    locked = await client.post("/grades/lock", headers=auth(admin), json={
        "grade_period_id": grade_period.id, "class_id": classroom.id, "subject_id": subject.id,
    })
    assert locked.json()["data"]["affected"] == 1

    response = await client.put(f"/grades/{created.json()['data']['id']}", headers=auth(teacher),
                                json={"grade_value": 9, "change_reason": "Sửa điểm đã khóa"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_batch_and_statistics(client: AsyncClient, teacher: User, grade_period, classroom, subject,
                                    enrolled, student, student2):
    response = await client.post("/grades/batch", headers=auth(teacher), json={"grades": [
        _entry(grade_period, classroom, subject, student, 4.5),
        _entry(grade_period, classroom, subject, student2, 8.5),
    ]})
    assert response.status_code == 201
    assert response.json()["data"]["created"] == 2

    stats = await client.get("/grades/statistics", headers=auth(teacher),
                             params={"grade_period_id": grade_period.id})
    data = stats.json()["data"]
    assert data["count"] == 2
    assert data["average"] == 6.5
    assert data["distribution"] == {"<5": 1, "5-6.4": 0, "6.5-7.9": 0, ">=8": 1}


@pytest.mark.asyncio
async def test_parent_sees_only_children_grades(client: AsyncClient, session: Session, parent: User, family,
                                                grade_period, classroom, subject, enrolled, student, student2,
                                                teacher: User):
    for s in (student, student2):
        session.add(StudentGrade(grade_period_id=grade_period.id, student_id=s.id, subject_id=subject.id,
                                 class_id=classroom.id, grade_value=6.0, created_by_id=teacher.id))
    session.commit()

    response = await client.get("/grades", headers=auth(parent))
    items = response.json()["data"]["items"]
    assert [i["student_id"] for i in items] == [student.id]
    assert items[0]["subject_name"] == "Toán"


@pytest.mark.asyncio
async def test_period_times_with_offset_are_stored_as_utc(client: AsyncClient, session: Session, admin: User,
                                                          year, semester):
    now_vn = datetime.now(timezone(timedelta(hours=7))).replace(microsecond=0)
    response = await client.post("/grade-periods", headers=auth(admin), json={
        "name": "Cuối kỳ 1", "academic_year_id": year.id, "semester_id": semester.id,
        "start_date": (now_vn - timedelta(hours=2)).isoformat(),
        "end_date": (now_vn + timedelta(days=2)).isoformat(),
        "import_deadline": (now_vn - timedelta(hours=1)).isoformat(),
        "edit_deadline": (now_vn + timedelta(days=1)).isoformat(),
    })
    assert response.status_code == 201
    period = session.get(GradeReportingPeriod, response.json()["data"]["id"])
    session.refresh(period)

    expected = (now_vn - timedelta(hours=1)).astimezone(timezone.utc).replace(tzinfo=None)
    assert period.import_deadline == expected
    assert not grading.can_import(period)
    assert grading.can_edit(period)

    new_edit = (datetime.utcnow() + timedelta(days=1, hours=6)).replace(microsecond=0)
    updated = await client.put(f"/grade-periods/{period.id}", headers=auth(admin),
                               json={"edit_deadline": new_edit.strftime("%Y-%m-%dT%H:%M:%SZ")})
    assert updated.status_code == 200
    session.refresh(period)
    assert period.edit_deadline == new_edit


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["name", "start_date", "edit_deadline", "is_active"])
async def test_period_update_refuses_null(client: AsyncClient, admin: User, grade_period, field):
    response = await client.put(f"/grade-periods/{grade_period.id}", headers=auth(admin), json={field: None})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_edit_deadline_cannot_shrink_once_graded(client: AsyncClient, admin: User, teacher: User,
                                                       grade_period, classroom, subject, enrolled, student):
    shorter = grade_period.edit_deadline - timedelta(days=1)
    longer = grade_period.edit_deadline + timedelta(days=1)

    await client.post("/grades", headers=auth(teacher), json=_entry(grade_period, classroom, subject, student))
    refused = await client.put(f"/grade-periods/{grade_period.id}", headers=auth(admin),
                               json={"edit_deadline": shorter.isoformat()})
    assert refused.status_code == 409

    extended = await client.put(f"/grade-periods/{grade_period.id}", headers=auth(admin),
                                json={"edit_deadline": longer.isoformat()})
    assert extended.status_code == 200


@pytest.mark.asyncio
async def test_delete_period_refused_once_graded(client: AsyncClient, session: Session, admin: User,
                                                 teacher: User, grade_period, classroom, subject, enrolled,
                                                 student):
    await client.post("/grades", headers=auth(teacher), json=_entry(grade_period, classroom, subject, student))
    response = await client.delete(f"/grade-periods/{grade_period.id}", headers=auth(admin))
    assert response.status_code == 409
    session.refresh(grade_period)
    assert grade_period.is_active is True


@pytest.mark.asyncio
async def test_delete_empty_period_is_soft(client: AsyncClient, session: Session, admin: User, grade_period):
    response = await client.delete(f"/grade-periods/{grade_period.id}", headers=auth(admin))
    assert response.status_code == 200
    session.refresh(grade_period)
    assert grade_period.is_active is False


def test_statistics_bucket_boundaries(session: Session, teacher: User, grade_period, classroom, subject,
                                      student, student2):
    values = {
        student: (4.9, 5.0, 6.5),
        student2: (6.4, 7.9, 8.0),
    }
    for s, grades in values.items():
        for grade_type, value in zip(GradeType, grades):
            session.add(StudentGrade(grade_period_id=grade_period.id, student_id=s.id, subject_id=subject.id,
                                     class_id=classroom.id, grade_type=grade_type, grade_value=value,
                                     created_by_id=teacher.id))
    session.commit()

    stats = grading.grade_statistics(session, grade_period.id, class_id=classroom.id)
    assert (stats["count"], stats["min"], stats["max"]) == (6, 4.9, 8.0)
    assert stats["distribution"] == {"<5": 1, "5-6.4": 2, "6.5-7.9": 2, ">=8": 1}

    empty = grading.grade_statistics(session, grade_period.id, subject_id=subject.id + 1)
    assert empty["count"] == 0
    assert empty["distribution"] == {"<5": 0, "5-6.4": 0, "6.5-7.9": 0, ">=8": 0}
