from datetime import date, timedelta

import pytest
from httpx import AsyncClient
from sqlmodel import Session, select

from educonnect.models import MonthlyViolationAlert, StudentViolation, User
from educonnect.services.violations import week_and_month_index
from tests.conftest import auth

SEMESTER_START = date(2025, 9, 1)


@pytest.mark.parametrize("day, expected", [
    (date(2025, 9, 1), (1, 1)),
    (date(2025, 9, 7), (1, 1)),
    (date(2025, 9, 8), (2, 1)),
    (date(2025, 9, 28), (4, 1)),
    (date(2025, 9, 29), (5, 2)),
    (date(2025, 8, 20), (1, 1)),
])
def test_week_and_month_index(day, expected):
    assert week_and_month_index(day, SEMESTER_START) == expected


def _bulk(classroom, semester, violation_type, student_ids, day="2025-09-10", **extra) -> dict:
    return {
        "student_ids": student_ids, "class_id": classroom.id, "violation_type_id": violation_type.id,
        "severity": "minor", "violation_date": day, "academic_year_id": classroom.academic_year_id,
        "semester_id": semester.id, **extra,
    }


@pytest.mark.asyncio
async def test_record_single_violation(client: AsyncClient, teacher: User, classroom, semester, enrolled,
                                       student, violation_type):
    response = await client.post("/violations", headers=auth(teacher), json={
        "student_id": student.id, "class_id": classroom.id, "violation_type_id": violation_type.id,
        "severity": "moderate", "violation_date": "2025-09-15", "academic_year_id": classroom.academic_year_id,
        "semester_id": semester.id,
    })
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["points"] == 2
    assert (data["week_index"], data["month_index"]) == (3, 1)


@pytest.mark.asyncio
async def test_other_teacher_cannot_record(client: AsyncClient, other_teacher: User, classroom, semester,
                                           enrolled, student, violation_type):
    response = await client.post("/violations/bulk", headers=auth(other_teacher),
                                 json=_bulk(classroom, semester, violation_type, [student.id]))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_bulk_rejects_students_outside_class(client: AsyncClient, teacher: User, classroom, semester,
                                                   enrolled, student, parent: User, violation_type):
    response = await client.post("/violations/bulk", headers=auth(teacher),
                                 json=_bulk(classroom, semester, violation_type, [student.id, parent.id]))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_monthly_alert_after_three_violations(client: AsyncClient, session: Session, admin: User,
                                                    teacher: User, classroom, semester, enrolled, student,
                                                    violation_type):
    for day in ("2025-09-02", "2025-09-09", "2025-09-16"):
        response = await client.post("/violations/bulk", headers=auth(teacher),
                                     json=_bulk(classroom, semester, violation_type, [student.id], day))
        assert response.status_code == 201

    alert = session.exec(select(MonthlyViolationAlert)).one()
    assert (alert.month_index, alert.total_violations, alert.is_seen) == (1, 3, False)

    count = await client.get("/violations/alerts/unseen-count", headers=auth(admin))
    assert count.json()["data"]["count"] == 1

    alerts = await client.get("/violations/alerts", headers=auth(teacher))
    assert [a["student_name"] for a in alerts.json()["data"]] == [student.full_name]

    seen = await client.post(f"/violations/alerts/{alert.id}/seen", headers=auth(admin))
    assert seen.json()["data"]["is_seen"] is True

    # a further violation in the same month raises the alert again
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student.id], "2025-09-23"))
    session.refresh(alert)
    assert (alert.total_violations, alert.is_seen) == (4, False)


@pytest.mark.asyncio
async def test_delete_violation_recounts_alert(client: AsyncClient, session: Session, admin: User,
                                               teacher: User, classroom, semester, enrolled, student,
                                               violation_type):
    created = await client.post("/violations/bulk", headers=auth(teacher),
                                json=_bulk(classroom, semester, violation_type, [student.id]))
    violation_id = created.json()["data"]["ids"][0]

    response = await client.delete(f"/violations/{violation_id}", headers=auth(admin))
    assert response.status_code == 200
    assert session.get(StudentViolation, violation_id) is None
    assert session.exec(select(MonthlyViolationAlert)).one().total_violations == 0


@pytest.mark.asyncio
async def test_monthly_ranking_order(client: AsyncClient, teacher: User, classroom, semester, enrolled,
                                     student, student2, violation_type):
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student.id, student2.id]))
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student2.id], points=5))

    response = await client.get("/violations/monthly-ranking", headers=auth(teacher),
                                params={"semester_id": semester.id, "month_index": 1})
    ranking = response.json()["data"]
    assert [(r["student_id"], r["rank"], r["total_violations"], r["total_points"]) for r in ranking] == [
        (student2.id, 1, 2, 7),
        (student.id, 2, 1, 2),
    ]


@pytest.mark.asyncio
async def test_weekly_grouping(client: AsyncClient, admin: User, teacher: User, classroom, semester, enrolled,
                               student, violation_type):
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student.id], "2025-09-08"))
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student.id], "2025-09-12"))

    response = await client.get("/violations/weekly", headers=auth(admin),
                                params={"semester_id": semester.id, "week_index": 2})
    groups = response.json()["data"]
    assert len(groups) == 1
    assert groups[0]["total_violations"] == 2
    assert groups[0]["total_points"] == 4
    assert groups[0]["violations"][0]["severity_label"] == "Nhẹ"


@pytest.mark.asyncio
async def test_parent_and_student_views(client: AsyncClient, teacher: User, parent: User, family, classroom,
                                        semester, enrolled, student, student2, violation_type):
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student.id, student2.id]))

    mine = await client.get("/violations/my-children", headers=auth(parent))
    assert [v["student_id"] for v in mine.json()["data"]["items"]] == [student.id]

    other = await client.get("/violations/my-children", headers=auth(parent), params={"student_id": student2.id})
    assert other.status_code == 403

    own = await client.get("/violations/mine", headers=auth(student2))
    assert own.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_admin_list_filters(client: AsyncClient, admin: User, teacher: User, classroom, semester,
                                  enrolled, student, student2, violation_type):
    await client.post("/violations/bulk", headers=auth(teacher),
                      json=_bulk(classroom, semester, violation_type, [student.id, student2.id]))

    response = await client.get("/violations", headers=auth(admin), params={"search": "HS002"})
    assert [v["student_code"] for v in response.json()["data"]["items"]] == ["HS002"]

    bad = await client.get("/violations", headers=auth(admin), params={"severity": "extreme"})
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_violation_type_points_must_be_non_negative(client: AsyncClient, admin: User, violation_type):
    response = await client.post("/violations/types", headers=auth(admin), json={
        "category_id": violation_type.category_id, "name": "Âm điểm", "points": -1,
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_stats_windows_and_severity_counts(client: AsyncClient, admin: User, teacher: User, parent: User,
                                                 family, classroom, semester, enrolled, student, student2,
                                                 violation_type):
    today = date.today()
    for days_ago, severity, ids in ((2, "minor", [student.id]), (20, "serious", [student.id]),
                                    (100, "minor", [student2.id])):
        day = (today - timedelta(days=days_ago)).isoformat()
        response = await client.post("/violations/bulk", headers=auth(teacher),
                                     json=_bulk(classroom, semester, violation_type, ids, day, severity=severity))
        assert response.status_code == 201

    stats = await client.get("/violations/stats", headers=auth(admin))
    assert stats.json()["data"] == {
        "total": 3, "this_week": 1, "this_month": 2,
        "by_severity": {"minor": 2, "moderate": 0, "serious": 1, "severe": 0},
    }

    own = await client.get("/violations/stats", headers=auth(parent))
    assert own.json()["data"]["total"] == 2


@pytest.mark.asyncio
async def test_violation_type_update_refuses_null_name(client: AsyncClient, admin: User, violation_type):
    response = await client.put(f"/violations/types/{violation_type.id}", headers=auth(admin), json={"name": None})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_category_deactivate_and_reactivate(client: AsyncClient, admin: User):
    created = await client.post("/violations/categories", headers=auth(admin), json={"name": "Vệ sinh"})
    category_id = created.json()["data"]["id"]

    await client.post(f"/violations/categories/{category_id}/deactivate", headers=auth(admin))
    active = await client.get("/violations/categories", headers=auth(admin))
    assert active.json()["data"] == []
    everything = await client.get("/violations/categories", headers=auth(admin), params={"include_inactive": True})
    assert [c["is_active"] for c in everything.json()["data"]] == [False]

    await client.post(f"/violations/categories/{category_id}/reactivate", headers=auth(admin))
    active = await client.get("/violations/categories", headers=auth(admin))
    assert [c["name"] for c in active.json()["data"]] == ["Vệ sinh"]

    unknown = await client.post(f"/violations/categories/{category_id}/archive", headers=auth(admin))
    assert unknown.status_code == 404
