import pytest
from httpx import AsyncClient
from sqlmodel import Session

from educonnect.models import AcademicYear, ClassRoom, User, UserRole
from tests.conftest import auth, make_user


@pytest.mark.asyncio
async def test_create_year_rejects_bad_dates(client: AsyncClient, admin: User):
    response = await client.post("/academic-years", headers=auth(admin), json={
        "name": "2026-2027", "start_date": "2027-05-31", "end_date": "2026-09-01",
    })
    assert response.status_code == 422
    assert response.json()["error"] == "Ngày bắt đầu phải trước ngày kết thúc"


@pytest.mark.asyncio
async def test_only_one_current_year(client: AsyncClient, session: Session, admin: User, year: AcademicYear):
    response = await client.post("/academic-years", headers=auth(admin), json={
        "name": "2026-2027", "start_date": "2026-09-01", "end_date": "2027-05-31", "is_current": True,
    })
    assert response.status_code == 201
    session.refresh(year)
    assert year.is_current is False

    back = await client.post(f"/academic-years/{year.id}/set-current", headers=auth(admin))
    assert back.json()["data"]["is_current"] is True


@pytest.mark.asyncio
async def test_duplicate_semester_number(client: AsyncClient, admin: User, semester):
    response = await client.post("/semesters", headers=auth(admin), json={
        "academic_year_id": semester.academic_year_id, "name": "HK1 lặp", "semester_number": 1,
        "start_date": "2025-09-01", "end_date": "2026-01-15",
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_homeroom_teacher_must_be_teacher(client: AsyncClient, admin: User, parent: User, year, semester):
    response = await client.post("/classes", headers=auth(admin), json={
        "name": "10A2", "academic_year_id": year.id, "semester_id": semester.id, "homeroom_teacher_id": parent.id,
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_classes_counts_students(client: AsyncClient, admin: User, classroom: ClassRoom, enrolled):
    response = await client.get("/classes", headers=auth(admin))
    rows = response.json()["data"]
    assert rows[0]["name"] == "10A1"
    assert rows[0]["student_count"] == 2


@pytest.mark.asyncio
async def test_assign_student_once_per_year(client: AsyncClient, session: Session, admin: User,
                                            classroom: ClassRoom, student: User, year, semester):
    first = await client.post(f"/classes/{classroom.id}/students", headers=auth(admin), json={"student_id": student.id})
    assert first.status_code == 201

    other = ClassRoom(name="10A2", academic_year_id=year.id, semester_id=semester.id)
    session.add(other)
    session.commit()
    second = await client.post(f"/classes/{other.id}/students", headers=auth(admin), json={"student_id": student.id})
    assert second.status_code == 409

    removed = await client.delete(f"/classes/{classroom.id}/students/{student.id}", headers=auth(admin))
    assert removed.status_code == 200
    again = await client.post(f"/classes/{other.id}/students", headers=auth(admin), json={"student_id": student.id})
    assert again.status_code == 201


@pytest.mark.asyncio
async def test_class_capacity(client: AsyncClient, session: Session, admin: User, classroom: ClassRoom,
                              enrolled):
    classroom.max_students = 2
    session.add(classroom)
    session.commit()
    extra = make_user(session, "hs3@school.edu.vn", "Ba", UserRole.STUDENT, student_code="HS003")

    response = await client.post(f"/classes/{classroom.id}/students", headers=auth(admin), json={"student_id": extra.id})
    assert response.status_code == 409
    assert response.json()["error"] == "Lớp đã đủ sĩ số"


@pytest.mark.asyncio
async def test_homeroom_students_include_parents(client: AsyncClient, teacher: User, other_teacher: User,
                                                 classroom: ClassRoom, enrolled, family, parent: User):
    response = await client.get("/homeroom/students", headers=auth(teacher))
    assert response.status_code == 200
    students = {s["student_code"]: s for s in response.json()["data"]["students"]}
    assert [p["email"] for p in students["HS001"]["parents"]] == [parent.email]
    assert students["HS002"]["parents"] == []

    denied = await client.get("/homeroom/students", headers=auth(other_teacher))
    assert denied.status_code == 403
    assert denied.json()["error"] == "Bạn không phải giáo viên chủ nhiệm"


@pytest.mark.asyncio
async def test_subject_codes_are_unique(client: AsyncClient, admin: User, subject):
    response = await client.post("/subjects", headers=auth(admin), json={"code": "TOAN", "name": "Toán học"})
    assert response.status_code == 409
