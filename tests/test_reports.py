import pytest
from httpx import AsyncClient
from sqlmodel import Session, select

from educonnect.models import ClassRoom, ParentReportResponse, StudentReport, User
from educonnect.services import reports as svc
from tests.conftest import auth

FEEDBACK = {"strengths": "Chăm chỉ, tích cực phát biểu", "weaknesses": "Cần cẩn thận hơn khi làm bài"}


async def _save(client, teacher, report_period, student, **extra):
    return await client.post("/reports", headers=auth(teacher), json={
        "report_period_id": report_period.id, "student_id": student.id, **FEEDBACK, **extra,
    })


@pytest.mark.asyncio
async def test_generate_drafts_once(client: AsyncClient, session: Session, admin: User, report_period,
                                    classroom, enrolled):
    first = await client.post(f"/report-periods/{report_period.id}/generate", headers=auth(admin))
    assert first.json()["data"]["created"] == 2
    second = await client.post(f"/report-periods/{report_period.id}/generate", headers=auth(admin))
    assert second.json()["data"]["created"] == 0


@pytest.mark.asyncio
async def test_save_send_and_edit_mode(client: AsyncClient, mailer, teacher: User, parent: User, family,
                                       report_period, classroom, enrolled, student):
    saved = await _save(client, teacher, report_period, student)
    assert saved.status_code == 200
    report_id = saved.json()["data"]["id"]
    assert saved.json()["data"]["status"] == "draft"

    sent = await client.post(f"/reports/{report_id}/send", headers=auth(teacher))
    assert sent.json()["data"]["emails_sent"] == 1
    assert mailer.sent[0]["to"] == parent.email

    locked = await _save(client, teacher, report_period, student, strengths="Sửa lại")
    assert locked.status_code == 409

    edited = await _save(client, teacher, report_period, student, strengths="Sửa lại", edit_mode=True)
    assert edited.status_code == 200
    assert edited.json()["data"]["status"] == "sent"

    twice = await client.post(f"/reports/{report_id}/send", headers=auth(teacher))
    assert twice.status_code == 409


@pytest.mark.asyncio
async def test_report_for_student_outside_homeroom(client: AsyncClient, other_teacher: User, session: Session,
                                                   report_period, classroom, enrolled, student, year, semester):
    session.add(ClassRoom(name="10A2", academic_year_id=year.id, semester_id=semester.id,
                          homeroom_teacher_id=other_teacher.id))
    session.commit()
    response = await _save(client, other_teacher, report_period, student)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_resend_resets_parent_response(client: AsyncClient, session: Session, mailer, teacher: User,
                                             parent: User, family, report_period, classroom, enrolled, student):
    saved = await _save(client, teacher, report_period, student)
    report_id = saved.json()["data"]["id"]
    await client.post(f"/reports/{report_id}/send", headers=auth(teacher))

    answered = await client.post(f"/reports/mine/{report_id}/respond", headers=auth(parent),
                                 json={"agreement_status": "agree", "comments": "Cảm ơn cô"})
    assert answered.status_code == 200

    blank = await client.post(f"/reports/{report_id}/resend", headers=auth(teacher), json={"resend_reason": "   "})
    assert blank.status_code == 422

    resent = await client.post(f"/reports/{report_id}/resend", headers=auth(teacher),
                               json={"resend_reason": "Bổ sung nhận xét học lực"})
    assert resent.status_code == 200
    assert mailer.sent[-1]["subject"].startswith("[Cập nhật] ")

    response = session.exec(select(ParentReportResponse)).one()
    session.refresh(response)
    assert (response.agreement_status, response.is_read, response.responded_at) == (None, False, None)


@pytest.mark.asyncio
async def test_bulk_send_skips_incomplete(client: AsyncClient, session: Session, teacher: User, report_period,
                                          classroom, enrolled, student, student2):
    full = await _save(client, teacher, report_period, student)
    empty = StudentReport(report_period_id=report_period.id, student_id=student2.id, class_id=classroom.id)
    session.add(empty)
    session.commit()

    response = await client.post("/reports/bulk-send", headers=auth(teacher),
                                 json={"report_ids": [full.json()["data"]["id"], empty.id]})
    assert response.json()["data"] == {"sent": 1, "skipped": [empty.id]}


@pytest.mark.asyncio
async def test_parent_views_and_responds(client: AsyncClient, session: Session, teacher: User, parent: User,
                                         family, report_period, classroom, enrolled, student, student2):
    own = await _save(client, teacher, report_period, student)
    other = await _save(client, teacher, report_period, student2)
    for r in (own, other):
        await client.post(f"/reports/{r.json()['data']['id']}/send", headers=auth(teacher))

    listing = await client.get("/reports/mine", headers=auth(parent))
    rows = listing.json()["data"]
    assert [r["student_id"] for r in rows] == [student.id]
    assert rows[0]["period_name"] == report_period.name

    unread = await client.get("/reports/mine/unread-count", headers=auth(parent))
    assert unread.json()["data"]["count"] == 1

    viewed = await client.get(f"/reports/mine/{rows[0]['id']}", headers=auth(parent))
    assert viewed.json()["data"]["response"]["is_read"] is True
    unread = await client.get("/reports/mine/unread-count", headers=auth(parent))
    assert unread.json()["data"]["count"] == 0

    forbidden = await client.get(f"/reports/mine/{other.json()['data']['id']}", headers=auth(parent))
    assert forbidden.status_code == 403

    invalid = await client.post(f"/reports/mine/{rows[0]['id']}/respond", headers=auth(parent),
                                json={"agreement_status": "maybe"})
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_class_progress_and_reminders(client: AsyncClient, session: Session, mailer, admin: User,
                                            teacher: User, parent: User, family, report_period, classroom,
                                            enrolled, student):
    saved = await _save(client, teacher, report_period, student)
    await client.post(f"/reports/{saved.json()['data']['id']}/send", headers=auth(teacher))
    await client.post(f"/reports/mine/{saved.json()['data']['id']}/respond", headers=auth(parent),
                      json={"agreement_status": "agree"})

    progress = await client.get(f"/report-periods/{report_period.id}/progress", headers=auth(admin))
    row = progress.json()["data"][0]
    assert (row["total_students"], row["sent_reports"], row["status"]) == (2, 1, "incomplete")
    assert (row["parent_responses"], row["parent_agreements"], row["agreement_percentage"]) == (1, 1, 100)

    reminders = await client.post(f"/report-periods/{report_period.id}/reminders", headers=auth(admin))
    assert reminders.json()["data"] == {"teachers": 1, "emails_sent": 1}
    assert mailer.sent[-1]["to"] == teacher.email


def test_progress_complete_requires_students(session: Session, report_period, classroom):
    rows = svc.class_progress(session, report_period)
    assert rows[0]["total_students"] == 0
    assert rows[0]["status"] == "incomplete"


@pytest.mark.asyncio
async def test_send_all_and_reset(client: AsyncClient, admin: User, teacher: User, report_period, classroom,
                                  enrolled, student):
    await _save(client, teacher, report_period, student)
    sent = await client.post(f"/report-periods/{report_period.id}/send-all", headers=auth(admin))
    assert sent.json()["data"]["sent"] == 1

    nothing = await client.post(f"/report-periods/{report_period.id}/send-all", headers=auth(admin))
    assert nothing.status_code == 409

    reset = await client.post(f"/report-periods/{report_period.id}/reset", headers=auth(admin))
    assert reset.json()["data"]["reset"] == 1


@pytest.mark.asyncio
async def test_period_update_refuses_null_dates(client: AsyncClient, admin: User, report_period):
    response = await client.put(f"/report-periods/{report_period.id}", headers=auth(admin), json={"end_date": None})
    assert response.status_code == 422

    renamed = await client.put(f"/report-periods/{report_period.id}", headers=auth(admin),
                               json={"name": "Báo cáo giữa kỳ"})
    assert renamed.json()["data"]["name"] == "Báo cáo giữa kỳ"
