from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlmodel import Session, select

from ..db import get_session
from ..dependencies import children_ids, homeroom_class_for, require_role
from ..errors import NotFound, PermissionDenied
from ..models import (
    ClassAssignment, ClassRoom, ParentReportResponse, ReportPeriod, ReportStatus, StudentReport, User,
)
from ..schemas.report import BulkSendForm, ParentResponseForm, ReportForm, ResendForm
from ..services import reports as svc
from ..services.mailer import EmailService, get_email_service
from ..utils import ok

router = APIRouter(prefix="/reports", tags=["reports"])


def _own_report(session: Session, teacher: User, report_id: int) -> StudentReport:
    classroom = homeroom_class_for(session, teacher)
    report = session.get(StudentReport, report_id)
    if not report:
        raise NotFound("Không tìm thấy báo cáo")
    if report.class_id != classroom.id:
        raise PermissionDenied("Báo cáo không thuộc lớp chủ nhiệm của bạn")
    return report


# Homeroom teacher

@router.get("/homeroom/{period_id}")
def homeroom_reports(
    period_id: int,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    period = svc.get_period(session, period_id)
    classroom = homeroom_class_for(session, current_user)
    students = session.exec(
        select(User)
        .join(ClassAssignment, ClassAssignment.student_id == User.id)
        .where(ClassAssignment.class_id == classroom.id, ClassAssignment.is_active == True)  # noqa: E712
        .order_by(User.full_name)
    ).all()
    reports = {
        r.student_id: r
        for r in session.exec(
            select(StudentReport).where(
                StudentReport.report_period_id == period.id,
                StudentReport.class_id == classroom.id,
            )
        ).all()
    }
    return ok({
        "class": classroom,
        "period": period,
        "students": [
            {
                "student_id": s.id,
                "full_name": s.full_name,
                "student_code": s.student_code,
                "report": reports.get(s.id),
            }
            for s in students
        ],
    })


@router.post("")
def save_report(
    form: ReportForm,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    classroom = homeroom_class_for(session, current_user)
    report = svc.save_report(session, form, classroom, current_user)
    return ok(report, "Đã lưu báo cáo")


@router.post("/{report_id}/send")
def send_report(
    report_id: int,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    result = svc.send_report(session, _own_report(session, current_user, report_id), mailer)
    return ok(result, "Đã gửi báo cáo cho phụ huynh")


@router.post("/{report_id}/resend")
def resend_report(
    report_id: int,
    form: ResendForm,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    report = _own_report(session, current_user, report_id)
    result = svc.resend_report(session, report, form.resend_reason, mailer)
    return ok(result, "Đã gửi lại báo cáo")


@router.post("/bulk-send")
def bulk_send(
    form: BulkSendForm,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    reports = [_own_report(session, current_user, rid) for rid in dict.fromkeys(form.report_ids)]
    result = svc.bulk_send(session, reports, mailer)
    return ok(result, f"Đã gửi {result['sent']} báo cáo")


# Parent

def _parent_report(session: Session, parent: User, report_id: int) -> tuple[StudentReport, ParentReportResponse]:
    report = session.get(StudentReport, report_id)
    if not report or report.status != ReportStatus.SENT:
        raise NotFound("Không tìm thấy báo cáo")
    response = session.exec(
        select(ParentReportResponse).where(
            ParentReportResponse.report_id == report.id,
            ParentReportResponse.parent_id == parent.id,
        )
    ).first()
    if not response:
        if report.student_id not in children_ids(session, parent):
            raise PermissionDenied("Bạn không có quyền xem báo cáo này")
        response = ParentReportResponse(report_id=report.id, parent_id=parent.id)
        session.add(response)
        session.flush()
    return report, response


def _report_view(session: Session, report: StudentReport, response: ParentReportResponse) -> dict:
    student = session.get(User, report.student_id)
    classroom = session.get(ClassRoom, report.class_id)
    period = session.get(ReportPeriod, report.report_period_id)
    return {
        **report.model_dump(),
        "student_name": student.full_name,
        "class_name": classroom.name,
        "period_name": period.name,
        "response": response,
    }


@router.get("/mine")
def parent_reports(
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    ids = children_ids(session, current_user)
    if not ids:
        return ok([])
    rows = session.exec(
        select(StudentReport, User, ClassRoom, ReportPeriod, ParentReportResponse)
        .join(User, User.id == StudentReport.student_id)
        .join(ClassRoom, ClassRoom.id == StudentReport.class_id)
        .join(ReportPeriod, ReportPeriod.id == StudentReport.report_period_id)
        .outerjoin(
            ParentReportResponse,
            (ParentReportResponse.report_id == StudentReport.id)
            & (ParentReportResponse.parent_id == current_user.id),
        )
        .where(StudentReport.student_id.in_(ids), StudentReport.status == ReportStatus.SENT)
        .order_by(StudentReport.sent_at.desc())
    ).all()
    return ok([
        {
            **r.model_dump(),
            "student_name": student.full_name,
            "class_name": classroom.name,
            "period_name": period.name,
            "response": response,
        }
        for r, student, classroom, period, response in rows
    ])


@router.get("/mine/unread-count")
def parent_unread_count(
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    count = session.exec(
        select(func.count(ParentReportResponse.id))
        .join(StudentReport, StudentReport.id == ParentReportResponse.report_id)
        .where(
            ParentReportResponse.parent_id == current_user.id,
            ParentReportResponse.is_read == False,  # noqa: E712
            StudentReport.status == ReportStatus.SENT,
        )
    ).one()
    return ok({"count": count})


@router.get("/mine/{report_id}")
def view_report(
    report_id: int,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    report, response = _parent_report(session, current_user, report_id)
    if not response.is_read:
        response.is_read = True
        response.read_at = datetime.utcnow()
        session.add(response)
    session.commit()
    session.refresh(response)
    return ok(_report_view(session, report, response))


@router.post("/mine/{report_id}/respond")
def respond(
    report_id: int,
    form: ParentResponseForm,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    report, response = _parent_report(session, current_user, report_id)
    now = datetime.utcnow()
    response.agreement_status = form.agreement_status
    response.comments = form.comments
    response.responded_at = now
    if not response.is_read:
        response.is_read = True
        response.read_at = now
    session.add(response)
    session.commit()
    session.refresh(response)
    return ok(response, "Đã gửi phản hồi")
