"""Report periods, per-class progress and sending student reports to parents."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, func
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from ..models import (
    AgreementStatus, ClassAssignment, ClassRoom, ParentReportResponse, ParentStudentRelationship,
    ReportPeriod, ReportStatus, StudentReport, User,
)
from ..schemas.report import ReportForm
from .mailer import EmailService

logger = get_logger("reports")


def get_period(session: Session, period_id: int) -> ReportPeriod:
    period = session.get(ReportPeriod, period_id)
    if not period or not period.is_active:
        raise NotFound("Không tìm thấy kỳ báo cáo")
    return period


def class_progress(session: Session, period: ReportPeriod, grade_level: int | None = None) -> list[dict]:
    """
    One row per active class of the period's semester. Every count comes from a
    grouped aggregate, joined back to the classes in Python.
    """
    class_stmt = select(ClassRoom, User).outerjoin(User, User.id == ClassRoom.homeroom_teacher_id).where(
        ClassRoom.semester_id == period.semester_id,
        ClassRoom.is_active == True,  # noqa: E712
    )
    if grade_level is not None:
        class_stmt = class_stmt.where(ClassRoom.grade_level == grade_level)
    classes = session.exec(class_stmt.order_by(ClassRoom.name)).all()
    class_ids = [c.id for c, _ in classes]
    if not class_ids:
        return []

    students = dict(session.exec(
        select(ClassAssignment.class_id, func.count(ClassAssignment.id))
        .where(ClassAssignment.class_id.in_(class_ids), ClassAssignment.is_active == True)  # noqa: E712
        .group_by(ClassAssignment.class_id)
    ).all())

    sent = dict(session.exec(
        select(StudentReport.class_id, func.count(StudentReport.id))
        .where(
            StudentReport.report_period_id == period.id,
            StudentReport.class_id.in_(class_ids),
            StudentReport.status == ReportStatus.SENT,
        )
        .group_by(StudentReport.class_id)
    ).all())

    responses = {
        class_id: (answered or 0, agreed or 0)
        for class_id, answered, agreed in session.exec(
            select(
                StudentReport.class_id,
                func.count(ParentReportResponse.id),
                func.sum(case((ParentReportResponse.agreement_status == AgreementStatus.AGREE, 1), else_=0)),
            )
            .join(ParentReportResponse, ParentReportResponse.report_id == StudentReport.id)
            .where(
                StudentReport.report_period_id == period.id,
                StudentReport.class_id.in_(class_ids),
                ParentReportResponse.agreement_status.is_not(None),
            )
            .group_by(StudentReport.class_id)
        ).all()
    }

    rows = []
    for classroom, teacher in classes:
        total = students.get(classroom.id, 0)
        sent_reports = sent.get(classroom.id, 0)
        answered, agreed = responses.get(classroom.id, (0, 0))
        rows.append({
            "class_id": classroom.id,
            "class_name": classroom.name,
            "grade_level": classroom.grade_level,
            "homeroom_teacher_id": teacher.id if teacher else None,
            "homeroom_teacher_name": teacher.full_name if teacher else None,
            "homeroom_teacher_email": teacher.email if teacher else None,
            "total_students": total,
            "sent_reports": sent_reports,
            "status": "complete" if total > 0 and sent_reports >= total else "incomplete",
            "parent_responses": answered,
            "parent_agreements": agreed,
            "agreement_percentage": round(100 * agreed / answered) if answered else 0,
        })
    return rows


def generate_reports(session: Session, period: ReportPeriod) -> int:
    """Creates a draft for every actively assigned student of the semester's classes that has none."""
    existing = set(session.exec(
        select(StudentReport.student_id).where(StudentReport.report_period_id == period.id)
    ).all())
    assignments = session.exec(
        select(ClassAssignment, ClassRoom)
        .join(ClassRoom, ClassRoom.id == ClassAssignment.class_id)
        .where(
            ClassRoom.semester_id == period.semester_id,
            ClassRoom.is_active == True,  # noqa: E712
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).all()
    created = 0
    for assignment, classroom in assignments:
        if assignment.student_id in existing:
            continue
        session.add(StudentReport(
            report_period_id=period.id,
            student_id=assignment.student_id,
            class_id=classroom.id,
            homeroom_teacher_id=classroom.homeroom_teacher_id,
        ))
        existing.add(assignment.student_id)
        created += 1
    session.commit()
    logger.info("Generated %d draft report(s) for period %s", created, period.id)
    return created


def save_report(session: Session, form: ReportForm, classroom: ClassRoom, teacher: User) -> StudentReport:
    get_period(session, form.report_period_id)
    enrolled = session.exec(
        select(ClassAssignment).where(
            ClassAssignment.class_id == classroom.id,
            ClassAssignment.student_id == form.student_id,
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).first()
    if not enrolled:
        raise PermissionDenied("Học sinh không thuộc lớp chủ nhiệm của bạn")

    report = session.exec(
        select(StudentReport).where(
            StudentReport.report_period_id == form.report_period_id,
            StudentReport.student_id == form.student_id,
        )
    ).first()
    if report and report.status == ReportStatus.SENT and not form.edit_mode:
        raise Conflict("Báo cáo đã được gửi. Bật chế độ chỉnh sửa để cập nhật")
    if not report:
        report = StudentReport(
            report_period_id=form.report_period_id,
            student_id=form.student_id,
            class_id=classroom.id,
        )

    report.homeroom_teacher_id = teacher.id
    report.strengths = form.strengths
    report.weaknesses = form.weaknesses
    report.academic_performance = form.academic_performance
    report.discipline_status = form.discipline_status
    report.updated_at = datetime.utcnow()
    session.add(report)
    session.commit()
    session.refresh(report)
    return report


def _parents_of(session: Session, student_id: int) -> list[User]:
    return list(session.exec(
        select(User)
        .join(ParentStudentRelationship, ParentStudentRelationship.parent_id == User.id)
        .where(ParentStudentRelationship.student_id == student_id)
    ).all())


def _notify_parents(session: Session, report: StudentReport, mailer: EmailService,
                    resend_reason: str | None = None) -> int:
    """Ensures a response row per parent and emails each of them. Returns emails sent."""
    student = session.get(User, report.student_id)
    classroom = session.get(ClassRoom, report.class_id)
    period = session.get(ReportPeriod, report.report_period_id)
    existing = {
        r.parent_id: r
        for r in session.exec(
            select(ParentReportResponse).where(ParentReportResponse.report_id == report.id)
        ).all()
    }
    emailed = 0
    for parent in _parents_of(session, report.student_id):
        response = existing.get(parent.id)
        if not response:
            response = ParentReportResponse(report_id=report.id, parent_id=parent.id)
        elif resend_reason:
            response.agreement_status = None
            response.comments = None
            response.responded_at = None
            response.is_read = False
            response.read_at = None
        session.add(response)
        if mailer.send_report_notification(
            to_email=parent.email,
            parent_name=parent.full_name,
            student_name=student.full_name,
            class_name=classroom.name,
            period_name=period.name,
            report_id=report.id,
            resend_reason=resend_reason,
        ):
            emailed += 1
    return emailed


def _ready_to_send(report: StudentReport) -> None:
    if not (report.strengths and report.weaknesses):
        raise ValidationFailed("Báo cáo chưa có đầy đủ điểm mạnh và điểm yếu")


def send_report(session: Session, report: StudentReport, mailer: EmailService) -> dict:
    if report.status == ReportStatus.SENT:
        raise Conflict("Báo cáo đã được gửi, hãy dùng chức năng gửi lại")
    _ready_to_send(report)
    report.status = ReportStatus.SENT
    report.sent_at = datetime.utcnow()
    report.updated_at = report.sent_at
    session.add(report)
    emailed = _notify_parents(session, report, mailer)
    session.commit()
    logger.info("Report %s sent (%d email(s))", report.id, emailed)
    return {"report_id": report.id, "emails_sent": emailed}


def resend_report(session: Session, report: StudentReport, reason: str, mailer: EmailService) -> dict:
    if report.status != ReportStatus.SENT:
        raise Conflict("Chỉ có thể gửi lại báo cáo đã gửi")
    report.sent_at = datetime.utcnow()
    report.resend_reason = reason
    report.updated_at = report.sent_at
    session.add(report)
    emailed = _notify_parents(session, report, mailer, resend_reason=reason)
    session.commit()
    logger.info("Report %s resent (%d email(s)): %s", report.id, emailed, reason)
    return {"report_id": report.id, "emails_sent": emailed}


def bulk_send(session: Session, reports: list[StudentReport], mailer: EmailService) -> dict:
    sent, skipped = 0, []
    for report in reports:
        if report.status == ReportStatus.SENT or not (report.strengths and report.weaknesses):
            skipped.append(report.id)
            continue
        send_report(session, report, mailer)
        sent += 1
    return {"sent": sent, "skipped": skipped}


def send_all_drafts(session: Session, period: ReportPeriod, mailer: EmailService) -> dict:
    drafts = session.exec(
        select(StudentReport).where(
            StudentReport.report_period_id == period.id,
            StudentReport.status == ReportStatus.DRAFT,
        )
    ).all()
    if not drafts:
        raise Conflict("Không có báo cáo nháp nào để gửi")
    return bulk_send(session, list(drafts), mailer)


def reset_to_draft(session: Session, period: ReportPeriod, class_id: int | None = None) -> int:
    stmt = select(StudentReport).where(
        StudentReport.report_period_id == period.id,
        StudentReport.status == ReportStatus.SENT,
    )
    if class_id:
        stmt = stmt.where(StudentReport.class_id == class_id)
    reports = session.exec(stmt).all()
    for r in reports:
        r.status = ReportStatus.DRAFT
        r.sent_at = None
        r.updated_at = datetime.utcnow()
        session.add(r)
    session.commit()
    logger.info("Reset %d report(s) of period %s to draft", len(reports), period.id)
    return len(reports)


def send_reminders(session: Session, period: ReportPeriod, mailer: EmailService) -> dict:
    by_teacher: dict[int, dict] = {}
    for row in class_progress(session, period):
        if row["status"] == "complete" or not row["homeroom_teacher_id"]:
            continue
        entry = by_teacher.setdefault(row["homeroom_teacher_id"], {
            "email": row["homeroom_teacher_email"],
            "name": row["homeroom_teacher_name"],
            "classes": [],
        })
        entry["classes"].append(row)

    sent = 0
    for entry in by_teacher.values():
        if mailer.send_teacher_reminder(
            to_email=entry["email"],
            teacher_name=entry["name"],
            period_name=period.name,
            classes=entry["classes"],
        ):
            sent += 1
    logger.info("Sent %d reminder(s) for period %s", sent, period.id)
    return {"teachers": len(by_teacher), "emails_sent": sent}
