"""Grade reporting periods, deadline checks, grade entry and statistics."""
from __future__ import annotations

from datetime import datetime
from typing import Literal

from sqlalchemy import and_, case, func
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..errors import Conflict, DeadlinePassed, NotFound, ValidationFailed, PermissionDenied
from ..models import (
    ClassAssignment, GradeAuditLog, GradeReportingPeriod, StudentGrade, User,
)
from ..schemas.grade import GradeEntry, GradePeriodForm, GradePeriodUpdate
from ..utils import format_deadline

logger = get_logger("grading")

Operation = Literal["import", "edit"]

OPERATION_LABELS = {"import": "nhập điểm", "edit": "sửa điểm"}


def utcnow() -> datetime:
    return datetime.utcnow()


def can_import(period: GradeReportingPeriod, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return bool(period.is_active) and period.start_date <= now <= period.import_deadline


def can_edit(period: GradeReportingPeriod, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return bool(period.is_active) and now <= period.edit_deadline


def period_status(period: GradeReportingPeriod, now: datetime | None = None) -> dict:
    now = now or utcnow()
    return {
        "can_import": can_import(period, now),
        "can_edit": can_edit(period, now),
        "import_deadline": period.import_deadline,
        "edit_deadline": period.edit_deadline,
    }


def check_period_permissions(
    session: Session, period_id: int, operation: Operation, now: datetime | None = None
) -> GradeReportingPeriod:
    """Returns the period when `operation` is still allowed, otherwise raises DeadlinePassed."""
    period = session.get(GradeReportingPeriod, period_id)
    if not period:
        raise NotFound("Không tìm thấy kỳ báo cáo điểm")
    if operation == "import":
        allowed, deadline = can_import(period, now), period.import_deadline
    else:
        allowed, deadline = can_edit(period, now), period.edit_deadline
    if not allowed:
        raise DeadlinePassed(
            f"Đã hết hạn {OPERATION_LABELS[operation]}. Hạn chót: {format_deadline(deadline)}"
        )
    return period


def _grade_count(session: Session, period_id: int) -> int:
    return session.exec(
        select(func.count(StudentGrade.id)).where(StudentGrade.grade_period_id == period_id)
    ).one()


def _overlapping(session: Session, year_id: int, semester_id: int, start: datetime, end: datetime,
                 exclude_id: int | None = None) -> GradeReportingPeriod | None:
    stmt = select(GradeReportingPeriod).where(
        GradeReportingPeriod.academic_year_id == year_id,
        GradeReportingPeriod.semester_id == semester_id,
        GradeReportingPeriod.is_active == True,  # noqa: E712
        GradeReportingPeriod.start_date <= end,
        GradeReportingPeriod.end_date >= start,
    )
    if exclude_id is not None:
        stmt = stmt.where(GradeReportingPeriod.id != exclude_id)
    return session.exec(stmt).first()


def create_period(session: Session, form: GradePeriodForm, user: User) -> GradeReportingPeriod:
    clash = _overlapping(session, form.academic_year_id, form.semester_id, form.start_date, form.end_date)
    if clash:
        raise Conflict(f"Thời gian trùng với kỳ báo cáo '{clash.name}'")
    period = GradeReportingPeriod(**form.model_dump(), created_by_id=user.id)
    session.add(period)
    session.commit()
    session.refresh(period)
    logger.info("Grade period %s created by %s", period.id, user.id)
    return period


def update_period(session: Session, period_id: int, form: GradePeriodUpdate) -> GradeReportingPeriod:
    period = session.get(GradeReportingPeriod, period_id)
    if not period:
        raise NotFound("Không tìm thấy kỳ báo cáo điểm")
    changes = form.model_dump(exclude_unset=True)

    start = changes.get("start_date", period.start_date)
    end = changes.get("end_date", period.end_date)
    import_deadline = changes.get("import_deadline", period.import_deadline)
    edit_deadline = changes.get("edit_deadline", period.edit_deadline)
    if start >= end:
        raise ValidationFailed("Ngày bắt đầu phải trước ngày kết thúc")
    if import_deadline > edit_deadline:
        raise ValidationFailed("Hạn nhập điểm phải trước hoặc bằng hạn sửa điểm")
    if import_deadline > end:
        raise ValidationFailed("Hạn nhập điểm phải trước hoặc bằng ngày kết thúc")

    if edit_deadline < period.edit_deadline and _grade_count(session, period.id) > 0:
        raise Conflict("Không thể rút ngắn hạn sửa điểm khi đã có điểm trong kỳ")

    if changes.get("is_active", period.is_active):
        clash = _overlapping(session, period.academic_year_id, period.semester_id, start, end, exclude_id=period.id)
        if clash:
            raise Conflict(f"Thời gian trùng với kỳ báo cáo '{clash.name}'")

    for key, value in changes.items():
        setattr(period, key, value)
    period.updated_at = utcnow()
    session.add(period)
    session.commit()
    session.refresh(period)
    return period


def delete_period(session: Session, period_id: int) -> GradeReportingPeriod:
    period = session.get(GradeReportingPeriod, period_id)
    if not period:
        raise NotFound("Không tìm thấy kỳ báo cáo điểm")
    if _grade_count(session, period.id) > 0:
        raise Conflict("Không thể xóa kỳ báo cáo đã có điểm")
    period.is_active = False
    period.updated_at = utcnow()
    session.add(period)
    session.commit()
    return period


def ensure_enrolled(session: Session, student_id: int, class_id: int) -> None:
    assignment = session.exec(
        select(ClassAssignment).where(
            ClassAssignment.student_id == student_id,
            ClassAssignment.class_id == class_id,
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).first()
    if not assignment:
        raise ValidationFailed("Học sinh không thuộc lớp này")


def find_grade(session: Session, period_id: int, student_id: int, subject_id: int, grade_type) -> StudentGrade | None:
    return session.exec(
        select(StudentGrade).where(
            StudentGrade.grade_period_id == period_id,
            StudentGrade.student_id == student_id,
            StudentGrade.subject_id == subject_id,
            StudentGrade.grade_type == grade_type,
        )
    ).first()


def create_grade(session: Session, entry: GradeEntry, user: User, *, commit: bool = True,
                 now: datetime | None = None) -> StudentGrade:
    """
    Enters a new grade. Requires the import window to be open and the student
    to be actively assigned to the class. An existing grade is a conflict: it
    must go through update_grade so that an audit row is written.
    """
    check_period_permissions(session, entry.grade_period_id, "import", now)
    ensure_enrolled(session, entry.student_id, entry.class_id)
    if find_grade(session, entry.grade_period_id, entry.student_id, entry.subject_id, entry.grade_type):
        raise Conflict("Điểm đã tồn tại, vui lòng sử dụng chức năng sửa điểm")
    grade = StudentGrade(
        **entry.model_dump(),
        created_by_id=user.id,
        updated_by_id=user.id,
    )
    session.add(grade)
    if commit:
        session.commit()
        session.refresh(grade)
    return grade


def update_grade(session: Session, grade: StudentGrade, new_value: float, change_reason: str, user: User,
                 notes: str | None = None, *, commit: bool = True, now: datetime | None = None) -> StudentGrade:
    check_period_permissions(session, grade.grade_period_id, "edit", now)
    if grade.is_locked:
        raise PermissionDenied("Điểm đã bị khóa, không thể sửa")

    new_value = round(new_value, 1)
    if grade.grade_value != new_value:
        session.add(GradeAuditLog(
            grade_id=grade.id,
            old_value=grade.grade_value,
            new_value=new_value,
            change_reason=change_reason,
            changed_by_id=user.id,
        ))
        grade.grade_value = new_value
    if notes is not None:
        grade.notes = notes
    grade.updated_by_id = user.id
    grade.updated_at = utcnow()
    session.add(grade)
    if commit:
        session.commit()
        session.refresh(grade)
    return grade


def set_locked(session: Session, period_id: int, class_id: int, subject_id: int, locked: bool) -> int:
    grades = session.exec(
        select(StudentGrade).where(
            StudentGrade.grade_period_id == period_id,
            StudentGrade.class_id == class_id,
            StudentGrade.subject_id == subject_id,
        )
    ).all()
    for g in grades:
        g.is_locked = locked
        session.add(g)
    session.commit()
    logger.info("%s %d grades (period=%s class=%s subject=%s)",
                "Locked" if locked else "Unlocked", len(grades), period_id, class_id, subject_id)
    return len(grades)


def _buckets(value):
    return [
        ("<5", value < 5),
        ("5-6.4", and_(value >= 5, value < 6.5)),
        ("6.5-7.9", and_(value >= 6.5, value < 8)),
        (">=8", value >= 8),
    ]


def grade_statistics(session: Session, period_id: int, class_id: int | None = None,
                     subject_id: int | None = None) -> dict:
    filters = [StudentGrade.grade_period_id == period_id]
    if class_id:
        filters.append(StudentGrade.class_id == class_id)
    if subject_id:
        filters.append(StudentGrade.subject_id == subject_id)

    value = StudentGrade.grade_value
    buckets = _buckets(value)
    count, avg, lo, hi, *counts = session.exec(
        select(
            func.count(StudentGrade.id),
            func.avg(value),
            func.min(value),
            func.max(value),
            *(func.coalesce(func.sum(case((cond, 1), else_=0)), 0) for _, cond in buckets),
        ).where(*filters)
    ).one()
    distribution = {label: n for (label, _), n in zip(buckets, counts)}

    return {
        "count": count or 0,
        "average": round(avg, 2) if avg is not None else None,
        "min": lo,
        "max": hi,
        "distribution": distribution,
    }


def audit_trail(session: Session, grade_id: int) -> list[GradeAuditLog]:
    return list(session.exec(
        select(GradeAuditLog)
        .where(GradeAuditLog.grade_id == grade_id)
        .order_by(GradeAuditLog.changed_at.desc(), GradeAuditLog.id.desc())
    ).all())
