"""Violation recording, calendar indices, monthly alerts and rankings."""
from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import func
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from ..models import (
    CASE_TRANSITIONS, ClassAssignment, ClassRoom, DisciplinaryActionType, DisciplinaryCase,
    DisciplinaryCaseStatus, MonthlyViolationAlert, Semester, StudentViolation, User, UserRole,
    ViolationCategory, ViolationSeverity, ViolationType,
)

logger = get_logger("violations")

ALERT_THRESHOLD = 3


def week_and_month_index(violation_date: date, semester_start: date) -> tuple[int, int]:
    """Week is counted from the semester start (1-based, never below 1); a month is four weeks."""
    diff_days = (violation_date - semester_start).days
    week_index = max(1, diff_days // 7 + 1)
    month_index = (week_index - 1) // 4 + 1
    return week_index, month_index


def ensure_can_record(session: Session, user: User, class_id: int) -> ClassRoom:
    classroom = session.get(ClassRoom, class_id)
    if not classroom:
        raise NotFound("Không tìm thấy lớp học")
    if user.role == UserRole.ADMIN:
        return classroom
    if user.role == UserRole.TEACHER and classroom.homeroom_teacher_id == user.id:
        return classroom
    raise PermissionDenied("Chỉ quản trị viên hoặc giáo viên chủ nhiệm mới được ghi nhận vi phạm")


def _active_type(session: Session, type_id: int) -> ViolationType:
    vtype = session.get(ViolationType, type_id)
    if not vtype or not vtype.is_active:
        raise NotFound("Không tìm thấy loại vi phạm")
    return vtype


def _semester(session: Session, semester_id: int) -> Semester:
    semester = session.get(Semester, semester_id)
    if not semester:
        raise NotFound("Không tìm thấy học kỳ")
    return semester


def refresh_monthly_alert(session: Session, student_id: int, class_id: int, semester_id: int,
                          month_index: int) -> MonthlyViolationAlert:
    """Recounts a student's violations for one month; a changed count marks the alert unseen."""
    total = session.exec(
        select(func.count(StudentViolation.id)).where(
            StudentViolation.student_id == student_id,
            StudentViolation.semester_id == semester_id,
            StudentViolation.month_index == month_index,
        )
    ).one()
    alert = session.exec(
        select(MonthlyViolationAlert).where(
            MonthlyViolationAlert.student_id == student_id,
            MonthlyViolationAlert.semester_id == semester_id,
            MonthlyViolationAlert.month_index == month_index,
        )
    ).first()
    if not alert:
        alert = MonthlyViolationAlert(
            student_id=student_id, class_id=class_id, semester_id=semester_id, month_index=month_index,
        )
    if alert.total_violations != total:
        alert.total_violations = total
        alert.is_seen = False
        alert.seen_by_id = None
        alert.seen_at = None
    alert.updated_at = datetime.utcnow()
    session.add(alert)
    return alert


def record_violations(session: Session, user: User, *, student_ids: list[int], class_id: int,
                      violation_type_id: int, severity: ViolationSeverity, points: int | None,
                      description: str | None, violation_date: date | None, academic_year_id: int,
                      semester_id: int) -> list[StudentViolation]:
    ensure_can_record(session, user, class_id)
    vtype = _active_type(session, violation_type_id)
    semester = _semester(session, semester_id)
    violation_date = violation_date or date.today()
    week_index, month_index = week_and_month_index(violation_date, semester.start_date)

    enrolled = set(session.exec(
        select(ClassAssignment.student_id).where(
            ClassAssignment.class_id == class_id,
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).all())
    unknown = [sid for sid in student_ids if sid not in enrolled]
    if unknown:
        raise ValidationFailed(f"Học sinh không thuộc lớp: {', '.join(str(s) for s in unknown)}")

    created = []
    for student_id in dict.fromkeys(student_ids):
        v = StudentViolation(
            student_id=student_id,
            class_id=class_id,
            violation_type_id=vtype.id,
            severity=severity,
            points=vtype.points if points is None else points,
            description=description,
            violation_date=violation_date,
            academic_year_id=academic_year_id,
            semester_id=semester_id,
            week_index=week_index,
            month_index=month_index,
            recorded_by_id=user.id,
        )
        session.add(v)
        created.append(v)
    session.flush()

    for student_id in dict.fromkeys(student_ids):
        refresh_monthly_alert(session, student_id, class_id, semester_id, month_index)
    session.commit()
    for v in created:
        session.refresh(v)
    logger.info("Recorded %d violation(s) of type %s in class %s", len(created), vtype.id, class_id)
    return created


def delete_violation(session: Session, violation_id: int) -> None:
    v = session.get(StudentViolation, violation_id)
    if not v:
        raise NotFound("Không tìm thấy vi phạm")
    key = (v.student_id, v.class_id, v.semester_id, v.month_index)
    session.delete(v)
    session.flush()
    refresh_monthly_alert(session, *key)
    session.commit()


def violation_row(v, student, vtype, category, classroom) -> dict:
    return {
        **v.model_dump(),
        "severity_label": ViolationSeverity(v.severity).label,
        "student_name": student.full_name,
        "student_code": student.student_code,
        "violation_type": vtype.name,
        "category": category.name,
        "class_name": classroom.name,
    }


def violation_rows(session: Session, stmt) -> list[dict]:
    """Materialises a (StudentViolation, User, ViolationType, ViolationCategory, ClassRoom) select."""
    return [violation_row(*row) for row in session.exec(stmt).all()]


def base_violation_query():
    return (
        select(StudentViolation, User, ViolationType, ViolationCategory, ClassRoom)
        .join(User, User.id == StudentViolation.student_id)
        .join(ViolationType, ViolationType.id == StudentViolation.violation_type_id)
        .join(ViolationCategory, ViolationCategory.id == ViolationType.category_id)
        .join(ClassRoom, ClassRoom.id == StudentViolation.class_id)
    )


def filter_violations(stmt, *, search: str | None = None, category_id: int | None = None,
                      severity: str | None = None, student_id: int | None = None,
                      student_ids: list[int] | None = None, class_id: int | None = None,
                      academic_year_id: int | None = None, semester_id: int | None = None,
                      date_from: date | None = None, date_to: date | None = None):
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where((User.full_name.ilike(like)) | (User.student_code.ilike(like)))
    if category_id:
        stmt = stmt.where(ViolationType.category_id == category_id)
    if severity and severity != "all":
        try:
            stmt = stmt.where(StudentViolation.severity == ViolationSeverity(severity))
        except ValueError:
            raise ValidationFailed(f"Mức độ không hợp lệ: {severity}")
    if student_id:
        stmt = stmt.where(StudentViolation.student_id == student_id)
    if student_ids is not None:
        stmt = stmt.where(StudentViolation.student_id.in_(student_ids))
    if class_id:
        stmt = stmt.where(StudentViolation.class_id == class_id)
    if academic_year_id:
        stmt = stmt.where(StudentViolation.academic_year_id == academic_year_id)
    if semester_id:
        stmt = stmt.where(StudentViolation.semester_id == semester_id)
    if date_from:
        stmt = stmt.where(StudentViolation.violation_date >= date_from)
    if date_to:
        stmt = stmt.where(StudentViolation.violation_date <= date_to)
    return stmt.order_by(StudentViolation.violation_date.desc(), StudentViolation.id.desc())


def violation_stats(session: Session, *, class_id: int | None = None, student_ids: list[int] | None = None,
                    today: date | None = None) -> dict:
    today = today or date.today()
    filters = []
    if class_id:
        filters.append(StudentViolation.class_id == class_id)
    if student_ids is not None:
        filters.append(StudentViolation.student_id.in_(student_ids))

    def count(*extra) -> int:
        return session.exec(select(func.count(StudentViolation.id)).where(*filters, *extra)).one()

    by_severity = {s.value: 0 for s in ViolationSeverity}
    for severity, n in session.exec(
        select(StudentViolation.severity, func.count(StudentViolation.id))
        .where(*filters)
        .group_by(StudentViolation.severity)
    ).all():
        by_severity[ViolationSeverity(severity).value] = n

    return {
        "total": count(),
        "this_week": count(StudentViolation.violation_date >= today - timedelta(days=7)),
        "this_month": count(StudentViolation.violation_date >= today - timedelta(days=30)),
        "by_severity": by_severity,
    }


def weekly_grouped(session: Session, semester_id: int, week_index: int, class_id: int | None = None) -> list[dict]:
    stmt = base_violation_query().where(
        StudentViolation.semester_id == semester_id,
        StudentViolation.week_index == week_index,
    )
    if class_id:
        stmt = stmt.where(StudentViolation.class_id == class_id)
    stmt = stmt.order_by(StudentViolation.violation_date, StudentViolation.id)

    grouped: dict[int, dict] = {}
    for row in violation_rows(session, stmt):
        entry = grouped.setdefault(row["student_id"], {
            "student_id": row["student_id"],
            "student_name": row["student_name"],
            "student_code": row["student_code"],
            "class_id": row["class_id"],
            "class_name": row["class_name"],
            "total_points": 0,
            "total_violations": 0,
            "violations": [],
        })
        entry["total_points"] += row["points"] or 0
        entry["total_violations"] += 1
        entry["violations"].append(row)
    return sorted(grouped.values(), key=lambda e: (-e["total_points"], e["student_name"]))


def monthly_ranking(session: Session, semester_id: int, month_index: int, class_id: int | None = None) -> list[dict]:
    stmt = (
        select(
            StudentViolation.student_id,
            User.full_name,
            User.student_code,
            StudentViolation.class_id,
            ClassRoom.name,
            func.count(StudentViolation.id),
            func.coalesce(func.sum(StudentViolation.points), 0),
        )
        .join(User, User.id == StudentViolation.student_id)
        .join(ClassRoom, ClassRoom.id == StudentViolation.class_id)
        .where(StudentViolation.semester_id == semester_id, StudentViolation.month_index == month_index)
        .group_by(StudentViolation.student_id, User.full_name, User.student_code,
                  StudentViolation.class_id, ClassRoom.name)
    )
    if class_id:
        stmt = stmt.where(StudentViolation.class_id == class_id)

    alerts = {
        a.student_id: a
        for a in session.exec(
            select(MonthlyViolationAlert).where(
                MonthlyViolationAlert.semester_id == semester_id,
                MonthlyViolationAlert.month_index == month_index,
            )
        ).all()
    }

    ranking = []
    for student_id, name, code, cid, class_name, total, points in session.exec(stmt).all():
        alert = alerts.get(student_id)
        ranking.append({
            "student_id": student_id,
            "student_name": name,
            "student_code": code,
            "class_id": cid,
            "class_name": class_name,
            "total_violations": total,
            "total_points": int(points),
            "alert_id": alert.id if alert else None,
            "alert_seen": alert.is_seen if alert else False,
        })
    ranking.sort(key=lambda r: (-r["total_violations"], -r["total_points"], r["student_name"]))
    for i, r in enumerate(ranking, start=1):
        r["rank"] = i
    return ranking


def unseen_alerts(session: Session, semester_id: int | None = None, class_id: int | None = None) -> list[dict]:
    stmt = (
        select(MonthlyViolationAlert, User, ClassRoom)
        .join(User, User.id == MonthlyViolationAlert.student_id)
        .join(ClassRoom, ClassRoom.id == MonthlyViolationAlert.class_id)
        .where(
            MonthlyViolationAlert.is_seen == False,  # noqa: E712
            MonthlyViolationAlert.total_violations >= ALERT_THRESHOLD,
        )
        .order_by(MonthlyViolationAlert.total_violations.desc(), MonthlyViolationAlert.id)
    )
    if semester_id:
        stmt = stmt.where(MonthlyViolationAlert.semester_id == semester_id)
    if class_id:
        stmt = stmt.where(MonthlyViolationAlert.class_id == class_id)
    return [
        {**alert.model_dump(), "student_name": student.full_name, "class_name": classroom.name}
        for alert, student, classroom in session.exec(stmt).all()
    ]


def current_semester(session: Session) -> Semester | None:
    return session.exec(select(Semester).where(Semester.is_current == True)).first()  # noqa: E712


def unseen_alert_count(session: Session) -> int:
    semester = current_semester(session)
    if not semester:
        return 0
    return session.exec(
        select(func.count(MonthlyViolationAlert.id)).where(
            MonthlyViolationAlert.semester_id == semester.id,
            MonthlyViolationAlert.is_seen == False,  # noqa: E712
            MonthlyViolationAlert.total_violations >= ALERT_THRESHOLD,
        )
    ).one()


def mark_alert_seen(session: Session, alert_id: int, user: User) -> MonthlyViolationAlert:
    alert = session.get(MonthlyViolationAlert, alert_id)
    if not alert:
        raise NotFound("Không tìm thấy cảnh báo")
    alert.is_seen = True
    alert.seen_by_id = user.id
    alert.seen_at = datetime.utcnow()
    session.add(alert)
    session.commit()
    session.refresh(alert)
    return alert


def create_case(session: Session, user: User, *, student_id: int, class_id: int, semester_id: int,
                week_index: int, action_type_id: int, notes: str | None,
                violation_ids: list[int]) -> DisciplinaryCase:
    action = session.get(DisciplinaryActionType, action_type_id)
    if not action or not action.is_active:
        raise NotFound("Không tìm thấy hình thức kỷ luật")
    violations = []
    if violation_ids:
        violations = session.exec(
            select(StudentViolation).where(StudentViolation.id.in_(violation_ids))
        ).all()
        if len(violations) != len(set(violation_ids)):
            raise ValidationFailed("Một số vi phạm không tồn tại")
        if any(v.student_id != student_id for v in violations):
            raise ValidationFailed("Vi phạm không thuộc học sinh này")
    case = DisciplinaryCase(
        student_id=student_id,
        class_id=class_id,
        semester_id=semester_id,
        week_index=week_index,
        action_type_id=action_type_id,
        notes=notes,
        violation_ids=sorted(set(violation_ids)),
        total_points=sum(v.points or 0 for v in violations),
        created_by_id=user.id,
    )
    session.add(case)
    session.commit()
    session.refresh(case)
    return case


def transition_case(session: Session, case: DisciplinaryCase, new_status: DisciplinaryCaseStatus,
                    user: User, notes: str | None = None) -> DisciplinaryCase:
    current = DisciplinaryCaseStatus(case.status)
    if new_status not in CASE_TRANSITIONS[current]:
        raise Conflict(f"Không thể chuyển trạng thái từ {current.value} sang {new_status.value}")
    case.status = new_status
    if new_status == DisciplinaryCaseStatus.ACKNOWLEDGED:
        case.acknowledged_by_id = user.id
        case.acknowledged_at = datetime.utcnow()
    if notes is not None:
        case.notes = notes
    case.updated_at = datetime.utcnow()
    session.add(case)
    session.commit()
    session.refresh(case)
    logger.info("Disciplinary case %s -> %s by %s", case.id, new_status.value, user.id)
    return case
