from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import case, func
from sqlalchemy.orm import aliased
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..db import get_session
from ..dependencies import require_role
from ..errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from ..models import (
    ClassAssignment, ClassRoom, Meeting, MeetingRecipient, MeetingStatus, ParentStudentRelationship, User,
)
from ..schemas.meeting import MeetingForm
from ..services.mailer import EmailService, get_email_service
from ..utils import ok

logger = get_logger("meetings")

router = APIRouter(prefix="/meetings", tags=["meetings"])


@router.post("", status_code=201)
def create_meeting(
    form: MeetingForm,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    """
    Schedules a meeting for selected students of the teacher's homeroom class
    and invites each of their parents. Email failures are logged only.
    """
    classroom = session.get(ClassRoom, form.class_id)
    if not classroom or not classroom.is_active:
        raise NotFound("Không tìm thấy lớp học")
    if classroom.homeroom_teacher_id != current_user.id:
        raise PermissionDenied("Chỉ giáo viên chủ nhiệm mới được tạo cuộc họp cho lớp này")

    student_ids = list(dict.fromkeys(form.student_ids))
    enrolled = set(session.exec(
        select(ClassAssignment.student_id).where(
            ClassAssignment.class_id == classroom.id,
            ClassAssignment.student_id.in_(student_ids),
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).all())
    if len(enrolled) != len(student_ids):
        raise ValidationFailed("Có học sinh không thuộc lớp này")

    links = session.exec(
        select(ParentStudentRelationship, User)
        .join(User, User.id == ParentStudentRelationship.parent_id)
        .where(ParentStudentRelationship.student_id.in_(student_ids))
    ).all()

    meeting = Meeting(
        **form.model_dump(exclude={"student_ids"}),
        teacher_id=current_user.id,
        status=MeetingStatus.SCHEDULED,
    )
    session.add(meeting)
    session.flush()
    for link, _parent in links:
        session.add(MeetingRecipient(meeting_id=meeting.id, parent_id=link.parent_id, student_id=link.student_id))
    session.commit()
    session.refresh(meeting)

    students = {s.id: s for s in session.exec(select(User).where(User.id.in_(student_ids))).all()}
    emailed = 0
    for link, parent in links:
        if not parent.email:
            continue
        if mailer.send_meeting_notification(
            to_email=parent.email,
            parent_name=parent.full_name,
            student_name=students[link.student_id].full_name,
            teacher_name=current_user.full_name,
            class_name=classroom.name,
            meeting=meeting,
        ):
            emailed += 1
        else:
            logger.warning("Meeting %s: invitation email to %s not sent", meeting.id, parent.email)

    logger.info("Meeting %s created with %d recipient(s)", meeting.id, len(links))
    return ok(
        {"meeting_id": meeting.id, "recipients_count": len(links), "emails_sent": emailed},
        "Đã tạo cuộc họp",
    )


@router.get("/organised")
def teacher_meetings(
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    counts = (
        select(
            MeetingRecipient.meeting_id,
            func.count(MeetingRecipient.id).label("recipients"),
            func.sum(case((MeetingRecipient.is_read == True, 1), else_=0)).label("read"),  # noqa: E712
        )
        .group_by(MeetingRecipient.meeting_id)
        .subquery()
    )
    rows = session.exec(
        select(Meeting, ClassRoom.name, func.coalesce(counts.c.recipients, 0), func.coalesce(counts.c.read, 0))
        .join(ClassRoom, ClassRoom.id == Meeting.class_id)
        .outerjoin(counts, counts.c.meeting_id == Meeting.id)
        .where(Meeting.teacher_id == current_user.id)
        .order_by(Meeting.meeting_date.desc())
    ).all()
    return ok([
        {**m.model_dump(), "class_name": class_name, "recipients_count": total, "read_count": read}
        for m, class_name, total, read in rows
    ])


@router.post("/{meeting_id}/cancel")
def cancel_meeting(
    meeting_id: int,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    meeting = session.get(Meeting, meeting_id)
    if not meeting:
        raise NotFound("Không tìm thấy cuộc họp")
    if meeting.teacher_id != current_user.id:
        raise PermissionDenied("Chỉ người tạo mới được hủy cuộc họp")
    if meeting.status == MeetingStatus.CANCELLED:
        raise Conflict("Cuộc họp đã bị hủy")
    meeting.status = MeetingStatus.CANCELLED
    session.add(meeting)
    session.commit()
    return ok(message="Đã hủy cuộc họp")


@router.get("/mine")
def parent_meetings(
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    teacher = aliased(User)
    student = aliased(User)
    rows = session.exec(
        select(
            Meeting, MeetingRecipient, ClassRoom.name,
            teacher.full_name, student.full_name,
        )
        .join(MeetingRecipient, MeetingRecipient.meeting_id == Meeting.id)
        .join(ClassRoom, ClassRoom.id == Meeting.class_id)
        .join(teacher, teacher.id == Meeting.teacher_id)
        .join(student, student.id == MeetingRecipient.student_id)
        .where(MeetingRecipient.parent_id == current_user.id)
        .order_by(Meeting.meeting_date.desc())
    ).all()
    return ok([
        {
            **m.model_dump(),
            "recipient_id": r.id,
            "class_name": class_name,
            "teacher_name": teacher_name,
            "student_id": r.student_id,
            "student_name": student_name,
            "is_read": r.is_read,
            "read_at": r.read_at,
        }
        for m, r, class_name, teacher_name, student_name in rows
    ])


@router.get("/mine/unread-count")
def parent_unread_count(
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    count = session.exec(
        select(func.count(MeetingRecipient.id))
        .join(Meeting, Meeting.id == MeetingRecipient.meeting_id)
        .where(
            MeetingRecipient.parent_id == current_user.id,
            MeetingRecipient.is_read == False,  # noqa: E712
            Meeting.status != MeetingStatus.CANCELLED,
        )
    ).one()
    return ok({"count": count})


@router.post("/{meeting_id}/read")
def mark_read(
    meeting_id: int,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    recipients = session.exec(
        select(MeetingRecipient).where(
            MeetingRecipient.meeting_id == meeting_id,
            MeetingRecipient.parent_id == current_user.id,
        )
    ).all()
    if not recipients:
        raise NotFound("Không tìm thấy cuộc họp")
    now = datetime.utcnow()
    for r in recipients:
        if not r.is_read:
            r.is_read = True
            r.read_at = now
            session.add(r)
    session.commit()
    return ok(message="Đã đánh dấu đã đọc")
