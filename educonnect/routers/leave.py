from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..db import get_session
from ..dependencies import ensure_parent_of, require_role
from ..errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from ..models import ClassAssignment, ClassRoom, LeaveApplication, LeaveStatus, User
from ..schemas.leave import LeaveApplicationForm, LeaveResponseForm
from ..services.attachments import save_leave_attachment
from ..services.mailer import EmailService, get_email_service
from ..utils import ok

logger = get_logger("leave")

router = APIRouter(prefix="/leave-applications", tags=["leave"])


def _rows(session: Session, stmt) -> list[dict]:
    return [
        {**app.model_dump(), "student_name": student.full_name, "class_name": classroom.name}
        for app, student, classroom in session.exec(stmt).all()
    ]


def _query():
    return (
        select(LeaveApplication, User, ClassRoom)
        .join(User, User.id == LeaveApplication.student_id)
        .join(ClassRoom, ClassRoom.id == LeaveApplication.class_id)
        .order_by(LeaveApplication.created_at.desc(), LeaveApplication.id.desc())
    )


@router.post("", status_code=201)
def create_application(
    form: LeaveApplicationForm,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    ensure_parent_of(session, current_user, form.student_id)
    row = session.exec(
        select(ClassAssignment, ClassRoom)
        .join(ClassRoom, ClassRoom.id == ClassAssignment.class_id)
        .where(
            ClassAssignment.student_id == form.student_id,
            ClassAssignment.is_active == True,  # noqa: E712
            ClassRoom.is_active == True,  # noqa: E712
        )
        .order_by(ClassAssignment.assigned_at.desc())
    ).first()
    if not row:
        raise ValidationFailed("Học sinh chưa được xếp lớp")
    assignment, classroom = row
    if not classroom.homeroom_teacher_id:
        raise ValidationFailed("Lớp học chưa có giáo viên chủ nhiệm")

    application = LeaveApplication(
        **form.model_dump(),
        parent_id=current_user.id,
        class_id=classroom.id,
        academic_year_id=assignment.academic_year_id,
        homeroom_teacher_id=classroom.homeroom_teacher_id,
    )
    session.add(application)
    session.commit()
    session.refresh(application)
    logger.info("Leave application %s created by parent %s", application.id, current_user.id)
    return ok(application, "Đã gửi đơn xin nghỉ")


@router.get("/mine")
def parent_applications(
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    return ok(_rows(session, _query().where(LeaveApplication.parent_id == current_user.id)))


@router.get("/homeroom")
def teacher_applications(
    status: Optional[LeaveStatus] = None,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    stmt = _query().where(LeaveApplication.homeroom_teacher_id == current_user.id)
    if status:
        stmt = stmt.where(LeaveApplication.status == status)
    return ok(_rows(session, stmt))


@router.post("/{application_id}/respond")
def respond(
    application_id: int,
    form: LeaveResponseForm,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    application = session.get(LeaveApplication, application_id)
    if not application:
        raise NotFound("Không tìm thấy đơn xin nghỉ")
    if application.homeroom_teacher_id != current_user.id:
        raise PermissionDenied("Bạn không phải giáo viên chủ nhiệm của học sinh này")
    if application.status != LeaveStatus.PENDING:
        raise Conflict("Đơn xin nghỉ đã được xử lý")

    application.status = LeaveStatus(form.status)
    application.teacher_response = form.teacher_response
    application.responded_at = datetime.utcnow()
    application.updated_at = application.responded_at
    session.add(application)
    session.commit()
    session.refresh(application)

    parent = session.get(User, application.parent_id)
    student = session.get(User, application.student_id)
    mailer.send_leave_decision(
        to_email=parent.email,
        parent_name=parent.full_name,
        student_name=student.full_name,
        application=application,
    )
    return ok(application, "Đã phản hồi đơn xin nghỉ")


@router.post("/attachments", status_code=201)
async def upload_attachment(
    file: UploadFile = File(...),
    current_user: User = Depends(require_role("parent")),
):
    content = await file.read()
    return ok(save_leave_attachment(content, file.content_type, current_user.id), "Đã tải lên tệp đính kèm")
