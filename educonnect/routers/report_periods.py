from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..db import get_session
from ..dependencies import require_role, require_user
from ..errors import NotFound, ValidationFailed
from ..models import ReportPeriod, User
from ..schemas.report import ReportPeriodForm, ReportPeriodUpdate
from ..services import reports as svc
from ..services.mailer import EmailService, get_email_service
from ..utils import apply_updates, ok

router = APIRouter(prefix="/report-periods", tags=["report-periods"])


@router.get("")
def list_periods(
    academic_year_id: Optional[int] = None,
    semester_id: Optional[int] = None,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    stmt = select(ReportPeriod).where(ReportPeriod.is_active == True)  # noqa: E712
    if academic_year_id:
        stmt = stmt.where(ReportPeriod.academic_year_id == academic_year_id)
    if semester_id:
        stmt = stmt.where(ReportPeriod.semester_id == semester_id)
    return ok(session.exec(stmt.order_by(ReportPeriod.start_date.desc())).all())


@router.post("", status_code=201)
def create_period(
    form: ReportPeriodForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    period = ReportPeriod(**form.model_dump(), created_by_id=current_user.id)
    session.add(period)
    session.commit()
    session.refresh(period)
    return ok(period, "Đã tạo kỳ báo cáo")


@router.put("/{period_id}")
def update_period(
    period_id: int,
    form: ReportPeriodUpdate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    period = session.get(ReportPeriod, period_id)
    if not period:
        raise NotFound("Không tìm thấy kỳ báo cáo")
    changes = form.model_dump(exclude_unset=True)
    if changes.get("start_date", period.start_date) >= changes.get("end_date", period.end_date):
        raise ValidationFailed("Ngày bắt đầu phải trước ngày kết thúc")
    apply_updates(period, form)
    session.add(period)
    session.commit()
    session.refresh(period)
    return ok(period, "Đã cập nhật kỳ báo cáo")


@router.delete("/{period_id}")
def delete_period(
    period_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    period = svc.get_period(session, period_id)
    period.is_active = False
    session.add(period)
    session.commit()
    return ok(message="Đã xóa kỳ báo cáo")


@router.get("/{period_id}/progress")
def class_progress(
    period_id: int,
    grade_level: Optional[int] = None,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    period = svc.get_period(session, period_id)
    return ok(svc.class_progress(session, period, grade_level))


@router.post("/{period_id}/generate")
def generate_reports(
    period_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    created = svc.generate_reports(session, svc.get_period(session, period_id))
    return ok({"created": created}, f"Đã tạo {created} báo cáo")


@router.post("/{period_id}/send-all")
def send_all(
    period_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    result = svc.send_all_drafts(session, svc.get_period(session, period_id), mailer)
    return ok(result, f"Đã gửi {result['sent']} báo cáo")


@router.post("/{period_id}/reset")
def reset_to_draft(
    period_id: int,
    class_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    n = svc.reset_to_draft(session, svc.get_period(session, period_id), class_id)
    return ok({"reset": n}, f"Đã chuyển {n} báo cáo về nháp")


@router.post("/{period_id}/reminders")
def send_reminders(
    period_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    return ok(svc.send_reminders(session, svc.get_period(session, period_id), mailer))
