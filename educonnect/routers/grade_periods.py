from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..db import get_session
from ..dependencies import require_role, require_user
from ..errors import NotFound
from ..models import GradeReportingPeriod, User
from ..schemas.grade import GradePeriodForm, GradePeriodUpdate
from ..services import grading
from ..utils import ok

router = APIRouter(prefix="/grade-periods", tags=["grade-periods"])


def _with_status(period: GradeReportingPeriod) -> dict:
    return {**period.model_dump(), **grading.period_status(period)}


@router.get("")
def list_periods(
    academic_year_id: Optional[int] = None,
    semester_id: Optional[int] = None,
    include_inactive: bool = False,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    stmt = select(GradeReportingPeriod)
    if not include_inactive:
        stmt = stmt.where(GradeReportingPeriod.is_active == True)  # noqa: E712
    if academic_year_id:
        stmt = stmt.where(GradeReportingPeriod.academic_year_id == academic_year_id)
    if semester_id:
        stmt = stmt.where(GradeReportingPeriod.semester_id == semester_id)
    periods = session.exec(stmt.order_by(GradeReportingPeriod.start_date.desc())).all()
    return ok([_with_status(p) for p in periods])


@router.post("", status_code=201)
def create_period(
    form: GradePeriodForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    period = grading.create_period(session, form, current_user)
    return ok(_with_status(period), "Đã tạo kỳ báo cáo điểm")


@router.get("/{period_id}")
def get_period(
    period_id: int,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    period = session.get(GradeReportingPeriod, period_id)
    if not period:
        raise NotFound("Không tìm thấy kỳ báo cáo điểm")
    return ok(_with_status(period))


@router.put("/{period_id}")
def update_period(
    period_id: int,
    form: GradePeriodUpdate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    period = grading.update_period(session, period_id, form)
    return ok(_with_status(period), "Đã cập nhật kỳ báo cáo điểm")


@router.delete("/{period_id}")
def delete_period(
    period_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    grading.delete_period(session, period_id)
    return ok(message="Đã xóa kỳ báo cáo điểm")


@router.get("/{period_id}/check/{operation}")
def check_permissions(
    period_id: int,
    operation: grading.Operation,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    period = grading.check_period_permissions(session, period_id, operation)
    return ok(_with_status(period))
