from typing import Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..db import get_session
from ..dependencies import homeroom_class_for, require_role
from ..errors import Conflict, NotFound, PermissionDenied
from ..models import (
    ClassRoom, DisciplinaryActionType, DisciplinaryCase, DisciplinaryCaseStatus, User,
)
from ..schemas.violation import ActionTypeForm, ActionTypeUpdate, CaseForm, CaseStatusForm
from ..services import violations as svc
from ..utils import apply_updates, ok

router = APIRouter(prefix="/disciplinary", tags=["disciplinary"])


def _get_case(session: Session, case_id: int) -> DisciplinaryCase:
    case = session.get(DisciplinaryCase, case_id)
    if not case:
        raise NotFound("Không tìm thấy hồ sơ kỷ luật")
    return case


def _case_rows(session: Session, stmt) -> list[dict]:
    rows = []
    for case, student, classroom, action in session.exec(stmt).all():
        rows.append({
            **case.model_dump(),
            "student_name": student.full_name,
            "student_code": student.student_code,
            "class_name": classroom.name,
            "action_type": action.name,
            "action_severity_level": action.severity_level,
        })
    return rows


def _case_query():
    return (
        select(DisciplinaryCase, User, ClassRoom, DisciplinaryActionType)
        .join(User, User.id == DisciplinaryCase.student_id)
        .join(ClassRoom, ClassRoom.id == DisciplinaryCase.class_id)
        .join(DisciplinaryActionType, DisciplinaryActionType.id == DisciplinaryCase.action_type_id)
        .order_by(DisciplinaryCase.created_at.desc(), DisciplinaryCase.id.desc())
    )


# Action types

@router.get("/action-types")
def list_action_types(
    include_inactive: bool = False,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    stmt = select(DisciplinaryActionType)
    if not include_inactive:
        stmt = stmt.where(DisciplinaryActionType.is_active == True)  # noqa: E712
    return ok(session.exec(stmt.order_by(DisciplinaryActionType.severity_level)).all())


@router.post("/action-types", status_code=201)
def create_action_type(
    form: ActionTypeForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    action = DisciplinaryActionType(**form.model_dump())
    session.add(action)
    session.commit()
    session.refresh(action)
    return ok(action, "Đã tạo hình thức kỷ luật")


@router.put("/action-types/{action_id}")
def update_action_type(
    action_id: int,
    form: ActionTypeUpdate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    action = session.get(DisciplinaryActionType, action_id)
    if not action:
        raise NotFound("Không tìm thấy hình thức kỷ luật")
    apply_updates(action, form)
    session.add(action)
    session.commit()
    session.refresh(action)
    return ok(action)


@router.delete("/action-types/{action_id}")
def deactivate_action_type(
    action_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    action = session.get(DisciplinaryActionType, action_id)
    if not action:
        raise NotFound("Không tìm thấy hình thức kỷ luật")
    action.is_active = False
    session.add(action)
    session.commit()
    return ok(message="Đã ẩn hình thức kỷ luật")


# Cases

@router.post("/cases", status_code=201)
def create_case(
    form: CaseForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    case = svc.create_case(session, current_user, **form.model_dump())
    return ok(case, "Đã tạo hồ sơ kỷ luật")


@router.get("/cases")
def list_cases(
    semester_id: Optional[int] = None,
    status: Optional[DisciplinaryCaseStatus] = None,
    class_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    stmt = _case_query()
    if semester_id:
        stmt = stmt.where(DisciplinaryCase.semester_id == semester_id)
    if status:
        stmt = stmt.where(DisciplinaryCase.status == status)
    if class_id:
        stmt = stmt.where(DisciplinaryCase.class_id == class_id)
    return ok(_case_rows(session, stmt))


@router.put("/cases/{case_id}/status")
def update_case_status(
    case_id: int,
    form: CaseStatusForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    case = svc.transition_case(session, _get_case(session, case_id), form.status, current_user, form.notes)
    return ok(case, "Đã cập nhật trạng thái")


@router.delete("/cases/{case_id}")
def delete_case(
    case_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    case = _get_case(session, case_id)
    if case.status != DisciplinaryCaseStatus.DRAFT:
        raise Conflict("Chỉ có thể xóa hồ sơ ở trạng thái nháp")
    session.delete(case)
    session.commit()
    return ok(message="Đã xóa hồ sơ kỷ luật")


@router.get("/my-class/cases")
def homeroom_cases(
    status: Optional[DisciplinaryCaseStatus] = None,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    classroom = homeroom_class_for(session, current_user)
    stmt = _case_query().where(
        DisciplinaryCase.class_id == classroom.id,
        DisciplinaryCase.status != DisciplinaryCaseStatus.DRAFT,
    )
    if status:
        stmt = stmt.where(DisciplinaryCase.status == status)
    return ok(_case_rows(session, stmt))


@router.post("/my-class/cases/{case_id}/acknowledge")
def acknowledge_case(
    case_id: int,
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    classroom = homeroom_class_for(session, current_user)
    case = _get_case(session, case_id)
    if case.class_id != classroom.id:
        raise PermissionDenied("Hồ sơ không thuộc lớp chủ nhiệm của bạn")
    case = svc.transition_case(session, case, DisciplinaryCaseStatus.ACKNOWLEDGED, current_user)
    return ok(case, "Đã xác nhận hồ sơ kỷ luật")
