from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..db import get_session
from ..dependencies import children_ids, ensure_parent_of, homeroom_class_for, require_role
from ..errors import Conflict, NotFound
from ..models import (
    SEVERITY_LABELS, StudentViolation, User, UserRole, ViolationCategory, ViolationType,
)
from ..schemas.violation import (
    BulkViolationForm, CategoryForm, ViolationForm, ViolationTypeForm, ViolationTypeUpdate, ViolationUpdate,
)
from ..services import violations as svc
from ..utils import apply_updates, ok, paginate

logger = get_logger("violations")

router = APIRouter(prefix="/violations", tags=["violations"])


def _paged_rows(session: Session, stmt, page: int, limit: int) -> dict:
    result = paginate(session, stmt, page, limit)
    result["items"] = [svc.violation_row(*row) for row in result["items"]]
    return result


@router.get("/severity-levels")
def severity_levels():
    return ok([{"value": s.value, "label": label} for s, label in SEVERITY_LABELS.items()])


# Categories

@router.get("/categories")
def list_categories(
    include_inactive: bool = False,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    stmt = select(ViolationCategory)
    if not include_inactive:
        stmt = stmt.where(ViolationCategory.is_active == True)  # noqa: E712
    return ok(session.exec(stmt.order_by(ViolationCategory.name)).all())


@router.post("/categories", status_code=201)
def create_category(
    form: CategoryForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    if session.exec(select(ViolationCategory).where(ViolationCategory.name == form.name)).first():
        raise Conflict("Danh mục đã tồn tại")
    category = ViolationCategory(**form.model_dump())
    session.add(category)
    session.commit()
    session.refresh(category)
    return ok(category, "Đã tạo danh mục vi phạm")


@router.put("/categories/{category_id}")
def update_category(
    category_id: int,
    form: CategoryForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    category = session.get(ViolationCategory, category_id)
    if not category:
        raise NotFound("Không tìm thấy danh mục")
    apply_updates(category, form)
    session.add(category)
    session.commit()
    session.refresh(category)
    return ok(category)


@router.post("/categories/{category_id}/{action}")
def toggle_category(
    category_id: int,
    action: str,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    if action not in ("deactivate", "reactivate"):
        raise NotFound("Không tìm thấy thao tác")
    category = session.get(ViolationCategory, category_id)
    if not category:
        raise NotFound("Không tìm thấy danh mục")
    category.is_active = action == "reactivate"
    session.add(category)
    session.commit()
    session.refresh(category)
    return ok(category)


# Types

@router.get("/types")
def list_types(
    category_id: Optional[int] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    stmt = select(ViolationType)
    if not include_inactive:
        stmt = stmt.where(ViolationType.is_active == True)  # noqa: E712
    if category_id:
        stmt = stmt.where(ViolationType.category_id == category_id)
    if search:
        stmt = stmt.where(ViolationType.name.ilike(f"%{search.strip()}%"))
    return ok(paginate(session, stmt.order_by(ViolationType.name), page, limit))


@router.post("/types", status_code=201)
def create_type(
    form: ViolationTypeForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    category = session.get(ViolationCategory, form.category_id)
    if not category or not category.is_active:
        raise NotFound("Không tìm thấy danh mục")
    vtype = ViolationType(**form.model_dump())
    session.add(vtype)
    session.commit()
    session.refresh(vtype)
    return ok(vtype, "Đã tạo loại vi phạm")


@router.put("/types/{type_id}")
def update_type(
    type_id: int,
    form: ViolationTypeUpdate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    vtype = session.get(ViolationType, type_id)
    if not vtype:
        raise NotFound("Không tìm thấy loại vi phạm")
    apply_updates(vtype, form)
    session.add(vtype)
    session.commit()
    session.refresh(vtype)
    return ok(vtype)


@router.delete("/types/{type_id}")
def deactivate_type(
    type_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    vtype = session.get(ViolationType, type_id)
    if not vtype:
        raise NotFound("Không tìm thấy loại vi phạm")
    vtype.is_active = False
    session.add(vtype)
    session.commit()
    return ok(message="Đã ẩn loại vi phạm")


# Recording

@router.post("", status_code=201)
def record_violation(
    form: ViolationForm,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    created = svc.record_violations(
        session, current_user, student_ids=[form.student_id],
        **form.model_dump(exclude={"student_id"}),
    )
    return ok(created[0], "Đã ghi nhận vi phạm")


@router.post("/bulk", status_code=201)
def record_bulk(
    form: BulkViolationForm,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    created = svc.record_violations(session, current_user, **form.model_dump())
    return ok({"created": len(created), "ids": [v.id for v in created]}, f"Đã ghi nhận {len(created)} vi phạm")


@router.put("/{violation_id}")
def update_violation(
    violation_id: int,
    form: ViolationUpdate,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    violation = session.get(StudentViolation, violation_id)
    if not violation:
        raise NotFound("Không tìm thấy vi phạm")
    svc.ensure_can_record(session, current_user, violation.class_id)
    apply_updates(violation, form)
    violation.updated_at = datetime.utcnow()
    session.add(violation)
    session.commit()
    session.refresh(violation)
    return ok(violation, "Đã cập nhật vi phạm")


@router.delete("/{violation_id}")
def delete_violation(
    violation_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    svc.delete_violation(session, violation_id)
    return ok(message="Đã xóa vi phạm")


# Listing

@router.get("")
def list_violations(
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    severity: Optional[str] = None,
    student_id: Optional[int] = None,
    class_id: Optional[int] = None,
    academic_year_id: Optional[int] = None,
    semester_id: Optional[int] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    stmt = svc.filter_violations(
        svc.base_violation_query(),
        search=search, category_id=category_id, severity=severity, student_id=student_id,
        class_id=class_id, academic_year_id=academic_year_id, semester_id=semester_id,
        date_from=date_from, date_to=date_to,
    )
    return ok(_paged_rows(session, stmt, page, limit))


@router.get("/my-class")
def homeroom_violations(
    search: Optional[str] = None,
    severity: Optional[str] = None,
    semester_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    classroom = homeroom_class_for(session, current_user)
    stmt = svc.filter_violations(
        svc.base_violation_query(),
        search=search, severity=severity, class_id=classroom.id, semester_id=semester_id,
    )
    return ok(_paged_rows(session, stmt, page, limit))


@router.get("/my-children")
def parent_violations(
    student_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    if student_id:
        ensure_parent_of(session, current_user, student_id)
        ids = [student_id]
    else:
        ids = children_ids(session, current_user)
    stmt = svc.filter_violations(svc.base_violation_query(), student_ids=ids)
    return ok(_paged_rows(session, stmt, page, limit))


@router.get("/mine")
def student_violations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_role("student")),
    session: Session = Depends(get_session),
):
    stmt = svc.filter_violations(svc.base_violation_query(), student_id=current_user.id)
    return ok(_paged_rows(session, stmt, page, limit))


# Reports

@router.get("/stats")
def stats(
    class_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin", "teacher", "parent")),
    session: Session = Depends(get_session),
):
    if current_user.role == UserRole.TEACHER:
        return ok(svc.violation_stats(session, class_id=homeroom_class_for(session, current_user).id))
    if current_user.role == UserRole.PARENT:
        return ok(svc.violation_stats(session, student_ids=children_ids(session, current_user)))
    return ok(svc.violation_stats(session, class_id=class_id))


def _scope_class(session: Session, user: User, class_id: Optional[int]) -> Optional[int]:
    if user.role == UserRole.TEACHER:
        return homeroom_class_for(session, user).id
    return class_id


@router.get("/weekly")
def weekly(
    semester_id: int,
    week_index: int = Query(..., ge=1, le=52),
    class_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    return ok(svc.weekly_grouped(session, semester_id, week_index, _scope_class(session, current_user, class_id)))


@router.get("/monthly-ranking")
def monthly_ranking(
    semester_id: int,
    month_index: int = Query(..., ge=1, le=13),
    class_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    return ok(svc.monthly_ranking(session, semester_id, month_index, _scope_class(session, current_user, class_id)))


@router.get("/alerts")
def alerts(
    semester_id: Optional[int] = None,
    class_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    return ok(svc.unseen_alerts(session, semester_id, _scope_class(session, current_user, class_id)))


@router.get("/alerts/unseen-count")
def alert_count(
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    return ok({"count": svc.unseen_alert_count(session)})


@router.post("/alerts/{alert_id}/seen")
def mark_alert_seen(
    alert_id: int,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    return ok(svc.mark_alert_seen(session, alert_id, current_user))
