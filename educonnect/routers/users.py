from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, or_, select

from ..app_logger import get_logger
from ..db import get_session
from ..dependencies import children_ids, require_role
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import ParentStudentRelationship, User, UserRead, UserRole
from ..schemas.user import ParentLinkForm, UserCreate, UserUpdate
from ..utils import apply_updates, ok, paginate

logger = get_logger("users")

router = APIRouter(prefix="/users", tags=["users"])


def _get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound("Không tìm thấy người dùng")
    return user


def _check_unique(session: Session, email: str | None, student_code: str | None, exclude_id: int | None = None):
    if email:
        stmt = select(User).where(User.email == email)
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        if session.exec(stmt).first():
            raise Conflict("Email đã được sử dụng")
    if student_code:
        stmt = select(User).where(User.student_code == student_code)
        if exclude_id:
            stmt = stmt.where(User.id != exclude_id)
        if session.exec(stmt).first():
            raise Conflict("Mã học sinh đã tồn tại")


@router.post("", status_code=201)
def create_user(
    form: UserCreate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    _check_unique(session, form.email, form.student_code)
    user = User(**form.model_dump(exclude={"password"}))
    user.set_password(form.password)
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("Email hoặc mã học sinh đã tồn tại")
    session.refresh(user)
    logger.info("User %s (%s) created by %s", user.id, user.role, current_user.id)
    return ok(UserRead.model_validate(user), "Đã tạo người dùng")


@router.get("")
def list_users(
    q: Optional[str] = None,
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    stmt = select(User)
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(User.email.ilike(like), User.full_name.ilike(like), User.student_code.ilike(like)))
    if role:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active == is_active)
    result = paginate(session, stmt.order_by(User.full_name, User.id), page, limit)
    result["items"] = [UserRead.model_validate(u) for u in result["items"]]
    return ok(result)


@router.get("/me/children")
def my_children(
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    ids = children_ids(session, current_user)
    students = session.exec(select(User).where(User.id.in_(ids)).order_by(User.full_name)).all() if ids else []
    return ok([UserRead.model_validate(s) for s in students])


@router.get("/{user_id}")
def get_user(
    user_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    return ok(UserRead.model_validate(_get_user(session, user_id)))


@router.put("/{user_id}")
def update_user(
    user_id: int,
    form: UserUpdate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    user = _get_user(session, user_id)
    if form.is_active is False and user.id == current_user.id:
        raise ValidationFailed("Không thể vô hiệu hóa tài khoản của chính mình")
    _check_unique(session, None, form.student_code, exclude_id=user.id)
    apply_updates(user, form)
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return ok(UserRead.model_validate(user), "Đã cập nhật người dùng")


@router.delete("/{user_id}")
def deactivate_user(
    user_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    user = _get_user(session, user_id)
    if user.id == current_user.id:
        raise ValidationFailed("Không thể vô hiệu hóa tài khoản của chính mình")
    user.is_active = False
    user.updated_at = datetime.utcnow()
    session.add(user)
    session.commit()
    logger.info("User %s deactivated by %s", user.id, current_user.id)
    return ok(message="Đã vô hiệu hóa người dùng")


@router.post("/relationships", status_code=201)
def link_parent(
    form: ParentLinkForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    parent = _get_user(session, form.parent_id)
    student = _get_user(session, form.student_id)
    if parent.role != UserRole.PARENT:
        raise ValidationFailed("Người dùng không phải phụ huynh")
    if student.role != UserRole.STUDENT:
        raise ValidationFailed("Người dùng không phải học sinh")
    existing = session.exec(
        select(ParentStudentRelationship).where(
            ParentStudentRelationship.parent_id == parent.id,
            ParentStudentRelationship.student_id == student.id,
        )
    ).first()
    if existing:
        raise Conflict("Phụ huynh đã được liên kết với học sinh này")
    link = ParentStudentRelationship(**form.model_dump())
    session.add(link)
    session.commit()
    session.refresh(link)
    return ok(link, "Đã liên kết phụ huynh với học sinh")
