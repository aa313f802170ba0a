from fastapi import Depends, Request
from sqlmodel import Session, select

from .config import settings
from .db import get_session
from .errors import AuthenticationRequired, PermissionDenied
from .models import ClassRoom, ParentStudentRelationship, User, UserRole
from .security import decode_access_token


class AnonymousUser:
    """Represents a non-authenticated user."""
    is_authenticated = False
    role = "anonymous"
    full_name = "Guest"
    email = None
    id = None


def _token_from_request(request: Request) -> str | None:
    token = request.cookies.get(settings.AUTH_COOKIE_NAME)
    if token:
        return token
    auth = request.headers.get("authorization", "")
    scheme, _, credentials = auth.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


def get_current_user(request: Request, session: Session = Depends(get_session)) -> User | AnonymousUser:
    """Retrieves the current user from a JWT in the auth cookie or bearer header."""
    token = _token_from_request(request)
    if not token:
        return AnonymousUser()

    payload = decode_access_token(token)
    if not payload:
        return AnonymousUser()

    user_id = payload.get("sub")
    if not user_id:
        return AnonymousUser()

    user = session.get(User, int(user_id))
    if not user or not user.is_active:
        return AnonymousUser()

    return user


def require_user(current_user: User | AnonymousUser = Depends(get_current_user)) -> User:
    """Dependency that ensures a user is authenticated."""
    if not getattr(current_user, "is_authenticated", False):
        raise AuthenticationRequired()
    return current_user


def require_role(*roles: str):
    """Dependency factory that ensures a user has one of the required roles."""
    allowed = tuple(UserRole(r) for r in roles)

    def role_checker(user: User = Depends(require_user)) -> User:
        if user.role not in allowed:
            raise PermissionDenied("Không có quyền truy cập")
        return user
    return role_checker


def homeroom_class_for(session: Session, teacher: User) -> ClassRoom:
    """The active class the teacher is homeroom teacher of."""
    classroom = session.exec(
        select(ClassRoom)
        .where(ClassRoom.homeroom_teacher_id == teacher.id, ClassRoom.is_active == True)  # noqa: E712
        .order_by(ClassRoom.id.desc())
    ).first()
    if not classroom:
        raise PermissionDenied("Bạn không phải giáo viên chủ nhiệm")
    return classroom


def ensure_parent_of(session: Session, parent: User, student_id: int) -> ParentStudentRelationship:
    link = session.exec(
        select(ParentStudentRelationship).where(
            ParentStudentRelationship.parent_id == parent.id,
            ParentStudentRelationship.student_id == student_id,
        )
    ).first()
    if not link:
        raise PermissionDenied("Bạn không có quyền truy cập thông tin học sinh này")
    return link


def children_ids(session: Session, parent: User) -> list[int]:
    return list(session.exec(
        select(ParentStudentRelationship.student_id).where(ParentStudentRelationship.parent_id == parent.id)
    ).all())
