from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..config import settings
from ..db import get_session
from ..dependencies import require_user
from ..errors import AuthenticationRequired, ValidationFailed
from ..models import User, UserRead, UserRole
from ..schemas.auth import ChangePasswordForm, LoginForm
from ..schemas.user import ProfileUpdate
from ..security import create_access_token, verify_and_update_password
from ..utils import apply_updates, ok

logger = get_logger("auth")

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Email hoặc mật khẩu không đúng"


@router.post("/login")
def login_action(form: LoginForm, session: Session = Depends(get_session)):
    """Verifies credentials and issues a JWT, both as an HTTP-only cookie and in the body."""
    user = session.exec(select(User).where(User.email == form.email)).first()
    if not user or not user.password_hash:
        raise AuthenticationRequired(INVALID_CREDENTIALS)

    verified, new_hash = verify_and_update_password(form.password, user.password_hash)
    if not verified:
        logger.info("Failed login for %s", form.email)
        raise AuthenticationRequired(INVALID_CREDENTIALS)
    if not user.is_active:
        raise AuthenticationRequired("Tài khoản đã bị vô hiệu hóa")
    if new_hash:
        user.password_hash = new_hash
        session.add(user)
        session.commit()
        session.refresh(user)

    token = create_access_token(data={"sub": str(user.id), "role": UserRole(user.role).value})
    response = JSONResponse(ok({
        "access_token": token,
        "token_type": "bearer",
        "user": UserRead.model_validate(user).model_dump(mode="json"),
    }))
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        samesite=settings.SESSION_COOKIE_SAMESITE.lower(),
        secure=settings.SESSION_COOKIE_SECURE,
    )
    logger.info("User %s logged in", user.id)
    return response


@router.post("/logout")
def logout():
    response = JSONResponse(ok(message="Đã đăng xuất"))
    response.delete_cookie(settings.AUTH_COOKIE_NAME)
    return response


@router.get("/me")
def me(current_user: User = Depends(require_user)):
    return ok(UserRead.model_validate(current_user))


@router.put("/me")
def update_profile(
    form: ProfileUpdate,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    apply_updates(current_user, form)
    current_user.updated_at = datetime.utcnow()
    session.add(current_user)
    session.commit()
    session.refresh(current_user)
    return ok(UserRead.model_validate(current_user), "Đã cập nhật thông tin")


@router.post("/change-password")
def change_password(
    form: ChangePasswordForm,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    if not current_user.check_password(form.current_password):
        raise ValidationFailed("Mật khẩu hiện tại không đúng")
    current_user.set_password(form.new_password)
    current_user.updated_at = datetime.utcnow()
    session.add(current_user)
    session.commit()
    return ok(message="Đã đổi mật khẩu")
