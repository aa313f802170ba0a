from math import ceil
from typing import Any

from sqlalchemy import func
from sqlmodel import Session, select


def ok(data: Any = None, message: str | None = None) -> dict:
    """Success envelope shared by every JSON endpoint."""
    body: dict[str, Any] = {"ok": True, "data": data}
    if message:
        body["message"] = message
    return body


def paginate(session: Session, stmt, page: int, limit: int) -> dict:
    """
    Runs `stmt` for one page and counts the full result set.
    Returns items, total, page, limit and pages.
    """
    total = session.exec(select(func.count()).select_from(stmt.order_by(None).subquery())).one()
    items = session.exec(stmt.offset((page - 1) * limit).limit(limit)).all()
    return {
        "items": list(items),
        "total": total,
        "page": page,
        "limit": limit,
        "pages": ceil(total / limit) if total else 0,
    }


def apply_updates(obj: Any, form: Any) -> Any:
    """Copies the fields the client actually sent from a pydantic form onto a model."""
    for key, value in form.model_dump(exclude_unset=True).items():
        setattr(obj, key, value)
    return obj


def format_deadline(value) -> str:
    return value.strftime("%d/%m/%Y %H:%M")
