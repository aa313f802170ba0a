from __future__ import annotations

from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from sqlmodel import Session, SQLModel, select

ModelT = TypeVar("ModelT", bound=SQLModel)


def get_or_create(session: Session, model: Type[ModelT], defaults: Optional[Dict[str, Any]] = None,
                  **kwargs: Any) -> Tuple[ModelT, bool]:
    stmt = select(model)
    for key, value in kwargs.items():
        stmt = stmt.where(getattr(model, key) == value)
    instance = session.exec(stmt).first()
    if instance:
        return instance, False

    params = {**kwargs, **(defaults or {})}
    instance = model(**params)
    session.add(instance)
    session.flush()
    return instance, True
