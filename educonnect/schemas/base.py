from datetime import datetime, timezone
from typing import ClassVar, Tuple

from pydantic import BaseModel, model_validator


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Deadlines are stored and compared as naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class PartialUpdate(BaseModel):
    """
    Body for a partial update. Fields may be omitted, but those named in
    `not_null` map to NOT NULL columns and cannot be sent as null.
    """
    not_null: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data):
        if isinstance(data, dict):
            nulls = [key for key in cls.not_null if key in data and data[key] is None]
            if nulls:
                raise ValueError(f"Không được để trống: {', '.join(nulls)}")
        return data
