from typing import Optional
from pydantic import BaseModel, Field, field_validator

from ..models import FeedbackRating


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    conversation_id: Optional[int] = None

    @field_validator("message")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Tin nhắn không được để trống")
        return v


class ChatFeedbackForm(BaseModel):
    message_id: int
    is_helpful: bool
    rating: Optional[FeedbackRating] = None
    comment: Optional[str] = Field(default=None, max_length=1000)


class FeedbackSummaryRequest(BaseModel):
    student_id: int
