from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel, Column, JSON
from sqlalchemy import UniqueConstraint


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class FeedbackRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    POOR = "poor"
    VERY_POOR = "very_poor"


class ChatConversation(SQLModel, table=True):
    __tablename__ = "chat_conversations"

    id: Optional[int] = Field(default=None, primary_key=True)
    parent_id: int = Field(foreign_key="users.id", index=True)
    title: str
    is_archived: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="chat_conversations.id", index=True)
    role: MessageRole
    content: str
    context_used: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChatFeedback(SQLModel, table=True):
    __tablename__ = "chat_feedback"
    __table_args__ = (
        UniqueConstraint("message_id", "parent_id", name="uq_feedback_message_parent"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    message_id: int = Field(foreign_key="chat_messages.id", index=True)
    parent_id: int = Field(foreign_key="users.id")
    is_helpful: bool
    rating: Optional[FeedbackRating] = None
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
