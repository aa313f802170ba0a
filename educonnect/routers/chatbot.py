from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy import func
from sqlmodel import Session, select

from ..db import get_session
from ..dependencies import homeroom_class_for, require_role
from ..errors import Conflict, NotFound, PermissionDenied
from ..models import ClassAssignment, ChatConversation, ChatFeedback, ChatMessage, MessageRole, User, UserRole
from ..schemas.chat import ChatFeedbackForm, ChatRequest, FeedbackSummaryRequest
from ..services import ai_chat
from ..services.ai_chat import ChatClient, get_chat_client
from ..utils import ok

router = APIRouter(prefix="/chatbot", tags=["chatbot"])


@router.post("/stream")
async def stream(
    body: ChatRequest,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
    client: ChatClient = Depends(get_chat_client),
):
    """
    Relays the assistant's answer as server-sent events. Each frame is
    `data: {"type": ..., "data": ...}` with type text, complete or error.
    """
    conversation, messages, context = ai_chat.start_turn(session, current_user, body.message, body.conversation_id)
    return StreamingResponse(
        ai_chat.stream_reply(session, client, conversation.id, messages, context),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/conversations")
def list_conversations(
    include_archived: bool = False,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    counts = (
        select(ChatMessage.conversation_id, func.count(ChatMessage.id).label("n"))
        .group_by(ChatMessage.conversation_id)
        .subquery()
    )
    stmt = (
        select(ChatConversation, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.conversation_id == ChatConversation.id)
        .where(ChatConversation.parent_id == current_user.id)
    )
    if not include_archived:
        stmt = stmt.where(ChatConversation.is_archived == False)  # noqa: E712
    rows = session.exec(stmt.order_by(ChatConversation.updated_at.desc(), ChatConversation.id.desc())).all()
    return ok([{**c.model_dump(), "message_count": n} for c, n in rows])


@router.get("/conversations/{conversation_id}/messages")
def conversation_messages(
    conversation_id: int,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    conversation = ai_chat.get_conversation(session, conversation_id, current_user)
    messages = session.exec(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation.id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
    ).all()
    return ok({"conversation": conversation, "messages": messages})


@router.get("/search")
def search_messages(
    q: str = Query(min_length=1, max_length=200),
    limit: int = Query(20, ge=1, le=50),
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    rows = session.exec(
        select(ChatMessage, ChatConversation.title)
        .join(ChatConversation, ChatConversation.id == ChatMessage.conversation_id)
        .where(
            ChatConversation.parent_id == current_user.id,
            ChatMessage.content.ilike(f"%{q.strip()}%"),
        )
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    ).all()
    return ok([{**m.model_dump(), "conversation_title": title} for m, title in rows])


@router.post("/conversations/{conversation_id}/archive")
def archive_conversation(
    conversation_id: int,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    conversation = ai_chat.get_conversation(session, conversation_id, current_user)
    conversation.is_archived = True
    session.add(conversation)
    session.commit()
    return ok(message="Đã lưu trữ cuộc trò chuyện")


@router.post("/feedback", status_code=201)
def message_feedback(
    form: ChatFeedbackForm,
    current_user: User = Depends(require_role("parent")),
    session: Session = Depends(get_session),
):
    message = session.get(ChatMessage, form.message_id)
    if not message or message.role != MessageRole.ASSISTANT:
        raise NotFound("Không tìm thấy tin nhắn")
    ai_chat.get_conversation(session, message.conversation_id, current_user)
    existing = session.exec(
        select(ChatFeedback).where(
            ChatFeedback.message_id == message.id,
            ChatFeedback.parent_id == current_user.id,
        )
    ).first()
    if existing:
        raise Conflict("Bạn đã đánh giá tin nhắn này")
    feedback = ChatFeedback(**form.model_dump(), parent_id=current_user.id)
    session.add(feedback)
    session.commit()
    session.refresh(feedback)
    return ok(feedback, "Cảm ơn bạn đã đánh giá")


@router.post("/feedback-summary")
async def feedback_summary(
    body: FeedbackSummaryRequest,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
    client: ChatClient = Depends(get_chat_client),
):
    student = session.get(User, body.student_id)
    if not student or student.role != UserRole.STUDENT:
        raise NotFound("Không tìm thấy học sinh")
    if current_user.role == UserRole.TEACHER:
        classroom = homeroom_class_for(session, current_user)
        enrolled = session.exec(
            select(ClassAssignment).where(
                ClassAssignment.class_id == classroom.id,
                ClassAssignment.student_id == student.id,
                ClassAssignment.is_active == True,  # noqa: E712
            )
        ).first()
        if not enrolled:
            raise PermissionDenied("Học sinh không thuộc lớp chủ nhiệm của bạn")
    summary = await ai_chat.feedback_summary(session, client, student)
    return ok({"student_id": student.id, "summary": summary})
