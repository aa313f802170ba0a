import json

import httpx
import pytest
from httpx import AsyncClient
from sqlmodel import Session, select

from educonnect.models import ChatConversation, ChatMessage, MessageRole, User, UserRole
from educonnect.services.ai_chat import STREAM_DONE, build_context, parse_stream_line, sse
from tests.conftest import auth, make_user


def _frames(text: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def test_parse_stream_line():
    assert parse_stream_line('data: {"choices":[{"delta":{"content":"Xin"}}]}') == "Xin"
    assert parse_stream_line("data: [DONE]") is STREAM_DONE
    assert parse_stream_line(": keep-alive") is None
    assert parse_stream_line('data: {"choices":[{"delta":{}}]}') is None
    assert parse_stream_line("data: {not json") is None


@pytest.mark.parametrize("payload", [
    "[1, 2]", '"text"', "null", '{"choices": {}}', '{"choices": ["x"]}', '{"choices": [{"delta": "x"}]}',
])
def test_parse_stream_line_ignores_unexpected_shapes(payload):
    assert parse_stream_line(f"data: {payload}") is None


def test_sse_frame_keeps_unicode():
    assert sse("text", "chào") == 'data: {"type": "text", "data": "chào"}\n\n'


def test_context_only_covers_own_children(session: Session, parent: User, family, student, student2,
                                          classroom, enrolled):
    context = build_context(session, parent)
    assert [s["name"] for s in context["students"]] == [student.full_name]
    assert context["students"][0]["class"] == classroom.name


@pytest.mark.asyncio
async def test_stream_persists_conversation(client: AsyncClient, session: Session, chat_client, parent: User,
                                            family, classroom, enrolled):
    response = await client.post("/chatbot/stream", headers=auth(parent), json={"message": "Con tôi học thế nào?"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")

    frames = _frames(response.text)
    assert [f["type"] for f in frames] == ["text", "text", "complete"]
    complete = frames[-1]["data"]
    assert complete["contextUsed"]["studentsCount"] == 1

    system = chat_client.calls[0][0]
    assert system["role"] == "system"
    assert "Lê Minh An" in system["content"]

    messages = session.exec(select(ChatMessage).order_by(ChatMessage.id)).all()
    assert [(m.role, m.content) for m in messages] == [
        (MessageRole.USER, "Con tôi học thế nào?"),
        (MessageRole.ASSISTANT, "Xin chào"),
    ]

    follow_up = await client.post("/chatbot/stream", headers=auth(parent), json={
        "message": "Còn vi phạm thì sao?", "conversation_id": complete["conversation_id"],
    })
    assert follow_up.status_code == 200
    history = chat_client.calls[1]
    assert [m["role"] for m in history] == ["system", "user", "assistant", "user"]


@pytest.mark.asyncio
async def test_stream_reports_upstream_failure(client: AsyncClient, session: Session, chat_client, parent: User):
    async def broken(messages):
        raise httpx.ConnectError("boom")
        yield  # pragma: no cover

    chat_client.stream = broken
    response = await client.post("/chatbot/stream", headers=auth(parent), json={"message": "Xin chào"})
    frames = _frames(response.text)
    assert [f["type"] for f in frames] == ["error"]
    assert session.exec(select(ChatMessage).where(ChatMessage.role == MessageRole.ASSISTANT)).all() == []


@pytest.mark.asyncio
async def test_conversations_are_private(client: AsyncClient, session: Session, parent: User, teacher: User):
    other = make_user(session, "ph2@gmail.com", "Phụ huynh khác", UserRole.PARENT)
    conversation = ChatConversation(parent_id=other.id, title="Riêng tư")
    session.add(conversation)
    session.commit()

    response = await client.get(f"/chatbot/conversations/{conversation.id}/messages", headers=auth(parent))
    assert response.status_code == 404

    teacher_call = await client.post("/chatbot/stream", headers=auth(teacher), json={"message": "hi"})
    assert teacher_call.status_code == 403


@pytest.mark.asyncio
async def test_list_search_archive_and_feedback(client: AsyncClient, session: Session, parent: User):
    await client.post("/chatbot/stream", headers=auth(parent), json={"message": "Điểm toán tuần này"})

    listing = await client.get("/chatbot/conversations", headers=auth(parent))
    conv = listing.json()["data"][0]
    assert conv["message_count"] == 2

    found = await client.get("/chatbot/search", headers=auth(parent), params={"q": "toán"})
    assert [m["conversation_title"] for m in found.json()["data"]] == ["Điểm toán tuần này"]
    too_many = await client.get("/chatbot/search", headers=auth(parent), params={"q": "x", "limit": 51})
    assert too_many.status_code == 422

    reply = session.exec(select(ChatMessage).where(ChatMessage.role == MessageRole.ASSISTANT)).one()
    rated = await client.post("/chatbot/feedback", headers=auth(parent),
                              json={"message_id": reply.id, "is_helpful": True, "rating": "good"})
    assert rated.status_code == 201
    again = await client.post("/chatbot/feedback", headers=auth(parent),
                              json={"message_id": reply.id, "is_helpful": False})
    assert again.status_code == 409

    await client.post(f"/chatbot/conversations/{conv['id']}/archive", headers=auth(parent))
    listing = await client.get("/chatbot/conversations", headers=auth(parent))
    assert listing.json()["data"] == []


@pytest.mark.asyncio
async def test_feedback_summary_for_homeroom_teacher(client: AsyncClient, teacher: User, other_teacher: User,
                                                     classroom, enrolled, student, year, semester,
                                                     session: Session):
    response = await client.post("/chatbot/feedback-summary", headers=auth(teacher), json={"student_id": student.id})
    assert response.json()["data"] == {"student_id": student.id, "summary": "Tóm tắt"}

    denied = await client.post("/chatbot/feedback-summary", headers=auth(other_teacher),
                               json={"student_id": student.id})
    assert denied.status_code == 403
