"""Parent assistant: builds school context, relays an OpenAI-compatible stream as SSE."""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import AsyncIterator

import httpx
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..config import settings
from ..errors import EduConnectError, NotFound
from ..models import (
    ChatConversation, ChatMessage, ClassAssignment, ClassRoom, MessageRole, ParentStudentRelationship,
    ReportPeriod, ReportStatus, StudentGrade, StudentReport, StudentViolation, Subject, User,
    ViolationSeverity, ViolationType,
)

logger = get_logger("ai_chat")

GRADE_WINDOW_DAYS = 30
VIOLATION_WINDOW_DAYS = 60
HISTORY_LIMIT = 10
ERROR_MESSAGE = "Xin lỗi, trợ lý AI đang gặp sự cố. Vui lòng thử lại sau."


class UpstreamError(EduConnectError):
    status_code = 502


class ChatClient:
    """Thin client for an OpenAI-compatible /chat/completions endpoint."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, model: str | None = None):
        self.base_url = (base_url or settings.AI_API_BASE).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.AI_API_KEY
        self.model = model or settings.AI_MODEL

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, messages: list[dict], stream: bool) -> dict:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": settings.AI_TEMPERATURE,
            "max_tokens": settings.AI_MAX_TOKENS,
            "stream": stream,
        }

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(connect=10.0, read=settings.AI_TIMEOUT_SECONDS, write=10.0, pool=10.0)

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        url = f"{self.base_url}/chat/completions"
        async with httpx.AsyncClient(timeout=self._timeout()) as client:
            async with client.stream("POST", url, headers=self._headers(), json=self._payload(messages, True)) as r:
                if r.status_code >= 400:
                    body = await r.aread()
                    logger.error("AI upstream status=%s body=%s", r.status_code, body[:500])
                    raise UpstreamError(ERROR_MESSAGE)
                async for line in r.aiter_lines():
                    chunk = parse_stream_line(line)
                    if chunk is None:
                        continue
                    if chunk is STREAM_DONE:
                        break
                    yield chunk

    async def complete(self, messages: list[dict]) -> str:
        url = f"{self.base_url}/chat/completions"
        async with httpx.AsyncClient(timeout=self._timeout()) as client:
            r = await client.post(url, headers=self._headers(), json=self._payload(messages, False))
        if r.status_code >= 400:
            logger.error("AI upstream status=%s body=%s", r.status_code, r.text[:500])
            raise UpstreamError(ERROR_MESSAGE)
        data = r.json()
        return ((data.get("choices") or [{}])[0].get("message") or {}).get("content") or ""


STREAM_DONE = object()


def parse_stream_line(line: str):
    """
    Decodes one upstream SSE line. Returns the delta text, STREAM_DONE for the
    terminator, or None for lines that carry no text.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if payload == "[DONE]":
        return STREAM_DONE
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed upstream chunk: %s", payload[:200])
        return None
    if not isinstance(data, dict):
        return None
    choices = data.get("choices") or []
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None


def sse(event_type: str, data) -> str:
    return f"data: {json.dumps({'type': event_type, 'data': data}, ensure_ascii=False, default=str)}\n\n"


_chat_client = ChatClient()


def get_chat_client() -> ChatClient:
    return _chat_client


def build_context(session: Session, parent: User, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    students = session.exec(
        select(User)
        .join(ParentStudentRelationship, ParentStudentRelationship.student_id == User.id)
        .where(ParentStudentRelationship.parent_id == parent.id)
        .order_by(User.full_name)
    ).all()
    student_ids = [s.id for s in students]
    if not student_ids:
        return {"students": [], "grades": [], "violations": [], "feedback": []}

    classes = {
        sid: name
        for sid, name in session.exec(
            select(ClassAssignment.student_id, ClassRoom.name)
            .join(ClassRoom, ClassRoom.id == ClassAssignment.class_id)
            .where(ClassAssignment.student_id.in_(student_ids), ClassAssignment.is_active == True)  # noqa: E712
        ).all()
    }
    names = {s.id: s.full_name for s in students}

    grades = [
        {"student": names[g.student_id], "subject": subject_name, "grade": g.grade_value}
        for g, subject_name in session.exec(
            select(StudentGrade, Subject.name)
            .join(Subject, Subject.id == StudentGrade.subject_id)
            .where(
                StudentGrade.student_id.in_(student_ids),
                StudentGrade.updated_at >= now - timedelta(days=GRADE_WINDOW_DAYS),
            )
            .order_by(StudentGrade.updated_at.desc())
        ).all()
    ]

    violations = [
        {"student": names[v.student_id], "type": type_name, "date": v.violation_date.isoformat(),
         "severity": ViolationSeverity(v.severity).label, "description": v.description}
        for v, type_name in session.exec(
            select(StudentViolation, ViolationType.name)
            .join(ViolationType, ViolationType.id == StudentViolation.violation_type_id)
            .where(
                StudentViolation.student_id.in_(student_ids),
                StudentViolation.violation_date >= (now - timedelta(days=VIOLATION_WINDOW_DAYS)).date(),
            )
            .order_by(StudentViolation.violation_date.desc())
        ).all()
    ]

    feedback = [
        {"student": names[r.student_id], "period": period_name, "strengths": r.strengths,
         "weaknesses": r.weaknesses, "academic_performance": r.academic_performance,
         "discipline_status": r.discipline_status}
        for r, period_name in session.exec(
            select(StudentReport, ReportPeriod.name)
            .join(ReportPeriod, ReportPeriod.id == StudentReport.report_period_id)
            .where(StudentReport.student_id.in_(student_ids), StudentReport.status == ReportStatus.SENT)
            .order_by(StudentReport.sent_at.desc())
        ).all()
    ]

    return {
        "students": [
            {"name": s.full_name, "student_code": s.student_code, "class": classes.get(s.id)}
            for s in students
        ],
        "grades": grades,
        "violations": violations,
        "feedback": feedback,
    }


def context_counts(context: dict) -> dict:
    return {
        "studentsCount": len(context["students"]),
        "feedbackCount": len(context["feedback"]),
        "gradesCount": len(context["grades"]),
        "violationsCount": len(context["violations"]),
    }


def system_prompt(parent: User, context: dict) -> str:
    lines = [
        "Bạn là trợ lý AI của EduConnect, hỗ trợ phụ huynh theo dõi việc học tập và rèn luyện của con.",
        "Trả lời bằng tiếng Việt, ngắn gọn, lịch sự và chỉ dựa trên dữ liệu dưới đây.",
        "Nếu không có dữ liệu, hãy nói rõ là chưa có thông tin và gợi ý phụ huynh liên hệ giáo viên chủ nhiệm.",
        f"Phụ huynh: {parent.full_name}",
        "",
        "## Học sinh",
    ]
    for s in context["students"]:
        lines.append(f"- {s['name']} (mã {s['student_code'] or 'N/A'}, lớp {s['class'] or 'chưa xếp lớp'})")
    if not context["students"]:
        lines.append("- Chưa có học sinh liên kết")

    lines += ["", f"## Điểm số cập nhật trong {GRADE_WINDOW_DAYS} ngày"]
    lines += [f"- {g['student']}: {g['subject']} = {g['grade']}" for g in context["grades"]] or ["- Không có"]

    lines += ["", f"## Vi phạm trong {VIOLATION_WINDOW_DAYS} ngày"]
    lines += [
        f"- {v['student']} ({v['date']}): {v['type']}, mức độ {v['severity']}"
        + (f". {v['description']}" if v["description"] else "")
        for v in context["violations"]
    ] or ["- Không có"]

    lines += ["", "## Nhận xét của giáo viên chủ nhiệm"]
    lines += [
        f"- {f['student']} ({f['period']}): điểm mạnh: {f['strengths']}; cần cải thiện: {f['weaknesses']}"
        for f in context["feedback"]
    ] or ["- Không có"]
    return "\n".join(lines)


def get_conversation(session: Session, conversation_id: int, parent: User) -> ChatConversation:
    conversation = session.get(ChatConversation, conversation_id)
    if not conversation or conversation.parent_id != parent.id:
        raise NotFound("Không tìm thấy cuộc trò chuyện")
    return conversation


def _history(session: Session, conversation_id: int) -> list[dict]:
    messages = session.exec(
        select(ChatMessage)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(HISTORY_LIMIT)
    ).all()
    return [{"role": MessageRole(m.role).value, "content": m.content} for m in reversed(messages)]


def start_turn(session: Session, parent: User, message: str, conversation_id: int | None) -> tuple[ChatConversation, list[dict], dict]:
    """Stores the user message and returns (conversation, upstream messages, context)."""
    if conversation_id:
        conversation = get_conversation(session, conversation_id, parent)
    else:
        conversation = ChatConversation(parent_id=parent.id, title=message[:80])
        session.add(conversation)
        session.commit()
        session.refresh(conversation)

    context = build_context(session, parent)
    messages = [{"role": "system", "content": system_prompt(parent, context)}]
    messages += _history(session, conversation.id)
    messages.append({"role": "user", "content": message})

    session.add(ChatMessage(conversation_id=conversation.id, role=MessageRole.USER, content=message))
    conversation.updated_at = datetime.utcnow()
    session.add(conversation)
    session.commit()
    return conversation, messages, context


async def stream_reply(session: Session, client: ChatClient, conversation_id: int, messages: list[dict],
                       context: dict) -> AsyncIterator[str]:
    """Yields SSE frames: text chunks, then complete, or error on failure."""
    counts = context_counts(context)
    parts: list[str] = []
    try:
        async for chunk in client.stream(messages):
            parts.append(chunk)
            yield sse("text", chunk)
    except (httpx.HTTPError, UpstreamError) as exc:
        logger.error("Chat stream failed for conversation %s: %s", conversation_id, exc)
        yield sse("error", {"message": ERROR_MESSAGE})
        return

    reply = "".join(parts)
    if reply:
        session.add(ChatMessage(
            conversation_id=conversation_id,
            role=MessageRole.ASSISTANT,
            content=reply,
            context_used=counts,
        ))
        session.commit()
    yield sse("complete", {"conversation_id": conversation_id, "contextUsed": counts})


async def feedback_summary(session: Session, client: ChatClient, student: User) -> str:
    since = datetime.utcnow().date() - timedelta(days=VIOLATION_WINDOW_DAYS)
    violations = session.exec(
        select(StudentViolation, ViolationType.name)
        .join(ViolationType, ViolationType.id == StudentViolation.violation_type_id)
        .where(StudentViolation.student_id == student.id, StudentViolation.violation_date >= since)
        .order_by(StudentViolation.violation_date.desc())
    ).all()
    report = session.exec(
        select(StudentReport)
        .where(StudentReport.student_id == student.id)
        .order_by(StudentReport.updated_at.desc())
    ).first()

    lines = [f"Học sinh: {student.full_name}", "Vi phạm gần đây:"]
    lines += [
        f"- {v.violation_date.isoformat()}: {name} ({ViolationSeverity(v.severity).label})"
        for v, name in violations
    ] or ["- Không có"]
    if report:
        lines += [
            "Nhận xét gần nhất:",
            f"- Điểm mạnh: {report.strengths or ''}",
            f"- Cần cải thiện: {report.weaknesses or ''}",
        ]
    messages = [
        {"role": "system", "content": "Bạn là trợ lý của giáo viên. Hãy tóm tắt ngắn gọn (3-5 câu) bằng tiếng Việt "
                                      "tình hình rèn luyện của học sinh và gợi ý hướng hỗ trợ."},
        {"role": "user", "content": "\n".join(lines)},
    ]
    return await client.complete(messages)
