from datetime import date, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from educonnect.db import get_session
from educonnect.main import app
from educonnect.models import (
    AcademicYear, ClassAssignment, ClassRoom, GradeReportingPeriod, ParentStudentRelationship,
    RelationshipType, ReportPeriod, Semester, Subject, User, UserRole, ViolationCategory, ViolationSeverity,
    ViolationType,
)
from educonnect.security import create_access_token
from educonnect.services.ai_chat import get_chat_client
from educonnect.services.mailer import EmailService, get_email_service

DATABASE_URL = "sqlite://"
engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)


class FakeMailer(EmailService):
    """Records outgoing mail instead of talking to SMTP."""

    def __init__(self):
        self.sent = []

    def send(self, to_email: str, subject: str, html: str) -> bool:
        if not to_email:
            return False
        self.sent.append({"to": to_email, "subject": subject, "html": html})
        return True


class FakeChatClient:
    def __init__(self, chunks=None, summary="Tóm tắt"):
        self.chunks = chunks if chunks is not None else ["Xin ", "chào"]
        self.summary = summary
        self.calls = []

    async def stream(self, messages):
        self.calls.append(messages)
        for chunk in self.chunks:
            yield chunk

    async def complete(self, messages):
        self.calls.append(messages)
        return self.summary


@pytest.fixture(name="session")
def session_fixture():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="mailer")
def mailer_fixture():
    return FakeMailer()


@pytest.fixture(name="chat_client")
def chat_client_fixture():
    return FakeChatClient()


@pytest.fixture(name="client")
def client_fixture(session: Session, mailer: FakeMailer, chat_client: FakeChatClient):
    def get_session_override():
        yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_email_service] = lambda: mailer
    app.dependency_overrides[get_chat_client] = lambda: chat_client
    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    yield client
    app.dependency_overrides.clear()


def make_user(session: Session, email: str, full_name: str, role: UserRole, password: str = "password123",
              **extra) -> User:
    user = User(email=email, full_name=full_name, role=role, **extra)
    user.set_password(password)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def auth(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": UserRole(user.role).value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(session):
    return make_user(session, "admin@school.edu.vn", "Quản trị viên", UserRole.ADMIN)


@pytest.fixture
def teacher(session):
    return make_user(session, "gvcn@school.edu.vn", "Nguyễn Văn Giáo", UserRole.TEACHER)


@pytest.fixture
def other_teacher(session):
    return make_user(session, "gv2@school.edu.vn", "Trần Thị Hai", UserRole.TEACHER)


@pytest.fixture
def student(session):
    return make_user(session, "hs1@school.edu.vn", "Lê Minh An", UserRole.STUDENT, student_code="HS001")


@pytest.fixture
def student2(session):
    return make_user(session, "hs2@school.edu.vn", "Phạm Thu Bình", UserRole.STUDENT, student_code="HS002")


@pytest.fixture
def parent(session):
    return make_user(session, "ph1@gmail.com", "Lê Văn Cha", UserRole.PARENT)


@pytest.fixture
def year(session):
    y = AcademicYear(name="2025-2026", start_date=date(2025, 9, 1), end_date=date(2026, 5, 31), is_current=True)
    session.add(y)
    session.commit()
    session.refresh(y)
    return y


@pytest.fixture
def semester(session, year):
    s = Semester(
        academic_year_id=year.id, name="Học kỳ 1", semester_number=1,
        start_date=date(2025, 9, 1), end_date=date(2026, 1, 15), is_current=True,
    )
    session.add(s)
    session.commit()
    session.refresh(s)
    return s


@pytest.fixture
def classroom(session, year, semester, teacher):
    c = ClassRoom(
        name="10A1", grade_level=10, academic_year_id=year.id, semester_id=semester.id,
        homeroom_teacher_id=teacher.id,
    )
    session.add(c)
    session.commit()
    session.refresh(c)
    return c


@pytest.fixture
def enrolled(session, classroom, student, student2):
    for s in (student, student2):
        session.add(ClassAssignment(class_id=classroom.id, student_id=s.id, academic_year_id=classroom.academic_year_id))
    session.commit()
    return [student, student2]


@pytest.fixture
def family(session, parent, student):
    link = ParentStudentRelationship(
        parent_id=parent.id, student_id=student.id,
        relationship_type=RelationshipType.FATHER, is_primary_contact=True,
    )
    session.add(link)
    session.commit()
    return link


@pytest.fixture
def subject(session):
    s = Subject(code="TOAN", name="Toán")
    session.add(s)
    session.commit()
    session.refresh(s)
    return s


@pytest.fixture
def grade_period(session, year, semester, admin):
    now = datetime.utcnow()
    p = GradeReportingPeriod(
        name="Giữa kỳ 1", academic_year_id=year.id, semester_id=semester.id,
        start_date=now - timedelta(days=1), end_date=now + timedelta(days=20),
        import_deadline=now + timedelta(days=5), edit_deadline=now + timedelta(days=10),
        created_by_id=admin.id,
    )
    session.add(p)
    session.commit()
    session.refresh(p)
    return p


@pytest.fixture
def report_period(session, year, semester, admin):
    p = ReportPeriod(
        name="Báo cáo tháng 10", start_date=date(2025, 10, 1), end_date=date(2025, 10, 31),
        academic_year_id=year.id, semester_id=semester.id, created_by_id=admin.id,
    )
    session.add(p)
    session.commit()
    session.refresh(p)
    return p


@pytest.fixture
def violation_type(session):
    category = ViolationCategory(name="Nề nếp")
    session.add(category)
    session.commit()
    session.refresh(category)
    vtype = ViolationType(
        category_id=category.id, name="Đi học muộn", default_severity=ViolationSeverity.MINOR, points=2,
    )
    session.add(vtype)
    session.commit()
    session.refresh(vtype)
    return vtype
