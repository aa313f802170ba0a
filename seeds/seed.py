"""Seeds a small demo school: one year, one class, staff, students and parents."""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict

from sqlmodel import Session, SQLModel

from educonnect.app_logger import get_logger, setup_logging
from educonnect.db import engine, init_db
from educonnect.models import (
    AcademicYear, ClassAssignment, ClassRoom, DisciplinaryActionType, GradeReportingPeriod,
    ParentStudentRelationship, ReportPeriod,
    RelationshipType, Semester, Subject, User, UserRole, ViolationCategory, ViolationSeverity, ViolationType,
)

from seeds.utils import get_or_create

logger = get_logger("seed")

DEMO_PASSWORD = "Demo123!"

SUBJECTS = [
    ("TOAN", "Toán"), ("VAN", "Ngữ văn"), ("ANH", "Tiếng Anh"), ("LY", "Vật lý"),
    ("HOA", "Hóa học"), ("SINH", "Sinh học"), ("SU", "Lịch sử"), ("DIA", "Địa lý"),
]

VIOLATIONS: Dict[str, list] = {
    "Nề nếp": [("Đi học muộn", ViolationSeverity.MINOR, 1), ("Không mặc đồng phục", ViolationSeverity.MINOR, 1)],
    "Học tập": [("Không làm bài tập", ViolationSeverity.MINOR, 2), ("Sử dụng điện thoại trong giờ", ViolationSeverity.MODERATE, 3)],
    "Đạo đức": [("Gây gổ đánh nhau", ViolationSeverity.SERIOUS, 10)],
}

ACTIONS = [("Nhắc nhở", 1), ("Khiển trách trước lớp", 2), ("Mời phụ huynh", 4), ("Cảnh cáo toàn trường", 7)]


def seed_user(session: Session, email: str, full_name: str, role: UserRole, **extra) -> User:
    user, created = get_or_create(session, User, email=email, defaults={"full_name": full_name, "role": role, **extra})
    if created:
        user.set_password(DEMO_PASSWORD)
        session.add(user)
    return user


def seed_school(session: Session) -> None:
    year, _ = get_or_create(session, AcademicYear, name="2025-2026", defaults={
        "start_date": date(2025, 9, 1), "end_date": date(2026, 5, 31), "is_current": True,
    })
    semester, _ = get_or_create(session, Semester, academic_year_id=year.id, semester_number=1, defaults={
        "name": "Học kỳ 1", "start_date": date(2025, 9, 1), "end_date": date(2026, 1, 15), "is_current": True,
    })
    get_or_create(session, Semester, academic_year_id=year.id, semester_number=2, defaults={
        "name": "Học kỳ 2", "start_date": date(2026, 1, 16), "end_date": date(2026, 5, 31),
    })

    admin = seed_user(session, "admin@educonnect.vn", "Quản trị viên", UserRole.ADMIN)
    teacher = seed_user(session, "gvcn.10a1@educonnect.vn", "Nguyễn Thị Lan", UserRole.TEACHER)
    classroom, _ = get_or_create(session, ClassRoom, name="10A1", academic_year_id=year.id, defaults={
        "grade_level": 10, "semester_id": semester.id, "homeroom_teacher_id": teacher.id,
    })

    families = [
        ("HS001", "Trần Minh Khoa", "ph.khoa@gmail.com", "Trần Văn Hùng", RelationshipType.FATHER),
        ("HS002", "Lê Thu Hà", "ph.ha@gmail.com", "Phạm Thị Mai", RelationshipType.MOTHER),
        ("HS003", "Võ Quốc Bảo", "ph.bao@gmail.com", "Võ Văn Tâm", RelationshipType.FATHER),
    ]
    for code, name, parent_email, parent_name, relation in families:
        student = seed_user(session, f"{code.lower()}@educonnect.vn", name, UserRole.STUDENT, student_code=code)
        parent = seed_user(session, parent_email, parent_name, UserRole.PARENT)
        get_or_create(session, ClassAssignment, class_id=classroom.id, student_id=student.id,
                      defaults={"academic_year_id": year.id})
        get_or_create(session, ParentStudentRelationship, parent_id=parent.id, student_id=student.id,
                      defaults={"relationship_type": relation, "is_primary_contact": True})

    for code, name in SUBJECTS:
        get_or_create(session, Subject, code=code, defaults={"name": name})

    for category_name, types in VIOLATIONS.items():
        category, _ = get_or_create(session, ViolationCategory, name=category_name)
        for type_name, severity, points in types:
            get_or_create(session, ViolationType, category_id=category.id, name=type_name,
                          defaults={"default_severity": severity, "points": points})

    for action_name, level in ACTIONS:
        get_or_create(session, DisciplinaryActionType, name=action_name, defaults={"severity_level": level})

    now = datetime.utcnow().replace(microsecond=0)
    get_or_create(session, GradeReportingPeriod, name="Giữa học kỳ 1", semester_id=semester.id, defaults={
        "academic_year_id": year.id, "start_date": now - timedelta(days=1), "end_date": now + timedelta(days=30),
        "import_deadline": now + timedelta(days=14), "edit_deadline": now + timedelta(days=21),
        "created_by_id": admin.id,
    })
    today = now.date()
    get_or_create(session, ReportPeriod, name=f"Báo cáo tháng {today.month}", semester_id=semester.id, defaults={
        "academic_year_id": year.id, "start_date": today.replace(day=1), "end_date": today.replace(day=1) + timedelta(days=30),
        "created_by_id": admin.id,
    })


def main():
    setup_logging()
    SQLModel.metadata.drop_all(engine)
    init_db()
    with Session(engine) as session:
        seed_school(session)
        session.commit()
    logger.info("Seeded demo school into %s", engine.url)
    print(f"Database seeded. Admin login: admin@educonnect.vn / {DEMO_PASSWORD}")


if __name__ == "__main__":
    main()
