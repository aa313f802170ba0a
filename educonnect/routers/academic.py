from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..db import get_session
from ..dependencies import homeroom_class_for, require_role, require_user
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import (
    AcademicYear, ClassAssignment, ClassRoom, ParentStudentRelationship, Semester, Subject, User,
    UserRead, UserRole,
)
from ..schemas.academic import (
    AcademicYearForm, AssignmentForm, ClassForm, ClassUpdate, SemesterForm, SubjectForm,
)
from ..utils import apply_updates, ok

logger = get_logger("academic")

router = APIRouter(tags=["academic"])


def _get(session: Session, model, obj_id: int, message: str):
    obj = session.get(model, obj_id)
    if not obj:
        raise NotFound(message)
    return obj


# Academic years and semesters

@router.get("/academic-years")
def list_years(current_user: User = Depends(require_user), session: Session = Depends(get_session)):
    return ok(session.exec(select(AcademicYear).order_by(AcademicYear.start_date.desc())).all())


@router.post("/academic-years", status_code=201)
def create_year(
    form: AcademicYearForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    if session.exec(select(AcademicYear).where(AcademicYear.name == form.name)).first():
        raise Conflict("Năm học đã tồn tại")
    year = AcademicYear(**form.model_dump())
    if year.is_current:
        for other in session.exec(select(AcademicYear).where(AcademicYear.is_current == True)).all():  # noqa: E712
            other.is_current = False
            session.add(other)
    session.add(year)
    session.commit()
    session.refresh(year)
    return ok(year, "Đã tạo năm học")


@router.post("/academic-years/{year_id}/set-current")
def set_current_year(
    year_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    year = _get(session, AcademicYear, year_id, "Không tìm thấy năm học")
    for other in session.exec(select(AcademicYear).where(AcademicYear.id != year.id)).all():
        other.is_current = False
        session.add(other)
    year.is_current = True
    session.add(year)
    session.commit()
    session.refresh(year)
    return ok(year)


@router.get("/semesters")
def list_semesters(
    academic_year_id: Optional[int] = None,
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    stmt = select(Semester)
    if academic_year_id:
        stmt = stmt.where(Semester.academic_year_id == academic_year_id)
    return ok(session.exec(stmt.order_by(Semester.start_date)).all())


@router.post("/semesters", status_code=201)
def create_semester(
    form: SemesterForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    year = _get(session, AcademicYear, form.academic_year_id, "Không tìm thấy năm học")
    clash = session.exec(
        select(Semester).where(
            Semester.academic_year_id == year.id,
            Semester.semester_number == form.semester_number,
        )
    ).first()
    if clash:
        raise Conflict("Học kỳ đã tồn tại trong năm học")
    semester = Semester(**form.model_dump())
    if semester.is_current:
        for other in session.exec(select(Semester).where(Semester.is_current == True)).all():  # noqa: E712
            other.is_current = False
            session.add(other)
    session.add(semester)
    session.commit()
    session.refresh(semester)
    return ok(semester, "Đã tạo học kỳ")


@router.post("/semesters/{semester_id}/set-current")
def set_current_semester(
    semester_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    semester = _get(session, Semester, semester_id, "Không tìm thấy học kỳ")
    for other in session.exec(select(Semester).where(Semester.id != semester.id)).all():
        other.is_current = False
        session.add(other)
    semester.is_current = True
    session.add(semester)
    session.commit()
    session.refresh(semester)
    return ok(semester)


# Classes

def _check_homeroom_teacher(session: Session, teacher_id: Optional[int]) -> None:
    if teacher_id is None:
        return
    teacher = session.get(User, teacher_id)
    if not teacher or teacher.role != UserRole.TEACHER:
        raise ValidationFailed("Giáo viên chủ nhiệm phải là giáo viên")


@router.get("/classes")
def list_classes(
    academic_year_id: Optional[int] = None,
    semester_id: Optional[int] = None,
    grade_level: Optional[int] = None,
    include_inactive: bool = False,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    counts = (
        select(ClassAssignment.class_id, func.count(ClassAssignment.id).label("student_count"))
        .where(ClassAssignment.is_active == True)  # noqa: E712
        .group_by(ClassAssignment.class_id)
        .subquery()
    )
    stmt = select(ClassRoom, func.coalesce(counts.c.student_count, 0)).outerjoin(
        counts, counts.c.class_id == ClassRoom.id
    )
    if not include_inactive:
        stmt = stmt.where(ClassRoom.is_active == True)  # noqa: E712
    if academic_year_id:
        stmt = stmt.where(ClassRoom.academic_year_id == academic_year_id)
    if semester_id:
        stmt = stmt.where(ClassRoom.semester_id == semester_id)
    if grade_level:
        stmt = stmt.where(ClassRoom.grade_level == grade_level)
    rows = session.exec(stmt.order_by(ClassRoom.name)).all()
    return ok([{**c.model_dump(), "student_count": n} for c, n in rows])


@router.post("/classes", status_code=201)
def create_class(
    form: ClassForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    _check_homeroom_teacher(session, form.homeroom_teacher_id)
    classroom = ClassRoom(**form.model_dump())
    session.add(classroom)
    session.commit()
    session.refresh(classroom)
    logger.info("Class %s (%s) created", classroom.id, classroom.name)
    return ok(classroom, "Đã tạo lớp học")


@router.put("/classes/{class_id}")
def update_class(
    class_id: int,
    form: ClassUpdate,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    classroom = _get(session, ClassRoom, class_id, "Không tìm thấy lớp học")
    _check_homeroom_teacher(session, form.homeroom_teacher_id)
    apply_updates(classroom, form)
    session.add(classroom)
    session.commit()
    session.refresh(classroom)
    return ok(classroom, "Đã cập nhật lớp học")


@router.delete("/classes/{class_id}")
def delete_class(
    class_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    classroom = _get(session, ClassRoom, class_id, "Không tìm thấy lớp học")
    classroom.is_active = False
    session.add(classroom)
    session.commit()
    return ok(message="Đã xóa lớp học")


def _roster(session: Session, class_id: int) -> list[User]:
    return list(session.exec(
        select(User)
        .join(ClassAssignment, ClassAssignment.student_id == User.id)
        .where(ClassAssignment.class_id == class_id, ClassAssignment.is_active == True)  # noqa: E712
        .order_by(User.full_name)
    ).all())


@router.get("/classes/{class_id}/students")
def class_roster(
    class_id: int,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    _get(session, ClassRoom, class_id, "Không tìm thấy lớp học")
    return ok([UserRead.model_validate(s) for s in _roster(session, class_id)])


@router.post("/classes/{class_id}/students", status_code=201)
def assign_student(
    class_id: int,
    form: AssignmentForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    classroom = _get(session, ClassRoom, class_id, "Không tìm thấy lớp học")
    student = _get(session, User, form.student_id, "Không tìm thấy học sinh")
    if student.role != UserRole.STUDENT:
        raise ValidationFailed("Người dùng không phải học sinh")

    existing = session.exec(
        select(ClassAssignment).where(
            ClassAssignment.student_id == student.id,
            ClassAssignment.academic_year_id == classroom.academic_year_id,
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).first()
    if existing:
        raise Conflict("Học sinh đã được xếp lớp trong năm học này")

    enrolled = session.exec(
        select(func.count(ClassAssignment.id)).where(
            ClassAssignment.class_id == classroom.id,
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).one()
    if enrolled >= classroom.max_students:
        raise Conflict("Lớp đã đủ sĩ số")

    assignment = ClassAssignment(
        class_id=classroom.id,
        student_id=student.id,
        academic_year_id=classroom.academic_year_id,
    )
    session.add(assignment)
    session.commit()
    session.refresh(assignment)
    return ok(assignment, "Đã xếp lớp cho học sinh")


@router.delete("/classes/{class_id}/students/{student_id}")
def remove_student(
    class_id: int,
    student_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    assignment = session.exec(
        select(ClassAssignment).where(
            ClassAssignment.class_id == class_id,
            ClassAssignment.student_id == student_id,
            ClassAssignment.is_active == True,  # noqa: E712
        )
    ).first()
    if not assignment:
        raise NotFound("Học sinh không thuộc lớp này")
    assignment.is_active = False
    session.add(assignment)
    session.commit()
    return ok(message="Đã xóa học sinh khỏi lớp")


@router.get("/homeroom/students")
def homeroom_students_with_parents(
    current_user: User = Depends(require_role("teacher")),
    session: Session = Depends(get_session),
):
    classroom = homeroom_class_for(session, current_user)
    students = _roster(session, classroom.id)
    parents_by_student: dict[int, list[dict]] = {s.id: [] for s in students}
    if students:
        for link, parent in session.exec(
            select(ParentStudentRelationship, User)
            .join(User, User.id == ParentStudentRelationship.parent_id)
            .where(ParentStudentRelationship.student_id.in_(list(parents_by_student)))
        ).all():
            parents_by_student[link.student_id].append({
                "id": parent.id,
                "full_name": parent.full_name,
                "email": parent.email,
                "phone": parent.phone,
                "relationship_type": link.relationship_type,
                "is_primary_contact": link.is_primary_contact,
            })
    return ok({
        "class": classroom,
        "students": [
            {**UserRead.model_validate(s).model_dump(), "parents": parents_by_student[s.id]}
            for s in students
        ],
    })


# Subjects

@router.get("/subjects")
def list_subjects(current_user: User = Depends(require_user), session: Session = Depends(get_session)):
    return ok(session.exec(select(Subject).where(Subject.is_active == True).order_by(Subject.name)).all())  # noqa: E712


@router.post("/subjects", status_code=201)
def create_subject(
    form: SubjectForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    if session.exec(select(Subject).where(Subject.code == form.code)).first():
        raise Conflict("Mã môn học đã tồn tại")
    subject = Subject(**form.model_dump())
    session.add(subject)
    session.commit()
    session.refresh(subject)
    return ok(subject, "Đã tạo môn học")


@router.delete("/subjects/{subject_id}")
def deactivate_subject(
    subject_id: int,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    subject = _get(session, Subject, subject_id, "Không tìm thấy môn học")
    subject.is_active = False
    session.add(subject)
    session.commit()
    return ok(message="Đã ẩn môn học")
