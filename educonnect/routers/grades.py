from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response
from sqlmodel import Session, or_, select

from ..app_logger import get_logger
from ..config import settings
from ..db import get_session
from ..dependencies import children_ids, require_role, require_user
from ..errors import NotFound, ValidationFailed
from ..models import (
    ClassRoom, GradeImportLog, GradeType, StudentGrade, Subject, User, UserRole,
)
from ..schemas.grade import GradeBatch, GradeEntry, GradeLockForm, GradeUpdate
from ..services import grade_excel, grading
from ..utils import ok, paginate

logger = get_logger("grades")

router = APIRouter(prefix="/grades", tags=["grades"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _get_grade(session: Session, grade_id: int) -> StudentGrade:
    grade = session.get(StudentGrade, grade_id)
    if not grade:
        raise NotFound("Không tìm thấy điểm")
    return grade


@router.post("", status_code=201)
def create_grade(
    entry: GradeEntry,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    grade = grading.create_grade(session, entry, current_user)
    return ok(grade, "Đã nhập điểm")


@router.post("/batch", status_code=201)
def create_grades(
    batch: GradeBatch,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    grades = [grading.create_grade(session, e, current_user, commit=False) for e in batch.grades]
    session.commit()
    logger.info("Batch of %d grades entered by %s", len(grades), current_user.id)
    return ok({"created": len(grades)}, f"Đã nhập {len(grades)} điểm")


@router.put("/{grade_id}")
def update_grade(
    grade_id: int,
    form: GradeUpdate,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    grade = _get_grade(session, grade_id)
    grade = grading.update_grade(session, grade, form.grade_value, form.change_reason, current_user, notes=form.notes)
    return ok(grade, "Đã cập nhật điểm")


@router.post("/lock")
def lock_grades(
    form: GradeLockForm,
    current_user: User = Depends(require_role("admin")),
    session: Session = Depends(get_session),
):
    n = grading.set_locked(session, form.grade_period_id, form.class_id, form.subject_id, form.locked)
    return ok({"affected": n}, "Đã khóa điểm" if form.locked else "Đã mở khóa điểm")


@router.get("")
def list_grades(
    grade_period_id: Optional[int] = None,
    class_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    grade_type: Optional[GradeType] = None,
    student_id: Optional[int] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_user),
    session: Session = Depends(get_session),
):
    stmt = (
        select(StudentGrade, User, Subject, ClassRoom)
        .join(User, User.id == StudentGrade.student_id)
        .join(Subject, Subject.id == StudentGrade.subject_id)
        .join(ClassRoom, ClassRoom.id == StudentGrade.class_id)
    )
    if current_user.role == UserRole.PARENT:
        stmt = stmt.where(StudentGrade.student_id.in_(children_ids(session, current_user)))
    elif current_user.role == UserRole.STUDENT:
        stmt = stmt.where(StudentGrade.student_id == current_user.id)
    if grade_period_id:
        stmt = stmt.where(StudentGrade.grade_period_id == grade_period_id)
    if class_id:
        stmt = stmt.where(StudentGrade.class_id == class_id)
    if subject_id:
        stmt = stmt.where(StudentGrade.subject_id == subject_id)
    if grade_type:
        stmt = stmt.where(StudentGrade.grade_type == grade_type)
    if student_id:
        stmt = stmt.where(StudentGrade.student_id == student_id)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.full_name.ilike(like), User.student_code.ilike(like)))

    result = paginate(session, stmt.order_by(ClassRoom.name, User.full_name, Subject.name), page, limit)
    result["items"] = [
        {
            **g.model_dump(),
            "student_name": student.full_name,
            "student_code": student.student_code,
            "subject_name": subject.name,
            "class_name": classroom.name,
        }
        for g, student, subject, classroom in result["items"]
    ]
    return ok(result)


@router.get("/statistics")
def statistics(
    grade_period_id: int,
    class_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    return ok(grading.grade_statistics(session, grade_period_id, class_id, subject_id))


@router.get("/import-logs")
def import_logs(
    grade_period_id: Optional[int] = None,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    stmt = select(GradeImportLog)
    if grade_period_id:
        stmt = stmt.where(GradeImportLog.grade_period_id == grade_period_id)
    return ok(session.exec(stmt.order_by(GradeImportLog.imported_at.desc()).limit(100)).all())


@router.get("/{grade_id}/audit")
def grade_audit(
    grade_id: int,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    _get_grade(session, grade_id)
    return ok(grading.audit_trail(session, grade_id))


@router.post("/import")
async def import_grades(
    file: UploadFile = File(...),
    grade_period_id: int = Form(...),
    class_id: int = Form(...),
    subject_id: int = Form(...),
    grade_type: GradeType = Form(GradeType.SEMESTER1),
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    if not (file.filename or "").lower().endswith(".xlsx"):
        raise ValidationFailed("Chỉ chấp nhận file Excel (.xlsx)")
    content = await file.read()
    if len(content) > settings.MAX_IMPORT_BYTES:
        raise ValidationFailed("File vượt quá dung lượng cho phép")
    result = grade_excel.import_grades(
        session,
        content,
        period_id=grade_period_id,
        class_id=class_id,
        subject_id=subject_id,
        grade_type=grade_type,
        user=current_user,
        filename=file.filename,
    )
    return ok(result, f"Đã nhập {result['valid_records']}/{result['total_records']} dòng")


@router.get("/export")
def export_grades(
    grade_period_id: int,
    class_id: int,
    subject_id: int,
    grade_type: GradeType = GradeType.SEMESTER1,
    current_user: User = Depends(require_role("admin", "teacher")),
    session: Session = Depends(get_session),
):
    content, filename = grade_excel.export_grades(
        session, period_id=grade_period_id, class_id=class_id, subject_id=subject_id, grade_type=grade_type,
    )
    return Response(
        content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
