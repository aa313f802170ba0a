"""VNedu-style grade spreadsheets: parse an uploaded sheet and build an export."""
from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd
from sqlmodel import Session, select

from ..app_logger import get_logger
from ..errors import Conflict, DeadlinePassed, NotFound, PermissionDenied, ValidationFailed
from ..models import (
    ClassAssignment, ClassRoom, GradeImportLog, GradeReportingPeriod, GradeType, StudentGrade,
    Subject, User,
)
from ..schemas.grade import GradeEntry
from . import grading

logger = get_logger("grade_excel")

HEADERS = ["STT", "Mã học sinh", "Họ và tên", "Điểm số", "Ghi chú"]
IMPORT_REASON = "Cập nhật điểm từ file Excel VNedu"


@dataclass
class ParsedRow:
    row_number: int
    student_code: str
    full_name: str
    grade_value: float | None
    notes: str | None
    errors: list[str] = field(default_factory=list)


def _cell(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def parse_grade_value(raw: str) -> float:
    """Parses a grade allowing a decimal comma. Raises ValueError with a readable message."""
    text = raw.strip().replace(",", ".")
    if not text:
        raise ValueError("Thiếu điểm số")
    try:
        value = float(text)
    except ValueError:
        raise ValueError(f"Điểm không hợp lệ: {raw}")
    if value < 0 or value > 10:
        raise ValueError("Điểm phải từ 0 đến 10")
    if round(value, 1) != round(value, 6):
        raise ValueError("Điểm chỉ được có tối đa 1 chữ số thập phân")
    return round(value, 1)


def _find_header_row(df: pd.DataFrame) -> int:
    for idx in range(len(df)):
        cells = {_cell(v) for v in df.iloc[idx].tolist()}
        if "STT" in cells and "Họ và tên" in cells:
            return idx
    raise ValidationFailed("Không tìm thấy dòng tiêu đề (STT, Họ và tên) trong file")


def parse_workbook(content: bytes) -> list[ParsedRow]:
    try:
        df_full = pd.read_excel(io.BytesIO(content), header=None, dtype=object, engine="openpyxl")
    except Exception as exc:
        logger.warning("Unreadable grade workbook: %s", exc)
        raise ValidationFailed("File Excel không hợp lệ")

    header_idx = _find_header_row(df_full)
    columns = [_cell(v) for v in df_full.iloc[header_idx].tolist()]
    missing = [h for h in ("Mã học sinh", "Điểm số") if h not in columns]
    if missing:
        raise ValidationFailed(f"Thiếu cột: {', '.join(missing)}")

    body = df_full.iloc[header_idx + 1:].copy()
    body.columns = columns

    rows: list[ParsedRow] = []
    for offset, (_, record) in enumerate(body.iterrows()):
        code = _cell(record.get("Mã học sinh"))
        name = _cell(record.get("Họ và tên"))
        raw_grade = _cell(record.get("Điểm số"))
        if not code and not name and not raw_grade:
            continue
        row = ParsedRow(
            row_number=header_idx + offset + 2,
            student_code=code,
            full_name=name,
            grade_value=None,
            notes=_cell(record.get("Ghi chú")) or None,
        )
        if not code:
            row.errors.append("Thiếu mã học sinh")
        try:
            row.grade_value = parse_grade_value(raw_grade)
        except ValueError as exc:
            row.errors.append(str(exc))
        rows.append(row)
    return rows


def _roster_by_code(session: Session, class_id: int) -> dict[str, User]:
    students = session.exec(
        select(User)
        .join(ClassAssignment, ClassAssignment.student_id == User.id)
        .where(ClassAssignment.class_id == class_id, ClassAssignment.is_active == True)  # noqa: E712
    ).all()
    return {s.student_code: s for s in students if s.student_code}


def import_grades(
    session: Session,
    content: bytes,
    *,
    period_id: int,
    class_id: int,
    subject_id: int,
    grade_type: GradeType,
    user: User,
    filename: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Validates every row, then creates or updates grades for the valid ones.
    The whole import needs an open import window; updates also honour the edit
    deadline and lock flag of the existing grade.
    """
    grading.check_period_permissions(session, period_id, "import", now)
    if not session.get(ClassRoom, class_id):
        raise NotFound("Không tìm thấy lớp học")
    if not session.get(Subject, subject_id):
        raise NotFound("Không tìm thấy môn học")

    rows = parse_workbook(content)
    roster = _roster_by_code(session, class_id)

    for row in rows:
        if row.student_code and row.student_code not in roster:
            row.errors.append(f"Không tìm thấy học sinh có mã {row.student_code} trong lớp")

    created = updated = 0
    for row in rows:
        if row.errors:
            continue
        student = roster[row.student_code]
        existing = grading.find_grade(session, period_id, student.id, subject_id, grade_type)
        try:
            if existing:
                grading.update_grade(session, existing, row.grade_value, IMPORT_REASON, user,
                                     notes=row.notes, commit=False, now=now)
                updated += 1
            else:
                grading.create_grade(session, GradeEntry(
                    grade_period_id=period_id,
                    student_id=student.id,
                    subject_id=subject_id,
                    class_id=class_id,
                    grade_type=grade_type,
                    grade_value=row.grade_value,
                    notes=row.notes,
                ), user, commit=False, now=now)
                created += 1
        except (ValidationFailed, PermissionDenied, DeadlinePassed, Conflict) as exc:
            row.errors.append(exc.message)

    errors = [
        {"row": r.row_number, "student_code": r.student_code, "full_name": r.full_name, "errors": r.errors}
        for r in rows if r.errors
    ]
    result = {
        "total_records": len(rows),
        "valid_records": len(rows) - len(errors),
        "error_records": len(errors),
        "created": created,
        "updated": updated,
        "errors": errors,
    }
    session.add(GradeImportLog(
        grade_period_id=period_id,
        class_id=class_id,
        subject_id=subject_id,
        filename=filename,
        total_records=result["total_records"],
        valid_records=result["valid_records"],
        error_records=result["error_records"],
        status="completed" if result["valid_records"] else "failed",
        imported_by_id=user.id,
    ))
    session.commit()
    logger.info("Grade import period=%s class=%s subject=%s: %d ok, %d errors",
                period_id, class_id, subject_id, result["valid_records"], result["error_records"])
    return result


def export_grades(session: Session, *, period_id: int, class_id: int, subject_id: int,
                  grade_type: GradeType) -> tuple[bytes, str]:
    period = session.get(GradeReportingPeriod, period_id)
    classroom = session.get(ClassRoom, class_id)
    subject = session.get(Subject, subject_id)
    if not period or not classroom or not subject:
        raise NotFound("Không tìm thấy dữ liệu để xuất")

    students = session.exec(
        select(User)
        .join(ClassAssignment, ClassAssignment.student_id == User.id)
        .where(ClassAssignment.class_id == class_id, ClassAssignment.is_active == True)  # noqa: E712
        .order_by(User.full_name)
    ).all()
    grades = {
        g.student_id: g
        for g in session.exec(
            select(StudentGrade).where(
                StudentGrade.grade_period_id == period_id,
                StudentGrade.class_id == class_id,
                StudentGrade.subject_id == subject_id,
                StudentGrade.grade_type == grade_type,
            )
        ).all()
    }

    records = []
    for i, s in enumerate(students, start=1):
        g = grades.get(s.id)
        records.append({
            "STT": i,
            "Mã học sinh": s.student_code or "",
            "Họ và tên": s.full_name,
            "Điểm số": g.grade_value if g else None,
            "Ghi chú": (g.notes or "") if g else "",
        })
    df = pd.DataFrame(records, columns=HEADERS)

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, startrow=3, sheet_name="Bảng điểm")
        sheet = writer.sheets["Bảng điểm"]
        sheet["A1"] = f"BẢNG ĐIỂM MÔN {subject.name.upper()}"
        sheet["A2"] = f"Lớp: {classroom.name}"
        sheet["A3"] = f"Kỳ: {period.name}"

    filename = f"bang-diem-{classroom.name}-{subject.code}.xlsx"
    return buffer.getvalue(), filename
