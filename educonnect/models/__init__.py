from .user import User, UserRead, UserRole, RelationshipType, ParentStudentRelationship
from .academic import AcademicYear, Semester, ClassRoom, ClassAssignment, Subject
from .grade import GradeType, GradeReportingPeriod, StudentGrade, GradeAuditLog, GradeImportLog
from .violation import (
    ViolationSeverity, SEVERITY_LABELS, ViolationCategory, ViolationType, StudentViolation,
    MonthlyViolationAlert, DisciplinaryActionType, DisciplinaryCase, DisciplinaryCaseStatus,
    CASE_TRANSITIONS,
)
from .leave import LeaveApplication, LeaveType, LeaveStatus
from .meeting import Meeting, MeetingRecipient, MeetingType, MeetingStatus
from .report import ReportPeriod, StudentReport, ParentReportResponse, ReportStatus, AgreementStatus
from .chat import ChatConversation, ChatMessage, ChatFeedback, MessageRole, FeedbackRating

__all__ = [
    "User", "UserRead", "UserRole", "RelationshipType", "ParentStudentRelationship",
    "AcademicYear", "Semester", "ClassRoom", "ClassAssignment", "Subject",
    "GradeType", "GradeReportingPeriod", "StudentGrade", "GradeAuditLog", "GradeImportLog",
    "ViolationSeverity", "SEVERITY_LABELS", "ViolationCategory", "ViolationType", "StudentViolation",
    "MonthlyViolationAlert", "DisciplinaryActionType", "DisciplinaryCase", "DisciplinaryCaseStatus",
    "CASE_TRANSITIONS",
    "LeaveApplication", "LeaveType", "LeaveStatus",
    "Meeting", "MeetingRecipient", "MeetingType", "MeetingStatus",
    "ReportPeriod", "StudentReport", "ParentReportResponse", "ReportStatus", "AgreementStatus",
    "ChatConversation", "ChatMessage", "ChatFeedback", "MessageRole", "FeedbackRating",
]
