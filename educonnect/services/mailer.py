"""Outbound email. Bodies are Jinja2 templates under templates/email."""
from __future__ import annotations

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..app_logger import get_logger
from ..config import settings
from ..models import LeaveApplication, Meeting

logger = get_logger("email")

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
)


def render(template_name: str, **context) -> str:
    context.setdefault("app_name", settings.APP_NAME)
    context.setdefault("base_url", settings.APP_BASE_URL.rstrip("/"))
    return _env.get_template(template_name).render(**context)


class EmailService:
    """Sends HTML mail over SMTP. Every send_* returns True/False and never raises."""

    def send(self, to_email: str, subject: str, html: str) -> bool:
        if not to_email:
            return False
        if not settings.EMAIL_ENABLED:
            logger.info("Email disabled, not sending: To=%s Subject=%s", to_email, subject)
            return False

        msg = MIMEMultipart()
        msg["From"] = settings.EMAIL_FROM
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(html, "html", "utf-8"))
        try:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=15) as server:
                if settings.SMTP_USE_TLS:
                    server.starttls()
                if settings.SMTP_USER:
                    server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False
        logger.info("Email sent to %s: %s", to_email, subject)
        return True

    def send_meeting_notification(self, *, to_email: str, parent_name: str, student_name: str,
                                  teacher_name: str, class_name: str, meeting: Meeting) -> bool:
        html = render(
            "meeting_notification.html",
            parent_name=parent_name,
            student_name=student_name,
            teacher_name=teacher_name,
            class_name=class_name,
            meeting=meeting,
        )
        return self.send(to_email, f"Thông báo họp phụ huynh: {meeting.title}", html)

    def send_report_notification(self, *, to_email: str, parent_name: str, student_name: str,
                                 class_name: str, period_name: str, report_id: int,
                                 resend_reason: str | None = None) -> bool:
        html = render(
            "report_notification.html",
            parent_name=parent_name,
            student_name=student_name,
            class_name=class_name,
            period_name=period_name,
            report_id=report_id,
            resend_reason=resend_reason,
        )
        prefix = "[Cập nhật] " if resend_reason else ""
        return self.send(to_email, f"{prefix}Báo cáo học tập của {student_name} - {period_name}", html)

    def send_teacher_reminder(self, *, to_email: str, teacher_name: str, period_name: str,
                              classes: list[dict]) -> bool:
        html = render(
            "teacher_reminder.html",
            teacher_name=teacher_name,
            period_name=period_name,
            classes=classes,
        )
        return self.send(to_email, f"Nhắc nhở hoàn thành báo cáo: {period_name}", html)

    def send_leave_decision(self, *, to_email: str, parent_name: str, student_name: str,
                            application: LeaveApplication) -> bool:
        html = render(
            "leave_decision.html",
            parent_name=parent_name,
            student_name=student_name,
            application=application,
        )
        approved = application.status == "approved"
        return self.send(
            to_email,
            f"Đơn xin nghỉ của {student_name} đã được {'chấp thuận' if approved else 'từ chối'}",
            html,
        )


email_service = EmailService()


def get_email_service() -> EmailService:
    return email_service
