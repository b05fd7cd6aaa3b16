"""HTML bodies for transactional emails.

Each builder returns `(subject, html)`. User-supplied values are escaped.
"""

from html import escape

from ..config import settings

_LAYOUT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
<div style="max-width: 600px; margin: 0 auto; padding: 20px;">
<h1>{heading}</h1>
{body}
<p>Best regards,<br>The {brand} Team</p>
</div>
</body>
</html>"""


def _page(title: str, heading: str, body: str) -> str:
    return _LAYOUT.format(
        title=escape(title), heading=escape(heading), body=body, brand=escape(settings.MAIL_FROM_NAME)
    )


def _button(url: str, label: str) -> str:
    url = escape(url, quote=True)
    return f'<p><a href="{url}">{escape(label)}</a></p><p style="word-break: break-all;">{url}</p>'


def email_verification(name: str, url: str):
    subject = f"Verify Your Email - {settings.MAIL_FROM_NAME}"
    body = (
        f"<p>Hello {escape(name)},</p>"
        "<p>Thank you for registering. Please verify your email address to complete your registration:</p>"
        f"{_button(url, 'Verify Email Address')}"
        "<p><strong>This verification link will expire in 24 hours.</strong></p>"
        "<p>If you didn't create an account with us, please ignore this email.</p>"
    )
    return subject, _page(subject, "Confirm your email", body)


def password_reset(name: str, url: str):
    subject = f"Password Reset Request - {settings.MAIL_FROM_NAME}"
    body = (
        f"<p>Hello {escape(name)},</p>"
        "<p>We received a request to reset your password. Use the link below to choose a new one:</p>"
        f"{_button(url, 'Reset Password')}"
        "<p><strong>This link will expire in 10 minutes.</strong></p>"
        "<p>If you didn't request a password reset, you can ignore this email.</p>"
    )
    return subject, _page(subject, "Reset your password", body)


_DASHBOARDS = {"employer": "/dashboard/employer", "admin": "/dashboard/admin"}


def welcome(name: str, user_type: str):
    subject = f"Welcome to {settings.MAIL_FROM_NAME}!"
    dashboard = settings.FRONTEND_URL + _DASHBOARDS.get(user_type, "/dashboard/student")
    body = (
        f"<p>Hello {escape(name)},</p>"
        "<p>Your email has been verified and your account is ready.</p>"
        f"{_button(dashboard, 'Go to your dashboard')}"
    )
    return subject, _page(subject, "Welcome aboard", body)


def course_enrollment(name: str, course_title: str, course_url: str):
    subject = f"Enrollment Confirmed: {course_title}"
    body = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>You are now enrolled in <strong>{escape(course_title)}</strong>.</p>"
        f"{_button(course_url, 'Start Learning')}"
    )
    return subject, _page(subject, "Enrollment confirmed", body)


def job_application(name: str, job_title: str, company_name: str):
    subject = f"Application Received: {job_title}"
    body = (
        f"<p>Hello {escape(name)},</p>"
        f"<p>Your application for <strong>{escape(job_title)}</strong> at "
        f"<strong>{escape(company_name)}</strong> has been submitted.</p>"
        "<p>The employer will review it and you will be notified of any status change.</p>"
    )
    return subject, _page(subject, "Application submitted", body)


def notification(title: str, message: str):
    body = f"<p>{escape(message)}</p>"
    return title, _page(title, title, body)
