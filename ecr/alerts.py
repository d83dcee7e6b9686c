from __future__ import annotations

import smtplib
from email.message import EmailMessage

from .settings import settings


def _smtp_configured() -> bool:
    required = (settings.smtp_host, settings.smtp_user, settings.smtp_password, settings.email_from, settings.email_to)
    return settings.enable_email and all(required)


def notify_action(namespace: str, pod: str, action: str, outcome: str, detail: str = "") -> bool:
    """Mail the operators about a remedial action on ``namespace/pod``.

    Enabled with ECR_ENABLE_EMAIL=true plus the ECR_SMTP_* / ECR_EMAIL_*
    variables. Returns True only when the message was handed to the server;
    delivery problems never reach the reconciler.
    """
    if not _smtp_configured():
        return False

    msg = EmailMessage()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_to
    msg["Subject"] = f"[ecr] {action} {outcome}: {namespace}/{pod}"
    msg.set_content(f"Namespace: {namespace}\nPod: {pod}\nAction: {action}\nOutcome: {outcome}\nDetail: {detail}\n")

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError):
        return False
    return True
