import logging
import smtplib
from email.mime.text import MIMEText

from .config import Settings

logger = logging.getLogger(__name__)


class MailDispatchError(Exception):
    pass


def build_reset_url(settings: Settings, token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/reset-password/{token}"


def send_reset_link(settings: Settings, *, recipient_email: str, reset_url: str) -> None:
    if not settings.mail_enabled:
        # Local setups without SMTP credentials read the link from the server log.
        logger.info(f"PASSWORD RESET LINK for {recipient_email}: {reset_url}")
        return

    body = (
        "A password reset was requested for your account.\n\n"
        f"Open this link to choose a new password:\n{reset_url}\n\n"
        f"The link expires in {settings.reset_token_exp_minutes} minutes. "
        "If you did not request a reset you can ignore this email."
    )
    msg = MIMEText(body)
    msg["Subject"] = "Password reset"
    msg["From"] = settings.smtp_username
    msg["To"] = recipient_email

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            server.login(settings.smtp_username, settings.smtp_password)
            server.sendmail(settings.smtp_username, [recipient_email], msg.as_string())
    except (smtplib.SMTPException, OSError) as exc:
        raise MailDispatchError(f"Failed to send reset email: {exc}") from exc
    logger.info(f"Password reset email sent to {recipient_email}")
