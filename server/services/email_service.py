import re
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from safewatch.core.errors import MailTransportError
from ..config import settings
import logging

logger = logging.getLogger(__name__)

_TAGS = re.compile(r"<[^>]+>")


def send_email_alert(to: str, subject: str, html_body: str):
    """
    Sends one HTML alert (with a plain-text fallback) over SMTP.
    Raises MailTransportError on any failure so the dispatcher can record it
    against this recipient.
    """
    username = settings.SMTP_USERNAME
    password = settings.SMTP_PASSWORD

    if not username or not password:
        logger.warning("SMTP credentials not set. Cannot send email.")
        raise MailTransportError("SMTP credentials not set")

    msg = MIMEMultipart("alternative")
    msg['From'] = settings.EMAIL_FROM
    msg['To'] = to
    msg['Subject'] = subject
    msg.attach(MIMEText(_TAGS.sub(" ", html_body), 'plain'))
    msg.attach(MIMEText(html_body, 'html'))

    try:
        with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT) as server:
            server.starttls()
            server.login(username, password)
            server.send_message(msg)
        logger.info(f"Email sent to {to}")
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {to}: {e}")
        raise MailTransportError(f"Failed to send email: {e}") from e
