import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from .config import Settings, get_settings

# Configure logger
logger = logging.getLogger("email_service")


class EmailService:
    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.smtp_server = settings.SMTP_SERVER
        self.smtp_port = settings.SMTP_PORT
        self.smtp_username = settings.SMTP_USERNAME
        self.smtp_password = settings.SMTP_PASSWORD
        self.from_email = settings.FROM_EMAIL

    @property
    def configured(self) -> bool:
        return bool(self.smtp_username and self.smtp_password)

    def send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Send a multipart (text + HTML) email. Blocking; run it off the event loop."""
        if not self.configured:
            logger.warning(f"SMTP credentials not configured. Email '{subject}' to {to_email} not sent.")
            return False

        msg = MIMEMultipart("alternative")
        msg['From'] = f"Community Safety Platform <{self.from_email}>"
        msg['To'] = to_email
        msg['Subject'] = subject
        msg.attach(MIMEText(text_body or html_body, 'plain'))
        msg.attach(MIMEText(html_body or text_body, 'html'))

        with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as server:
            server.starttls()
            server.login(self.smtp_username, self.smtp_password)
            server.sendmail(self.from_email, to_email, msg.as_string())

        logger.info(f"Email '{subject}' sent successfully to {to_email}")
        return True
