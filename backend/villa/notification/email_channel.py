"""
邮件通知渠道：通过 SMTP 发送邮件
"""
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from villa.core.notification import INotificationChannel

logger = logging.getLogger(__name__)


class EmailChannel(INotificationChannel):
    """SMTP 邮件通知渠道"""

    def __init__(
        self,
        smtp_host: str = "localhost",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        sender_email: str = "",
        use_tls: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender_email = sender_email or smtp_user
        self.use_tls = use_tls

    @classmethod
    def from_settings(cls, settings) -> "EmailChannel":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            sender_email=settings.EMAIL_FROM or "",
            use_tls=settings.SMTP_USE_TLS,
        )

    def build_message(self, recipient: str, subject: str, content: str,
                      html: Optional[str] = None) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender_email
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.attach(MIMEText(content, "plain", "utf-8"))
        if html:
            msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def send(self, recipient: str, subject: str, content: str,
             html: Optional[str] = None) -> bool:
        """发送纯文本邮件，html 非空时附加 HTML 正文；SMTP 失败记录日志并返回 False"""
        try:
            msg = self.build_message(recipient, subject, content, html)
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

            logger.info(f"Email sent to {recipient}: {subject}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {recipient}: {e}")
            return False

    def get_channel_type(self) -> str:
        return "email"
