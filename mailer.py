import logging
import smtplib
from email.message import EmailMessage

import config

logger = logging.getLogger("uvicorn.error")


class SmtpMailer:
    """Outbound mail over SMTP.

    ``log_only`` is a development switch: the recipient and subject are logged
    and nothing is sent. Message bodies carry live codes and are never logged.
    """

    def __init__(self, host=config.EMAIL_HOST, port=config.EMAIL_PORT,
                 user=config.EMAIL_USER, password=config.EMAIL_PASS,
                 sender_name="Coatcard AI", log_only=config.MAIL_LOG_ONLY):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.log_only = log_only
        self.sender = f"{sender_name} <{user}>"

    def send(self, to: str, subject: str, text: str):
        if self.log_only:
            logger.info("[MAIL] (MAIL_LOG_ONLY) to=%s subject=%r", to, subject)
            return
        if not self.host:
            raise RuntimeError("EMAIL_HOST is not configured")

        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)

        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=30) as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
