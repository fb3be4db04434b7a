from abc import ABC, abstractmethod
import logging
import smtplib
from email.mime.text import MIMEText
from email.utils import formatdate

import config

LOGGER = logging.getLogger(__name__)

SUBJECT = "Database cloud backup report"
SMTP_TIMEOUT = 30


class NotificationError(Exception):
    """Raised when an alert cannot be delivered."""


class Notifier(ABC):
    @abstractmethod
    def send_error(self, error_message: str) -> None:
        pass


class EmailNotifier(Notifier):
    def __init__(self, cfg: config.EmailConfig):
        self._config = cfg

    def send_error(self, error_message: str) -> None:
        self._config.validate_settings()
        self._send(self._build_message(error_message))
        LOGGER.info("Email: Notification sent to %s.", self._config.recipient)

    def _build_message(self, body: str) -> MIMEText:
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = SUBJECT
        message["From"] = self._config.sender
        message["Date"] = formatdate(localtime=True)
        return message

    def _send(self, message: MIMEText):
        cfg = self._config
        try:
            with smtplib.SMTP(cfg.smtp_server, cfg.port, timeout=SMTP_TIMEOUT) as smtp:
                smtp.starttls()
                smtp.login(cfg.username, cfg.password)
                # recipient is envelope-only (Bcc), never a visible header
                smtp.sendmail(cfg.sender, [cfg.recipient], message.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"Error {e} while sending email via {cfg.smtp_server}, port {cfg.port}"
            ) from e
