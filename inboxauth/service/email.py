from __future__ import annotations

import smtplib
import ssl
from email.mime.text import MIMEText
from typing import Any, Optional

from inboxauth.config import EmailTransport
from inboxauth.logging import get_logger, redact_email

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    """The passcode email was not accepted by the delivery channel."""


class EmailService:
    """Sends the one-time passcode email.

    Supports:
    - Amazon SES (default)
    - SMTP with TLS/SSL (point it at a local mail catcher in development)

    A send either returns after the channel acknowledged the message or raises
    EmailDeliveryError; nothing is retried here.
    """

    def __init__(
        self,
        *,
        transport: EmailTransport = EmailTransport.SES,
        from_email: str,
        subject: str,
        preamble: str,
        ses_region: str = "us-east-2",
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        timeout: float = 5,
        ses_client: Any = None,
    ) -> None:
        self.transport = EmailTransport(transport)
        self.from_email = from_email
        self.subject = subject
        self.preamble = preamble
        self.ses_region = ses_region
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.timeout = timeout
        self._ses_client = ses_client

    @property
    def is_configured(self) -> bool:
        if self.transport == EmailTransport.SMTP:
            return bool(self.smtp_host and self.from_email)
        return bool(self.from_email)

    def render_body(self, passcode: str) -> str:
        return f"{self.preamble}\n\n{passcode}"

    def send_passcode(self, to_email: str, passcode: str) -> None:
        """Deliver ``passcode`` to ``to_email`` and wait for the acknowledgement."""
        if not self.is_configured:
            raise EmailDeliveryError(f"{self.transport.value} transport is not configured")
        body = self.render_body(passcode)
        if self.transport == EmailTransport.SMTP:
            self._send_smtp(to_email, body)
        else:
            self._send_ses(to_email, body)
        logger.info(
            "email_sent",
            to=redact_email(to_email),
            transport=self.transport.value,
        )

    def _get_ses_client(self):
        if self._ses_client is not None:
            return self._ses_client

        import boto3
        from botocore.config import Config

        self._ses_client = boto3.client(
            "ses",
            region_name=self.ses_region,
            config=Config(
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={"max_attempts": 0},
            ),
        )
        logger.debug("ses_client_initialized", region=self.ses_region)
        return self._ses_client

    def _send_ses(self, to_email: str, body: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self._get_ses_client().send_email(
                Source=self.from_email,
                Destination={"ToAddresses": [to_email]},
                Message={
                    "Subject": {"Charset": "UTF-8", "Data": self.subject},
                    "Body": {"Text": {"Charset": "UTF-8", "Data": body}},
                },
            )
        except ClientError as exc:
            error = exc.response.get("Error", {})
            logger.error(
                "email_ses_rejected",
                to=redact_email(to_email),
                error_code=error.get("Code"),
                error=error.get("Message"),
            )
            raise EmailDeliveryError("SES rejected the message") from exc
        except BotoCoreError as exc:
            logger.error(
                "email_ses_unavailable",
                to=redact_email(to_email),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise EmailDeliveryError("SES could not be reached") from exc
        logger.debug("email_ses_accepted", message_id=response.get("MessageId"))

    def _send_smtp(self, to_email: str, body: str) -> None:
        msg = MIMEText(body, "plain")
        msg["Subject"] = self.subject
        msg["From"] = self.from_email
        msg["To"] = to_email

        context = ssl.create_default_context()
        logger.debug(
            "email_connecting",
            host=self.smtp_host,
            port=self.smtp_port,
            use_tls=self.smtp_use_tls,
            to=redact_email(to_email),
        )
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=redact_email(to_email),
                host=self.smtp_host,
                error_code=getattr(e, "smtp_code", None),
            )
            raise EmailDeliveryError("SMTP authentication failed") from e
        except smtplib.SMTPRecipientsRefused as e:
            logger.error("email_recipient_refused", to=redact_email(to_email), error=str(e))
            raise EmailDeliveryError("recipient refused") from e
        except (smtplib.SMTPException, ssl.SSLError, OSError) as e:
            logger.error(
                "email_smtp_error",
                to=redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise EmailDeliveryError("SMTP delivery failed") from e
