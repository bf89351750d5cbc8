import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

from config import MAIL_FROM, MAIL_HOST, MAIL_PASS, MAIL_PORT, MAIL_SECURE, MAIL_TIMEOUT, MAIL_USER, OTP_TTL_MINUTES
from errors import MailError

logger = logging.getLogger(__name__)

DAILY_LIMIT_MESSAGE = "Daily user sending limit exceeded"

OTP_HTML = """<div style="text-align: center; background-color: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;">
  <div style="background-color: {color}; color: white; font-size: 32px; padding: 15px; border-radius: 6px; display: inline-block; min-width: 200px;">
    {code}
  </div>
  <p style="font-size: 16px; color: #666; margin-top: 15px;">{note}</p>
</div>"""

ORDER_HTML = """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">Order Confirmation</h2>
  <p>Dear {name},</p>
  <p>Your order #{order_id} has been placed successfully.</p>
  <p><strong>Total Amount:</strong> ${total}</p>
  <p><strong>Status:</strong> {status}</p>
  <p>We will process your order soon. Thank you for shopping with us!</p>
  <hr style="margin: 20px 0;">
  <p style="font-size: 12px; color: #666;">This is an automated message, please do not reply to this email.</p>
</div>"""


class MailSender:
    """SMTP mail sender configured from MAIL_* environment variables."""

    def __init__(
        self,
        host: str = MAIL_HOST,
        port: int = MAIL_PORT,
        secure: bool = MAIL_SECURE,
        user: Optional[str] = MAIL_USER,
        password: Optional[str] = MAIL_PASS,
        from_address: Optional[str] = MAIL_FROM,
        timeout: int = MAIL_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.secure = secure
        self.user = user
        self.password = password
        self.from_address = from_address or user
        self.timeout = timeout

    def _build(self, to: str, subject: str, text: str, html: Optional[str]) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr(("Verification", self.from_address))
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        if self.secure:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> None:
        if not self.user or not self.password:
            raise MailError("MAIL_USER/MAIL_PASS environment variables are not set")
        msg = self._build(to, subject, text, html)
        try:
            self._deliver(msg)
        except smtplib.SMTPResponseException as exc:
            error = exc.smtp_error.decode(errors="replace") if isinstance(exc.smtp_error, bytes) else str(exc.smtp_error)
            if exc.smtp_code == 550 and DAILY_LIMIT_MESSAGE in error:
                # Provider quota hit: the message is dropped, callers carry on.
                logger.warning("SMTP daily sending limit reached, email to %s not sent", to)
                return
            logger.error("Failed to send email to %s: %s %s", to, exc.smtp_code, error)
            raise MailError(error or "Mail service error") from exc
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            raise MailError(str(exc) or "Mail service error") from exc
        logger.info("Sent email %r to %s", subject, to)

    def send_otp(self, email: str, otp_code: str) -> None:
        note = f"This code expires in {OTP_TTL_MINUTES} minutes."
        self.send(
            email,
            "Verification code",
            f"Your verification code is: {otp_code}. It expires in {OTP_TTL_MINUTES} minutes.",
            OTP_HTML.format(color="#007bff", code=otp_code, note=note),
        )

    def send_password_reset_otp(self, email: str, otp_code: str) -> None:
        note = f"This code expires in {OTP_TTL_MINUTES} minutes. Use this code to reset your password."
        self.send(
            email,
            "Password Reset OTP",
            f"Your verification code for password reset is: {otp_code}. It expires in {OTP_TTL_MINUTES} minutes.",
            OTP_HTML.format(color="#28a745", code=otp_code, note=note),
        )

    def send_order_confirmation(self, email: str, full_name: str, order: dict) -> None:
        total = f"{order['total_price']:.2f}"
        self.send(
            email,
            "Order Confirmation",
            f"Your order #{order['id']} has been placed successfully. Total: ${total}. We will process your order soon.",
            ORDER_HTML.format(name=full_name, order_id=order["id"], total=total, status=order["status"]),
        )


mailer = MailSender()


def get_mailer() -> MailSender:
    return mailer
