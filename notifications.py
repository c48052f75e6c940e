"""
Admin email notifications

Mails are sent on request from the admin tool through POST /api/send-notification.
Product and order endpoints never send mail themselves. The route is mounted by
main.py only when ENABLE_NOTIFICATIONS is set.
"""
import os
import html
import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from email.message import EmailMessage
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from schemas import NotificationIn

logger = logging.getLogger(__name__)

STORE_NAME = os.getenv("STORE_NAME", "Tropiq Store")
MAX_SEND_WORKERS = 8


class MailConfigError(RuntimeError):
    pass


class UnknownNotificationType(ValueError):
    pass


class SmtpMailer:
    def __init__(self, host: str, port: int, user: str, password: str, sender: Optional[str] = None):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user

    @classmethod
    def from_env(cls) -> "SmtpMailer":
        user = os.getenv("EMAIL_USER")
        password = os.getenv("EMAIL_PASS")
        if not user or not password:
            raise MailConfigError("EMAIL_USER and EMAIL_PASS must be set to send email")
        return cls(
            host=os.getenv("EMAIL_HOST", "smtp.gmail.com"),
            port=int(os.getenv("EMAIL_PORT", 587)),
            user=user,
            password=password,
            sender=os.getenv("EMAIL_FROM"),
        )

    def send_email(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(body, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.error("Failed to send email to %s", to)
            raise
        logger.info("Email sent to %s", to)


def format_amount(amount: Optional[float]) -> str:
    if amount is None:
        return ""
    # 1500.0 -> "1500"
    if float(amount).is_integer():
        return str(int(amount))
    return str(amount)


def build_notification(payload: NotificationIn, when: Optional[datetime] = None,
                       store_name: str = STORE_NAME) -> Tuple[str, str]:
    when = when or datetime.now()
    stamp = when.strftime("%d/%m/%Y %H:%M:%S")
    store = html.escape(store_name)

    if payload.type == "product_deleted":
        subject = f"Product Deleted - {store_name}"
        body = (
            "<h2>Product Deleted</h2>"
            f"<p>The product <strong>{html.escape(payload.product_name or '')}</strong> was removed from the catalog.</p>"
            f"<p>Date: {stamp}</p>"
            f"<p>System: {store} Admin</p>"
        )
    elif payload.type == "product_created":
        subject = f"New Product Added - {store_name}"
        body = (
            "<h2>New Product Added</h2>"
            f"<p>The product <strong>{html.escape(payload.product_name or '')}</strong> was added to the catalog.</p>"
            f"<p>Date: {stamp}</p>"
            f"<p>System: {store} Admin</p>"
        )
    elif payload.type == "order_created":
        subject = f"New Order Received - {store_name}"
        body = (
            "<h2>New Order Received</h2>"
            "<p>A new order was placed in the store.</p>"
            f"<p><strong>Order:</strong> #{html.escape((payload.order_id or '')[:8])}</p>"
            f"<p><strong>Customer:</strong> {html.escape(payload.customer_name or '')}</p>"
            f"<p><strong>Total:</strong> {format_amount(payload.order_total)} CVE</p>"
            f"<p><strong>Date:</strong> {stamp}</p>"
            f"<p>System: {store}</p>"
        )
    else:
        raise UnknownNotificationType(payload.type)
    return subject, body


class EmailNotifier:
    """Sends one notification to every admin; fails if any single send fails.

    Without a mailer the SMTP transport is built from the environment on
    first send, after the notification type has been checked.
    """

    def __init__(self, mailer=None, store_name: str = STORE_NAME):
        self.mailer = mailer
        self.store_name = store_name

    def get_mailer(self):
        if self.mailer is None:
            self.mailer = SmtpMailer.from_env()
        return self.mailer

    def notify(self, payload: NotificationIn) -> int:
        subject, body = build_notification(payload, store_name=self.store_name)
        mailer = self.get_mailer()
        recipients: List[str] = [str(e) for e in payload.admin_emails]
        if not recipients:
            return 0
        with ThreadPoolExecutor(max_workers=min(len(recipients), MAX_SEND_WORKERS)) as pool:
            # list() re-raises the first failed send
            list(pool.map(lambda to: mailer.send_email(to, subject, body), recipients))
        return len(recipients)


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


router = APIRouter(prefix="/api", tags=["notifications"])


@router.post("/send-notification")
def send_notification(body: NotificationIn, notifier: EmailNotifier = Depends(get_notifier)):
    try:
        sent = notifier.notify(body)
    except UnknownNotificationType:
        return JSONResponse(status_code=400, content={"error": "Invalid notification type"})
    except MailConfigError as e:
        logger.error("Email transport not configured: %s", e)
        return JSONResponse(status_code=500, content={"error": "Email transport not configured"})
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send notification")
        return JSONResponse(status_code=500, content={"error": "Failed to send notification"})
    return {"success": True, "message": f"Notification sent to {sent} administrators"}
