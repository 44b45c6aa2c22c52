import logging
import os
import smtplib
from email.message import EmailMessage
from typing import List, Tuple

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
MAIL_FROM_NAME = "Phone Marketplace"


class SMTPMailer:
    def __init__(self, host=SMTP_HOST, port=SMTP_PORT, user=SMTP_USER, password=SMTP_PASS):
        self.host = host
        self.port = port
        self.user = user
        self.password = password

    def send(self, to: str, subject: str, body: str) -> None:
        if not self.user:
            logger.warning("SMTP_USER not set, dropping mail %r to %s", subject, to)
            return
        msg = EmailMessage()
        msg["From"] = f'"{MAIL_FROM_NAME}" <{self.user}>'
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("sent %r to %s", subject, to)


class RecordingMailer:
    def __init__(self):
        self.outbox: List[Tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.outbox.append((to, subject, body))


def order_confirmation(order: dict, phones: dict) -> Tuple[str, str]:
    """Subject and plain-text body for a placed order.

    ``phones`` maps phone id to the phone document at checkout.
    """
    address = order["delivery_address"]
    lines = []
    for item in order["items"]:
        phone = phones.get(item["phone_id"], {})
        lines.append(
            f"  {phone.get('title', item['phone_id'])} x{item['quantity']}"
            f"  LKR {item['price'] * item['quantity']:,.2f}"
        )
    body = "\n".join([
        f"Hello {address['first_name']} {address['last_name']},",
        "",
        f"Thank you for your purchase. Order {order['order_number']} has been received.",
        "",
        "Items:",
        *lines,
        "",
        f"Total: LKR {order['total_amount']:,.2f}",
        "",
        "Delivery address:",
        f"  {address['address_line1']}",
        *([f"  {address['address_line2']}"] if address.get("address_line2") else []),
        f"  {address['city']}",
        f"Contact: {order['contact_number']}",
        "",
        "Our sellers will contact you within 24 hours.",
    ])
    return f"Order Confirmation - {order['order_number']}", body


def password_reset(name: str, code: str) -> Tuple[str, str]:
    body = (
        f"Hello {name},\n\n"
        f"Your password reset code is {code}. It expires in 10 minutes.\n\n"
        "If you did not request a reset you can ignore this email."
    )
    return "Password Reset Code", body
