import logging
import smtplib
from email.message import EmailMessage
from typing import List

from flask import current_app, has_app_context

from celery_app import celery_app
from petshop.config import get_config_class

logger = logging.getLogger(__name__)

MAIL_KEYS = (
    "MAIL_SERVER",
    "MAIL_PORT",
    "MAIL_USE_TLS",
    "MAIL_USERNAME",
    "MAIL_PASSWORD",
    "MAIL_FROM",
    "MAIL_FROM_NAME",
)


def _mail_settings() -> dict:
    if has_app_context():
        source = current_app.config
        return {key: source.get(key) for key in MAIL_KEYS}
    config = get_config_class()
    return {key: getattr(config, key, None) for key in MAIL_KEYS}


def render_order_confirmation(customer_name: str, order_number: str, total_amount: str,
                              line_descriptions: List[str]) -> str:
    lines = "\n".join(f"  - {description}" for description in line_descriptions)
    return (
        f"Dear {customer_name},\n\n"
        f"Thank you for your order {order_number}.\n\n"
        f"Items:\n{lines}\n\n"
        f"Total: {total_amount}\n\n"
        "We will let you know when your order ships.\n"
    )


def _send_mail(settings: dict, to: str, subject: str, body: str) -> None:
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = f"{settings['MAIL_FROM_NAME']} <{settings['MAIL_FROM']}>"
    message["To"] = to
    message.set_content(body)

    with smtplib.SMTP(settings["MAIL_SERVER"], int(settings["MAIL_PORT"] or 587), timeout=10) as smtp:
        if settings["MAIL_USE_TLS"]:
            smtp.starttls()
        if settings["MAIL_USERNAME"]:
            smtp.login(settings["MAIL_USERNAME"], settings["MAIL_PASSWORD"] or "")
        smtp.send_message(message)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="petshop.tasks.notifications.send_order_confirmation_task",
)
def send_order_confirmation_task(self, to: str, customer_name: str, order_number: str,
                                 total_amount: str, line_descriptions: List[str]) -> bool:
    """Send the order confirmation mail; only logs when no SMTP server is configured."""
    subject = f"Order confirmation #{order_number}"
    body = render_order_confirmation(customer_name, order_number, total_amount, line_descriptions)

    settings = _mail_settings()
    if not settings["MAIL_SERVER"]:
        logger.info("[Email disabled] confirmation for order %s not sent", order_number)
        return False

    try:
        _send_mail(settings, to, subject, body)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Order confirmation mail for %s failed: %s", order_number, exc)
        raise self.retry(exc=exc)

    logger.info({"event": "order_confirmation_sent", "order_number": order_number, "to": to})
    return True
