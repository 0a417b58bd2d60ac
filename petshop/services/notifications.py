import logging
from decimal import Decimal
from typing import Iterable

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Queues order confirmations. Never raises; returns False when queueing failed."""

    def send_order_confirmation(self, to: str, customer_name: str, order_number: str,
                                total_amount: Decimal, line_descriptions: Iterable[str]) -> bool:
        from petshop.tasks.notifications import send_order_confirmation_task

        try:
            send_order_confirmation_task.delay(
                to,
                customer_name,
                order_number,
                str(total_amount),
                list(line_descriptions),
            )
        except Exception as e:
            logger.error("Failed to dispatch confirmation for order %s: %s", order_number, e, exc_info=True)
            return False
        return True
