from .cart import CartStore
from .checkout import CheckoutTransaction
from .notifications import NotificationDispatcher
from .order_factory import OrderFactory
from .orders import OrderService
from .stock import StockLedger

__all__ = [
    "CartStore",
    "CheckoutTransaction",
    "NotificationDispatcher",
    "OrderFactory",
    "OrderService",
    "StockLedger",
]
