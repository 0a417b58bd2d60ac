from .responses import error
from .db import transactional, Deadline
from .money import to_money, ZERO

__all__ = [
    'error',
    'transactional',
    'Deadline',
    'to_money',
    'ZERO',
]
