from .auth import User, SessionToken
from .inventory import Asset, LedgerEntry
from .documents import Order, Demo, SequenceCounter

__all__ = [
    'User', 'SessionToken',
    'Asset', 'LedgerEntry',
    'Order', 'Demo', 'SequenceCounter',
]
