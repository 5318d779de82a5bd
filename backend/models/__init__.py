"""SQLAlchemy ORM models."""

from .account import Account
from .holding import Holding
from .investment_transaction import InvestmentTransaction
from .item import Item
from .security import Security
from .transaction import Transaction
from .utils import generate_uuid

__all__ = ["Account", "Holding", "InvestmentTransaction", "Item", "Security", "Transaction", "generate_uuid"]
