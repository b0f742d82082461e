"""Database package"""

from invoicetrust.db.session import AsyncSessionLocal, engine, get_db
from invoicetrust.models.base import Base

__all__ = ["Base", "AsyncSessionLocal", "engine", "get_db"]
