# imaginify/models/__init__.py
from .base import Base
from .user import User
from .image import Image
from .transaction import Transaction

__all__ = ['Base', 'User', 'Image', 'Transaction']
