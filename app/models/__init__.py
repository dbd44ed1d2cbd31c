"""
Cadence — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User
from app.models.taste import TasteProfile
from app.models.match import QueueEntry, Swipe

__all__ = [
    "User",
    "TasteProfile",
    "Swipe",
    "QueueEntry",
]
