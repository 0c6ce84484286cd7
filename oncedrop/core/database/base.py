"""
ORM base for all persisted models.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base; every table of this package hangs off `Base.metadata`."""
