"""
access_roster.db.base

SQLAlchemy declarative base for roster tables.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# --- Module Notes -----------------------------------------------------------
# Host applications keep their own base; sharing one is only required when the roster
# and entity tables should be created by the same `create_all` call.
