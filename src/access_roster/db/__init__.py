"""
access_roster.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide the roster ORM model, engine/session setup, and the assignment repository.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Entity tables (users, projects, ...) belong to the host application; only the roster
# table is owned here.
