"""
access_roster

Entity-relationship role assignment engine.

Responsibilities:
- Expose package version metadata.

Entry points live in `access_roster.bootstrap` (building a store) and
`access_roster.services.assignment_store` (the store itself).
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
