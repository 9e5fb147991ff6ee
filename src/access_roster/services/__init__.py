"""
access_roster.services

Service-layer package.

Responsibilities:
- Own transaction boundaries, cache invalidation and event dispatch.
"""

# Package marker.
