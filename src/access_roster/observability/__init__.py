"""
access_roster.observability

Structured logging for the roster engine.
"""
