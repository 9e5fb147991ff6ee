"""
access_roster.db.repositories

Repository layer: thin query helpers over an `AsyncSession`.
"""
