"""
access_roster.integrations

Thin adapters that call into the engine from host frameworks.
"""
