"""
WineKeeper Backend

Handlers, models and services that manage the Wine runtime and its prefix.
"""
