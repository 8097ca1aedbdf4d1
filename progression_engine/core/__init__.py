"""
Core infrastructure: configuration, logging, clock, database and events.
"""
