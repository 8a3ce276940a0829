"""security/ -- Security event logging.

Layer rule: security/ imports only stdlib. It does NOT import from api/,
web/, auth/, or core/; callers hand it events.
"""
