"""Session domain services: lifecycle, admission, scoring, territories.

This package holds the live-scoring engine. HTTP routes and socket
handlers call into it; it never reads request state itself. Every
mutation is a row-level compare-and-set or an insert guarded by a unique
constraint, so concurrent players never need a session-wide lock.
"""
