"""
Database package initialization.

- base: declarative base, mixins and the append-only trail guard
- connection: async engine and session management
- models: SQLAlchemy ORM models
"""

__all__ = []
