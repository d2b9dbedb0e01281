"""
Database package initialization.

The package follows a modular structure:
- base: declarative base, mixins and portable column types
- connection: async engine, session factory and unit-of-work sessions
- models: ORM models for orders, catalog products, customers and audit logs
"""

__all__ = []
