"""
Feature modules live under this package.

Each module owns its routes, models and services, and reuses the platform
primitives (identity, RBAC, append-only audit, DB session, error envelope).
"""
