"""
Feature modules live under this package.

Each module owns its models, engine and blueprint, and reuses the platform
primitives (auth, RBAC, audit, storage, DB session, notifications).
"""
