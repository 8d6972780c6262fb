"""
Feature modules live under this package.

Each module owns its models, service functions and blueprint (admin.py) and reuses
the platform pieces: auth, RBAC, audit, storage and the request-scoped DB session.
"""
