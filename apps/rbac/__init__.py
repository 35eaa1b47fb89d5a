"""
RBAC (Role-Based Access Control) application.

Provides:
- User identity with hashed credentials
- Roles bundling named permissions
- Effective permission resolution (union over roles)
- Lifecycle rules protecting system roles and permissions
"""
