"""
Permission management feature module.

Implements module-scoped Role-Based Access Control (RBAC): custom roles per
organization module, member role assignments and the permission resolver.
"""
