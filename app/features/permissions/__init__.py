"""
Permission management feature module.

Implements Role-Based Access Control (RBAC): users hold roles, roles carry
permissions, and the "admin" role bypasses every check.
"""
