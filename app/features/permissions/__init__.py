"""
Permission management feature module.

Static role-based permission matrix plus the query facade and route guards
built on it. Every tenant-scoped route asks this module, never a role string.
"""
