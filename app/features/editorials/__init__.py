"""
Editorials: the owned content guarded by ownership-scoped permissions.
"""
