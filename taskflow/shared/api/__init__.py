"""
Shared API Components
=====================

Middleware, security dependencies and result rendering shared by routers.
"""
