"""
Shared API
==========

Middleware and request-identity dependencies for FastAPI routers.
"""
