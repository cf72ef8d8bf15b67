"""
Shared Kernel Module
====================

Generic infrastructure shared by every bounded context: structured
logging, HTTP middleware and request identity.

DO NOT add SLA business logic to the shared kernel.
"""
