"""
Core Module
============

Framework-agnostic building blocks shared by every layer.
"""

from helpdesk_sla.core.exceptions import (
    ApplicationException,
    RepositoryException,
    ResourceNotFoundException,
    PolicyNotFoundException,
    TrackingNotFoundException,
)

__all__ = [
    "ApplicationException",
    "RepositoryException",
    "ResourceNotFoundException",
    "PolicyNotFoundException",
    "TrackingNotFoundException",
]
