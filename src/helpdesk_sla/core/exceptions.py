"""
Core Exceptions
================

Application errors raised by services and repositories and translated to
HTTP responses at the API boundary.

Each class carries the HTTP status it maps to; the handler in
shared.api.middleware reads `status_code` instead of matching types.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class RepositoryException(ApplicationException):
    """A write the store cannot apply (e.g. unknown policy columns)."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    status_code = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class PolicyNotFoundException(ResourceNotFoundException):
    def __init__(self, policy_id: str):
        super().__init__("SLA policy", policy_id, {"policy_id": policy_id})


class TrackingNotFoundException(ResourceNotFoundException):
    """
    The ticket has no SLA tracking row.

    Trackings are created by the first engine pass after a ticket gets a
    policy, so pause/resume before that pass also lands here.
    """

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__("SLA tracking for ticket", ticket_id, {"ticket_id": ticket_id})
