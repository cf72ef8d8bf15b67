"""
Helpdesk SLA Tracking Service
=============================

Tracks service-level-agreement compliance for support tickets.

Modules:
- SLA Tracking: policy auto-assignment, deadline and status recomputation,
  pause/resume accounting, breach prediction and transition notifications

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, scheduler, notification and audit sinks
"""

__version__ = "1.0.0"
