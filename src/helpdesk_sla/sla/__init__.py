"""
SLA Tracking Module
===================

Per-ticket SLA deadlines, status transitions, pause/resume accounting
and breach prediction, organised as domain / application /
infrastructure / interfaces layers.
"""
