"""
Infrastructure Layer
=====================

Cross-module technical infrastructure:
- Database connection management
"""
