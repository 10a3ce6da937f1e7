"""
Utility modules for the topic index manager.

Cross-cutting concerns:
- Rate limiting: pacing strategies for remote writes
- Storage: File I/O helpers for run records
"""
