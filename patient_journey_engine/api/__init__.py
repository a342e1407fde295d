"""
HTTP interface for the Patient Journey Engine.
"""

from .app import create_app

__all__ = [
    "create_app",
]
