"""
Backend services for WineKeeper.
"""

from .compatibility_service import CompatibilityToolService

__all__ = [
    'CompatibilityToolService'
]
