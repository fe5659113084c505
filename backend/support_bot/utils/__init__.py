"""
Utility modules for the application.
Provides telemetry and middleware.

Version: 1.0.0
"""
from .middleware import ErrorHandlingMiddleware, RequestContextMiddleware
from .telemetry import setup_telemetry

__all__ = [
    'setup_telemetry',
    'RequestContextMiddleware',
    'ErrorHandlingMiddleware',
]
