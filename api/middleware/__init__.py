"""
API Middleware.
"""

from .auth import get_current_user, require_role
from .metrics import MetricsMiddleware, metrics_endpoint

__all__ = ["get_current_user", "require_role", "MetricsMiddleware", "metrics_endpoint"]
